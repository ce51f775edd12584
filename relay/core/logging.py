"""relay.core.logging

Logging setup. Modules log through stdlib loggers with short event names
(``decision_built``) and put context in ``extra=``; structlog renders those records as
one JSON object or one ``key=value`` line each.
"""

from __future__ import annotations

import logging
import sys

import structlog

from relay.core.config import LoggingConfig

_KEY_ORDER = ["timestamp", "level", "logger", "event"]


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def build_formatter(json_output: bool) -> structlog.stdlib.ProcessorFormatter:
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=False, default=str)
    else:
        renderer = structlog.processors.KeyValueRenderer(key_order=_KEY_ORDER, drop_missing=True, repr_native_str=False)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
        foreign_pre_chain=_pre_chain(),
    )


def configure_logging(cfg: LoggingConfig, *, verbose: bool = False) -> None:
    root = logging.getLogger("relay")
    root.setLevel(logging.DEBUG if verbose else getattr(logging, str(cfg.level).upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(build_formatter(cfg.json_output))
    root.handlers = [handler]
