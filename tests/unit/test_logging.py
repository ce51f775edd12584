from __future__ import annotations

import json
import logging

import pytest

from relay.core.config import LoggingConfig
from relay.core.logging import configure_logging


def test_json_output_carries_extra_fields(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(LoggingConfig(level="INFO", json_output=True))
    logging.getLogger("relay.test").info("decision_built", extra={"decision_id": "a-BTC-1-0", "action": "SKIP"})

    line = capsys.readouterr().err.strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["event"] == "decision_built"
    assert payload["decision_id"] == "a-BTC-1-0"
    assert payload["action"] == "SKIP"
    assert payload["level"] == "info"
    assert payload["logger"] == "relay.test"
    assert "timestamp" in payload


def test_json_output_includes_exception(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(LoggingConfig(level="INFO", json_output=True))
    try:
        raise RuntimeError("venue down")
    except RuntimeError:
        logging.getLogger("relay.test").exception("executor_raised", extra={"decision_id": "x"})

    payload = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert payload["event"] == "executor_raised"
    assert "RuntimeError: venue down" in payload["exception"]


def test_text_output_is_key_value(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(LoggingConfig(level="WARNING"))
    log = logging.getLogger("relay.test")
    log.info("hidden")
    log.warning("execution_failed", extra={"venue": "okx"})

    err = capsys.readouterr().err
    assert "hidden" not in err
    line = err.strip().splitlines()[-1]
    assert line.startswith("timestamp=")
    assert "level=warning logger=relay.test event=execution_failed venue=okx" in line


def test_verbose_lowers_level() -> None:
    configure_logging(LoggingConfig(level="ERROR"), verbose=True)
    assert logging.getLogger("relay").level == logging.DEBUG
