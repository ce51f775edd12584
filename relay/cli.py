"""relay.cli

Command line interface entry point for signal-relay.

Design constraints:
- argparse-based.
- Lazy imports: do not import venue adapters or the source client at parse time.
- Exit codes: 0 ok, 1 no progress possible (unreadable input, unreachable source),
  2 usage or configuration error.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from relay.core.config import Config
    from relay.execution.venue import VenueExecutor
    from relay.pipeline.runner import BatchResult, SignalRunner

T = TypeVar("T")


@dataclass(frozen=True)
class CliContext:
    repo_root: Path


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, default=None, help="Config YAML (default: config/default.yaml).")
    common.add_argument("--data-dir", type=Path, default=None, help="Directory holding the NDJSON logs.")
    common.add_argument("--guards", default=None, help="Comma-separated guard list, e.g. price,age,notional.")
    common.add_argument("--guards-config", type=Path, default=None, help="Guard overlay file (YAML or JSON).")
    common.add_argument("--price-tolerance", type=float, default=None, help="PriceGuard tolerance in percent.")
    common.add_argument("--max-age", type=float, default=None, help="AgeGuard limit in seconds.")
    common.add_argument("--max-notional", type=float, default=None, help="NotionalGuard limit.")
    common.add_argument("--simulate", action="store_true", help="Mark every decision SIMULATE.")
    common.add_argument("--execute", action="store_true", help="Send EXECUTE decisions to the venue.")
    common.add_argument("--venue", choices=["simulator", "binance", "okx"], default=None)
    common.add_argument("--position-mode", choices=["net", "dual"], default=None)
    common.add_argument("--dry-run", action="store_true", help="Evaluate and print; persist nothing.")
    common.add_argument("--verbose", action="store_true", help="Print every guard result.")
    return common


def _source_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--agents", default=None, help="Comma-separated agent (model) ids.")
    p.add_argument("--marker", type=int, default=None, help="lastHourlyMarker to request.")
    p.add_argument("--api-base", default=None, help="Signal source base URL.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay",
        description="Guard, decide, record and execute copy-trading signals.",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")

    common = _common_options()
    sub = parser.add_subparsers(dest="command")

    p_record = sub.add_parser("record", parents=[common], help="Record signals from a saved payload file")
    p_record.add_argument("--input", type=Path, required=True)
    p_record.add_argument("--source", default="file", help="Source label stored with each record.")

    p_fetch = sub.add_parser("fetch", parents=[common], help="Fetch signals once (deduplicated)")
    p_fetch.add_argument("--input", type=Path, default=None, help="Read accounts from a file instead.")
    _source_options(p_fetch)

    p_watch = sub.add_parser("watch", parents=[common], help="Fetch signals in a loop")
    p_watch.add_argument("--interval", type=float, default=None, help="Seconds between fetches.")
    p_watch.add_argument("--iterations", type=int, default=None, help=argparse.SUPPRESS)
    _source_options(p_watch)

    p_replay = sub.add_parser("replay", parents=[common], help="Re-run current guards over the signal log")
    p_replay.add_argument("--save-decisions", action="store_true")
    p_replay.add_argument("--as-of", default=None, help="Evaluate as of this ISO-8601 time.")

    p_audit = sub.add_parser("audit", parents=[common], help="Summarize the decision log")
    p_audit.add_argument("--guard-filter", default=None)
    p_audit.add_argument("--action-filter", choices=["EXECUTE", "SKIP", "SIMULATE"], default=None)
    p_audit.add_argument("--reason-code", default=None)

    sub.add_parser("positions", parents=[common], help="Latest agent positions from the signal log")

    p_state = sub.add_parser("watch-state", parents=[common], help="Show or clear the watch state")
    p_state.add_argument("--clear", action="store_true")

    sub.add_parser("config", parents=[common], help="Print the effective configuration (secrets redacted)")

    return parser


def _print_version() -> None:
    from relay import __version__

    print(f"signal-relay v{__version__}")


def _split(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _load_config(ctx: CliContext, args: argparse.Namespace) -> Config:
    from relay.core.config import Config
    from relay.core.logging import configure_logging

    if args.config is not None:
        config = Config.from_yaml(args.config)
    else:
        config = Config.from_repo_defaults(ctx.repo_root)

    if args.guards_config is not None:
        config = config.with_guard_overlay(args.guards_config)

    config = config.with_overrides(
        "guards",
        enabled=_split(args.guards),
        price_tolerance_pct=args.price_tolerance,
        max_age_seconds=args.max_age,
        max_notional=args.max_notional,
    )
    config = config.with_overrides(
        "execution",
        enabled=True if args.execute else None,
        simulate=True if args.simulate else None,
        venue=args.venue,
        position_mode=args.position_mode,
    )
    if hasattr(args, "agents"):
        config = config.with_overrides(
            "source",
            agents=_split(args.agents),
            marker=args.marker,
            base_url=args.api_base,
        )

    data_dir = args.data_dir if args.data_dir is not None else config.paths.data_dir
    if not data_dir.is_absolute():
        data_dir = ctx.repo_root / data_dir
    config = config.model_copy(update={"paths": config.paths.model_copy(update={"data_dir": data_dir})})

    configure_logging(config.logging, verbose=bool(args.verbose))
    return config


def _build_runner(config: Config) -> tuple[SignalRunner, VenueExecutor | None]:
    from relay.execution.factory import create_executor
    from relay.pipeline.runner import SignalRunner

    executor = None
    if config.execution.enabled and not config.execution.simulate:
        executor = create_executor(config)
    return SignalRunner(config, executor=executor), executor


def _print_batch(result: BatchResult, *, dry_run: bool, verbose: bool) -> None:
    if dry_run:
        print(f"Dry run: would record {len(result.records)} signal(s).")
        for rec in result.records:
            print(rec.model_dump_json(indent=2))

    if verbose:
        for ev in result.evaluations:
            print(f"Guard results for {ev.signal.agent_id} {ev.signal.symbol}:")
            for r in ev.results:
                status = "PASS" if r.passed else "FAIL"
                print(f"  [{status}] {r.guard}" + (f" - {r.reason}" if r.reason else ""))

    for d in result.decisions:
        print(f"Decision: {d.action} ({d.reason_code}) for {d.signal.agent_id} {d.signal.symbol}")
        if d.reason:
            print(f"  Reason: {d.reason}")
        if d.execution is not None:
            status = "SUCCESS" if d.execution.success else "FAILED"
            print(f"  [{status}] {d.execution.venue}: {d.execution.message or ''}".rstrip())

    s = result.summary()
    if s.skipped_duplicates:
        print(f"Skipped {s.skipped_duplicates} already-processed signal(s).")
    if s.executed:
        ok = s.executed - s.execution_failures
        print(f"Execution summary: {ok}/{s.executed} successful, {s.execution_failures} failed.")
    if result.persisted:
        print(f"Recorded {s.recorded} signal(s) and {s.decisions} decision(s).")


async def _run_and_close(coro_fn: Callable[[], Awaitable[T]], executor: VenueExecutor | None) -> T:
    try:
        return await coro_fn()
    finally:
        if executor is not None:
            await executor.aclose()


def _cmd_record(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.source.nof1 import load_accounts_file

    config = _load_config(ctx, args)
    accounts = load_accounts_file(args.input)
    if not any(a.positions for a in accounts):
        print("No positions detected in input. Nothing to record.")
        return 0

    runner, executor = _build_runner(config)
    result = asyncio.run(
        _run_and_close(
            lambda: runner.intake(accounts, source=args.source, input_file=str(args.input), dry_run=args.dry_run),
            executor,
        )
    )
    _print_batch(result, dry_run=args.dry_run, verbose=args.verbose)
    return 0


def _cmd_fetch(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.source.nof1 import SignalSource, load_accounts_file

    config = _load_config(ctx, args)
    runner, executor = _build_runner(config)

    if args.input is not None:
        accounts = load_accounts_file(args.input)

        async def go() -> BatchResult:
            return await runner.intake(
                accounts, source=config.source.name, input_file=str(args.input), dedup=True, dry_run=args.dry_run
            )

    else:
        source = SignalSource(config.source)

        async def go() -> BatchResult:
            try:
                return await runner.fetch_once(source, dry_run=args.dry_run)
            finally:
                await source.aclose()

    result = asyncio.run(_run_and_close(go, executor))
    _print_batch(result, dry_run=args.dry_run, verbose=args.verbose)
    return 0


def _cmd_watch(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.source.nof1 import SignalSource

    config = _load_config(ctx, args)
    if args.interval is not None:
        config = config.with_overrides("watch", interval_seconds=args.interval)
    runner, executor = _build_runner(config)
    source = SignalSource(config.source)
    interval = config.watch.interval_seconds

    def on_batch(i: int, result: BatchResult) -> None:
        print(f"\n--- Watch iteration #{i} ---")
        _print_batch(result, dry_run=args.dry_run, verbose=args.verbose)

    async def go() -> int:
        try:
            return await runner.watch(
                source,
                interval_seconds=interval,
                iterations=args.iterations,
                dry_run=args.dry_run,
                on_batch=on_batch,
            )
        finally:
            await source.aclose()

    print(f"Starting watch loop (interval {interval:g}s)")
    try:
        asyncio.run(_run_and_close(go, executor))
    except KeyboardInterrupt:
        print("Watch loop stopped.")
    return 0


def _cmd_replay(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.core.time import parse_dt

    config = _load_config(ctx, args)
    try:
        as_of = parse_dt(args.as_of) if args.as_of else None
    except ValueError:
        print(f"error: --as-of is not an ISO-8601 time: {args.as_of}", file=sys.stderr)
        return 2

    runner, executor = _build_runner(config)
    if not runner.signal_log.path.exists():
        print("No raw signals recorded yet. Run the record command first.")
        return 0

    result = asyncio.run(
        _run_and_close(lambda: runner.replay(save_decisions=args.save_decisions, now=as_of), executor)
    )
    _print_batch(result, dry_run=False, verbose=args.verbose)
    print(f"Replay complete: processed {len(result.bundles)} signal(s).")
    return 0


def _cmd_audit(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.core.journal import DecisionLog
    from relay.core.models import Action
    from relay.pipeline.audit import AuditFilter, audit_decisions, render_audit

    config = _load_config(ctx, args)
    decisions = DecisionLog.from_paths(config.paths).read_all()
    if not decisions:
        print("No decisions recorded yet.")
        return 0

    flt = AuditFilter(
        guard=args.guard_filter,
        action=Action(args.action_filter) if args.action_filter else None,
        reason_code=args.reason_code,
    )
    print(render_audit(audit_decisions(decisions, flt)))
    return 0


def _cmd_positions(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.core.journal import SignalLog
    from relay.pipeline.report import format_positions

    config = _load_config(ctx, args)
    print(format_positions(SignalLog.from_paths(config.paths).read_all()), end="")
    return 0


def _cmd_watch_state(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.core.watch_state import clear_watch_state, describe_watch_state, load_watch_state

    config = _load_config(ctx, args)
    path = config.paths.watch_state_path()
    if args.clear:
        clear_watch_state(path)
        print(f"Cleared watch state at {path}")
        return 0
    print(describe_watch_state(load_watch_state(path)))
    return 0


def _cmd_config(ctx: CliContext, args: argparse.Namespace) -> int:
    from relay.core.config import dump_config

    print(dump_config(_load_config(ctx, args)))
    return 0


def main(argv: list[str] | None = None) -> int:
    from relay.core.exceptions import ConfigError, JournalError, SourceError

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = CliContext(repo_root=_repo_root_from_cwd())

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "record": _cmd_record,
        "fetch": _cmd_fetch,
        "watch": _cmd_watch,
        "replay": _cmd_replay,
        "audit": _cmd_audit,
        "positions": _cmd_positions,
        "watch-state": _cmd_watch_state,
        "config": _cmd_config,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    try:
        return int(fn(ctx, args))
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except (SourceError, JournalError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
