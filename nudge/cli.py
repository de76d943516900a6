"""nudge command line.

    nudge run --items items.json [--config settings.json] [--once | --force]
    nudge status --items items.json [--config settings.json] [--recent N]
    nudge forget NAME [--config settings.json]
    nudge check-log PATH
"""

import argparse
import sys
import time
from datetime import datetime
from pathlib import Path

from . import event_log
from .audit import AuditLogger
from .bodies import body_for
from .config import Settings, load_settings
from .engine import Engine
from .errors import ConfigurationError
from .memory import MemoryStore
from .observability import setup_logging
from .probes import ActivityProbe, select_probe
from .registry import ItemRegistry, load_item_file


def ask(question: str) -> bool:
    """Yes/no prompt on the terminal. Anything but y/yes is no."""
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_registry(settings: Settings, items_path: Path) -> ItemRegistry:
    registry = ItemRegistry(settings)
    for item, command in load_item_file(items_path):
        registry.register(item, body_for(item, command) if command else None)
    return registry


def _format_time(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    registry = build_registry(settings, args.items)
    probe = select_probe(settings.internal_idle, ActivityProbe())
    engine = Engine(settings, registry, probe=probe, confirm=ask)

    if not engine.start(monitor=not (args.once or args.force)):
        print("Another nudge engine is already running", file=sys.stderr)
        return 1

    try:
        if args.once or args.force:
            summary = engine.force_session() if args.force else engine.new_session()
            if summary is not None:
                remaining = ", ".join(summary.remaining) or "none"
                print(f"Ran {len(summary.runs)} item(s); remaining: {remaining}")
            return 0
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        return 0
    finally:
        engine.shutdown()


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    registry = build_registry(settings, args.items)
    engine = Engine(settings, registry)
    engine.recover()
    for row in engine.status():
        flag = "due" if row["pending"] else ",".join(row["reasons"])
        print(
            f"{row['fn']:<24} {flag:<32} dismissals={row['dismissals']} "
            f"last_called={_format_time(row['last_called'])}"
        )
    if args.recent:
        print()
        for entry in engine.audit.tail(args.recent):
            fields = " ".join(f"{key}={value}" for key, value in entry.fields.items())
            print(f"{entry.timestamp} {entry.operation:<12} {fields}")
    return 0


def cmd_forget(args: argparse.Namespace, settings: Settings) -> int:
    store = MemoryStore(settings.variable_log_path, AuditLogger(settings.audit_log_path))
    removed = store.forget(args.name)
    print(f"Removed {removed} row(s) for {args.name}")
    return 0


def cmd_check_log(args: argparse.Namespace, settings: Settings) -> int:
    anomalies = event_log.check_monotonic(args.path)
    for anomaly in anomalies:
        print(f"line {anomaly.line_no}: {anomaly.reason} (posted={anomaly.posted})")
    if not anomalies:
        print(f"{args.path}: ok")
    return 1 if anomalies else 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for nudge."""
    parser = argparse.ArgumentParser(
        description="Idle-aware reminder scheduler"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a JSON settings file (optional)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Start the engine")
    run_parser.add_argument("--items", type=Path, required=True, help="Path to the items JSON file")
    mode = run_parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run one session of pending items and exit")
    mode.add_argument("--force", action="store_true", help="Run every enabled item once and exit")
    run_parser.set_defaults(handler=cmd_run)

    status_parser = subparsers.add_parser("status", help="Show which items are due")
    status_parser.add_argument("--items", type=Path, required=True, help="Path to the items JSON file")
    status_parser.add_argument(
        "--recent", type=int, default=0, metavar="N", help="Also show the last N audit entries"
    )
    status_parser.set_defaults(handler=cmd_status)

    forget_parser = subparsers.add_parser("forget", help="Purge a variable from the variable log")
    forget_parser.add_argument("name", help="Variable name")
    forget_parser.set_defaults(handler=cmd_forget)

    check_parser = subparsers.add_parser("check-log", help="Report out-of-order or future rows")
    check_parser.add_argument("path", type=Path, help="Path to an event log")
    check_parser.set_defaults(handler=cmd_check_log)

    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
        setup_logging(settings.log_level, settings.log_json)
        code = args.handler(args, settings)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)

    raise SystemExit(code)


if __name__ == "__main__":
    main()
