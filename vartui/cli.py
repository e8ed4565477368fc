"""Command-line entry point: interactive UI, one-shot API commands, automation server."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional, Sequence, Tuple

from . import build_version
from .api_client import ApiClient, ApiError
from .config import effective_base_url, effective_token, load_config, load_dotenv
from .logs import setup_logging
from .models import Config, DateRange
from .parsing import RangeError, parse_date_range

logger = logging.getLogger(__name__)


class CliError(Exception):
    """Reported on stderr with exit code 1."""


def _bool_value(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "true", "yes", "y"):
        return True
    if v in ("0", "false", "no", "n"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean: {value}")


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value}") from None
    if n <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return n


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vartui", description="Terminal client for VAR time tracking")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--version", action="version", version=f"vartui {build_version()}")
    sub = ap.add_subparsers(dest="command")

    sub.add_parser("tui", help="Interactive terminal UI (default)")
    sub.add_parser("mcp", help="Headless automation server over stdio")

    api = sub.add_parser("api", help="One-shot JSON commands")
    api_sub = api.add_subparsers(dest="api_command", required=True)

    p = api_sub.add_parser("projects", help="List projects")
    p.add_argument("--pretty", action="store_true", help="Indent JSON output")

    for name, help_text in (("days", "List days with their entries"), ("entries", "List entries as flat rows")):
        p = api_sub.add_parser(name, help=help_text)
        p.add_argument("--range", help="YYYY-MM-DD..YYYY-MM-DD, AUTO, AUTO-WEEK or AUTO-MONTH")
        p.add_argument("--pretty", action="store_true", help="Indent JSON output")

    p = api_sub.add_parser("create-entry", help="Create a time entry")
    p.add_argument("--date", required=True)
    p.add_argument("--project-id", type=_positive_int, required=True)
    p.add_argument("--description", required=True)
    p.add_argument("--minutes", type=_positive_int, required=True)
    p.add_argument("--billable", type=_bool_value, default=True)
    p.add_argument("--pretty", action="store_true", help="Indent JSON output")
    return ap


def print_json(value, pretty: bool) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2 if pretty else None))


def client_and_config(client_factory=None) -> Tuple[Config, ApiClient]:
    cfg = load_config()
    token = effective_token(cfg).strip()
    if not token:
        raise CliError("No token configured. Set VAR_TOKEN or save var_token in the configuration.")
    return cfg, (client_factory or ApiClient)(effective_base_url(cfg), token)


def resolve_range(raw: Optional[str], cfg: Config) -> DateRange:
    value = raw or cfg.default_date_range or "AUTO"
    try:
        return parse_date_range(value)
    except RangeError as exc:
        raise CliError(f"invalid range ({value}): {exc}") from exc


def cmd_projects(args, client_factory=None) -> None:
    _, client = client_and_config(client_factory)
    projects = client.fetch_projects_list()
    print_json([{"id": p.id, "name": p.name, "client_name": p.client_name} for p in projects], args.pretty)


def cmd_days(args, client_factory=None) -> None:
    cfg, client = client_and_config(client_factory)
    rng = resolve_range(args.range, cfg)
    fetch = client.fetch_days(rng.start, rng.end)
    print_json({"range": rng.label(), "days": [d.to_dict() for d in fetch.days]}, args.pretty)


def cmd_entries(args, client_factory=None) -> None:
    cfg, client = client_and_config(client_factory)
    rng = resolve_range(args.range, cfg)
    fetch = client.fetch_days(rng.start, rng.end)
    rows: List[dict] = []
    for day in fetch.days:
        for e in day.entries:
            rows.append({"date": day.date, "project": e.project, "hours": e.hours, "note": e.note})
    print_json({"range": rng.label(), "entries": rows}, args.pretty)


def cmd_create_entry(args, client_factory=None) -> None:
    _, client = client_and_config(client_factory)
    client.create_time_entry(args.date, args.project_id, args.description, args.minutes, args.billable)
    print_json({
        "ok": True,
        "date": args.date,
        "project_id": args.project_id,
        "minutes": args.minutes,
        "is_billable": args.billable,
    }, args.pretty)


API_COMMANDS = {
    "projects": cmd_projects,
    "days": cmd_days,
    "entries": cmd_entries,
    "create-entry": cmd_create_entry,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    load_dotenv()
    setup_logging(args.log_level)
    command = args.command or "tui"
    logger.info("vartui %s starting: %s", build_version(), command)

    if command == "api":
        try:
            API_COMMANDS[args.api_command](args)
        except (CliError, ApiError) as exc:
            logger.error("api %s failed: %s", args.api_command, exc)
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        return 0

    if command == "mcp":
        from .automation import run_server
        run_server(sys.stdin.buffer, sys.stdout.buffer)
        return 0

    from .app import App
    from .tui import run_ui
    run_ui(App())
    return 0


if __name__ == "__main__":
    sys.exit(main())
