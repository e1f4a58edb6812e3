"""
BIOMON command line.

Usage:
    biomon serve [--host HOST] [--port PORT] [--sessions DIR] [--tables FILE]
    biomon tables [--tables FILE]
    biomon check-tables FILE
"""

import argparse
import logging
import sys

from rich.console import Console
from rich.table import Table

from .config import load_config
from .rules.tables import OutcomeTable, TableConfigError, load_tables

console = Console()


def _range_text(table: OutcomeTable, index: int) -> str:
    entry = table.entries[index]
    if index == 0:
        return f"≤{entry.max}"
    if index == len(table) - 1:
        return f"{entry.min}+"
    if entry.min == entry.max:
        return str(entry.min)
    return f"{entry.min}-{entry.max}"


def render_table(table: OutcomeTable) -> Table:
    """Build a rich Table for one response table."""
    out = Table(title=f"{table.severity.value.upper()} RESPONSES")
    out.add_column("Total", style="dim", justify="right")
    out.add_column("Response")
    out.add_column("Persistent", justify="center")
    out.add_column("Stress", justify="right")
    out.add_column("Choices")

    for i, entry in enumerate(table):
        out.add_row(
            _range_text(table, i),
            entry.label,
            "yes" if entry.persistent else "",
            f"{entry.stress_delta:+d}" if entry.stress_delta else "",
            ", ".join(c.label for c in entry.apply_choices),
        )
    return out


def cmd_serve(args: argparse.Namespace) -> int:
    from .api.main import run

    config = load_config()
    if args.host:
        config["host"] = args.host
    if args.port:
        config["port"] = args.port
    if args.sessions:
        config["sessions_dir"] = args.sessions
    if args.tables:
        config["tables_path"] = args.tables

    try:
        run(config, reload=args.reload, debug=args.debug)
    except TableConfigError as e:
        console.print(f"[red]Refusing to start:[/red] {e}")
        return 1
    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    try:
        tables = load_tables(args.tables)
    except TableConfigError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    for table in tables.values():
        console.print(render_table(table))
    return 0


def cmd_check_tables(args: argparse.Namespace) -> int:
    try:
        tables = load_tables(args.path)
    except TableConfigError as e:
        console.print(f"[red]INVALID[/red] {e}")
        return 1
    summary = ", ".join(f"{s.value}: {len(t)} entries" for s, t in tables.items())
    console.print(f"[green]OK[/green] {summary}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="biomon",
        description="BIOMON crew vitals monitor",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the session server")
    serve.add_argument("--host", help="Host to bind to (default: BIOMON_HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Port to bind to (default: BIOMON_PORT or 3050)")
    serve.add_argument("--sessions", help="Directory for autosave and campaign files")
    serve.add_argument("--tables", help="Custom response tables YAML")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    serve.set_defaults(func=cmd_serve)

    tables = sub.add_parser("tables", help="Print the stress and panic tables")
    tables.add_argument("--tables", help="Custom response tables YAML")
    tables.set_defaults(func=cmd_tables)

    check = sub.add_parser("check-tables", help="Validate a response tables YAML file")
    check.add_argument("path", help="YAML file to validate")
    check.set_defaults(func=cmd_check_tables)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the biomon command."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
