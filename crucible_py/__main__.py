#!/usr/bin/env python3
"""
Crucible CLI Entry Point

Deploys, destroys or reads an app defined in a Python script, and inspects
persisted state.

A script defines:

    APP_NAME = "my-app"            # optional, defaults to the file stem
    REGISTRY = ResourceRegistry()  # optional, defaults to default_registry

    async def program(scope):
        ...
"""

import sys
import argparse
import logging
import asyncio
import importlib.util
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

from .config import AppOptions
from .engine import Phase, default_registry, deploy_app
from .errors import CrucibleError
from .state import list_chains, list_object_chains


# ─────────────────────────────────────────────────────────────────────────────
# Pretty Printing Helpers
# ─────────────────────────────────────────────────────────────────────────────

def format_status(status: str) -> str:
    """Format status with indicators"""
    icons = {
        'creating': '⏳',
        'updating': '🔄',
        'created': '✅',
        'updated': '✅',
        'deleting': '🗑',
        'deleted': '🚫',
    }
    return f"{icons.get(status, '?')} {status}"


def print_table(headers: list[str], rows: list[list[str]], max_widths: Optional[list[int]] = None) -> None:
    """Print a formatted table"""
    if not rows:
        print("  (no data)")
        return

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))

    if max_widths:
        widths = [min(w, m) if m else w for w, m in zip(widths, max_widths + [None] * len(widths))]

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    print(f"  {header_line}")
    print(f"  {'-' * len(header_line)}")

    for row in rows:
        cells = []
        for i, cell in enumerate(row):
            s = str(cell)
            if len(s) > widths[i]:
                s = s[:widths[i]-2] + ".."
            cells.append(s.ljust(widths[i]))
        print(f"  {' | '.join(cells)}")


# ─────────────────────────────────────────────────────────────────────────────
# Script Loading
# ─────────────────────────────────────────────────────────────────────────────

class LoadedScript:
    """Program, app name and registry exported by a user script."""

    def __init__(self, program: Any, app_name: str, registry: Any):
        self.program = program
        self.app_name = app_name
        self.registry = registry


def load_script(script_path: str) -> Optional[LoadedScript]:
    """
    Load a user script and extract its program.

    Args:
        script_path: Path to the Python script

    Returns:
        The loaded script, or None if it has no ``program``
    """
    path = Path(script_path).resolve()

    spec = importlib.util.spec_from_file_location("crucible_script", path)
    if spec is None or spec.loader is None:
        return None

    module = importlib.util.module_from_spec(spec)
    sys.modules["crucible_script"] = module

    try:
        spec.loader.exec_module(module)
    except Exception as e:
        print(f"❌ Error executing script: {e}", file=sys.stderr)
        return None

    program = getattr(module, "program", None)
    if not callable(program):
        print("❌ No program found. Define 'async def program(scope)'.", file=sys.stderr)
        return None

    return LoadedScript(
        program=program,
        app_name=getattr(module, "APP_NAME", path.stem),
        registry=getattr(module, "REGISTRY", default_registry),
    )


def options_from_args(args: argparse.Namespace, phase: Phase) -> AppOptions:
    return AppOptions.from_env(
        stage=args.stage,
        phase=phase,
        force=args.force or None,
        adopt=args.adopt or None,
        quiet=args.quiet or None,
        state_backend=args.state_backend,
        state_bucket=args.state_bucket,
        dot_dir=Path(args.dir) if args.dir else None,
        event_log=args.event_log or None,
    )


# ─────────────────────────────────────────────────────────────────────────────
# CLI Command Handlers
# ─────────────────────────────────────────────────────────────────────────────

async def cmd_apply(args: argparse.Namespace, phase: Phase) -> int:
    """Deploy, destroy or read the app defined in a script"""
    script = load_script(args.script)
    if script is None:
        return 1

    options = options_from_args(args, phase)
    verb = {Phase.UP: "Deploying", Phase.DESTROY: "Destroying", Phase.READ: "Reading"}[phase]
    print(f"🚀 {verb} {script.app_name} ({options.stage})")

    try:
        result = await deploy_app(script.app_name, script.program, options, registry=script.registry)
    except CrucibleError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"❌ {verb} failed: {e}", file=sys.stderr)
        return 1

    if phase == Phase.READ and result is not None:
        print(json.dumps(result, indent=2, default=str))
    print("✅ Done")
    return 0


def _fs_records(state_dir: Path, app: Optional[str], stage: Optional[str]) -> Dict[str, List[Dict[str, Any]]]:
    """Read every record under a filesystem state directory, grouped by chain."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    if not state_dir.exists():
        return grouped
    for path in sorted(state_dir.rglob("*.json")):
        parts = [unquote(p) for p in path.parent.relative_to(state_dir).parts]
        chain = "/".join(parts)
        grouped.setdefault(chain, []).append(json.loads(path.read_text(encoding="utf-8")))
    return _filter_chains(grouped, app, stage)


def _filter_chains(
    grouped: Dict[str, List[Dict[str, Any]]],
    app: Optional[str],
    stage: Optional[str],
) -> Dict[str, List[Dict[str, Any]]]:
    filtered = {}
    for chain, records in grouped.items():
        parts = chain.split("/")
        if app and parts[0] != app:
            continue
        if stage and (len(parts) < 2 or parts[1] != stage):
            continue
        filtered[chain] = records
    return filtered


async def cmd_state_list(args: argparse.Namespace) -> int:
    """List persisted resource records"""
    options = AppOptions.from_env(
        state_backend=args.state_backend,
        state_bucket=args.state_bucket,
        dot_dir=Path(args.dir) if args.dir else None,
    )

    if options.state_backend == "memory":
        print("The memory backend keeps no state between runs.")
        return 1
    if options.state_backend == "sqlite":
        db_path = options.state_file or options.dot_dir / "state.sqlite"
        if not Path(db_path).exists():
            print(f"Database not found: {db_path}")
            return 1
        grouped = _filter_chains(await list_chains(db_path), args.app, args.stage)
    elif options.state_backend == "s3":
        if not options.state_bucket:
            print("The s3 backend needs --state-bucket or CRUCIBLE_STATE_BUCKET.")
            return 1
        records = await list_object_chains(options.state_bucket, prefix=options.state_prefix)
        grouped = _filter_chains(records, args.app, args.stage)
    else:
        grouped = _fs_records(options.dot_dir / "state", args.app, args.stage)

    table_rows = []
    for chain, records in sorted(grouped.items()):
        for record in records:
            table_rows.append([
                record.get("fqn") or f"{chain}/{record.get('id')}",
                record.get("kind", "-"),
                format_status(record.get("status", "-")),
                str(record.get("seq", "-")),
            ])

    print(f"\n📋 Resources (showing {len(table_rows)}):\n")
    print_table(["FQN", "Kind", "Status", "Seq"], table_rows, [60, 30, 15, 6])
    print()
    return 0


def add_app_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("script", help="Python script defining 'program(scope)'")
    parser.add_argument("--stage", help="Stage name (default: $CRUCIBLE_STAGE or $USER)")
    parser.add_argument("--force", action="store_true", help="Run handlers even for unchanged props")
    parser.add_argument("--adopt", action="store_true", help="Adopt pre-existing resources")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--state-backend", choices=["memory", "fs", "sqlite", "s3"], help="State backend (default: fs)")
    parser.add_argument("--state-bucket", help="Bucket for the s3 backend")
    parser.add_argument("--dir", help="State directory (default: .crucible)")
    parser.add_argument("--event-log", action="store_true", help="Write an NDJSON lifecycle event log")


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Crucible infrastructure orchestration",
        prog="crucible_py"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # deploy / destroy / read
    deploy_parser = subparsers.add_parser("deploy", help="Create or update every declared resource")
    add_app_arguments(deploy_parser)
    destroy_parser = subparsers.add_parser("destroy", help="Tear down everything recorded for a stage")
    add_app_arguments(destroy_parser)
    read_parser = subparsers.add_parser("read", help="Run the program against stored state only")
    add_app_arguments(read_parser)

    # state command group
    state_parser = subparsers.add_parser("state", help="State inspection commands")
    state_subparsers = state_parser.add_subparsers(dest="state_command", help="State subcommands")

    state_list_parser = state_subparsers.add_parser("list", help="List persisted resources")
    state_list_parser.add_argument("--app", help="Only show this app")
    state_list_parser.add_argument("--stage", help="Only show this stage")
    state_list_parser.add_argument("--state-backend", choices=["memory", "fs", "sqlite", "s3"], help="State backend (default: fs)")
    state_list_parser.add_argument("--state-bucket", help="Bucket for the s3 backend")
    state_list_parser.add_argument("--dir", help="State directory (default: .crucible)")

    args = parser.parse_args()

    # Configure logging
    if args.verbose:
        log_level = logging.DEBUG
    elif getattr(args, "quiet", False):
        log_level = logging.WARNING
    else:
        log_level = logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    phases = {"deploy": Phase.UP, "destroy": Phase.DESTROY, "read": Phase.READ}
    if args.command in phases:
        script = Path(args.script)
        if not script.exists():
            print(f"Error: Script file not found: {args.script}", file=sys.stderr)
            return 1
        return asyncio.run(cmd_apply(args, phases[args.command]))

    elif args.command == "state":
        if args.state_command == "list":
            return asyncio.run(cmd_state_list(args))
        print("Usage: crucible_py state list [--app APP] [--stage STAGE]")
        return 1

    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
