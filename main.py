#!/usr/bin/env python3
"""
netssl - certificate renewal orchestration, main entry point.

Usage:
    python main.py serve [--host 0.0.0.0] [--port 5000]
    python main.py connections list
    python main.py connections add <file.json>
    python main.py renew <connection_id>
    python main.py status [<connection_id>]
    python main.py sweep [--dry-run]
    python main.py cancel <operation_id> [--url http://127.0.0.1:5000]
    python main.py scheduler
"""

import argparse
import json
import sys
import time
from pathlib import Path

import requests
from dotenv import load_dotenv
load_dotenv()  # before config.settings reads the environment

from config.settings import NETSSL_API_KEY, NETSSL_API_URL, configure_logging


# ============================================================
# Server
# ============================================================

def cmd_serve(args):
    """Run the API server with the auto-renewal scheduler."""
    from web import create_app
    app = create_app()
    app.run(host=args.host, port=args.port, threaded=True)


# ============================================================
# Connections
# ============================================================

def cmd_connections_list(args):
    """List managed connections."""
    from web.services import get_connection_store
    connections = get_connection_store().list_all()
    if not connections:
        print("No connections configured.")
        return

    print(f"\n{'ID':14s} {'Name':24s} {'Type':8s} {'DNS':12s} {'Auto':5s} {'Expires':12s}")
    print("-" * 80)
    for c in connections:
        days = c.days_until_expiry
        expires = f"{days}d" if days is not None else "never"
        print(
            f"{c.id:14s} {c.name[:24]:24s} {c.application_type.value:8s} "
            f"{c.dns_provider.value:12s} {'yes' if c.auto_renew else 'no':5s} {expires:12s}"
        )
    print(f"\nTotal: {len(connections)} connection(s)")


def cmd_connections_add(args):
    """Add a connection from a JSON file."""
    from renewal.connection import Connection, validate_connection
    from renewal.errors import ValidationError
    from web.services import get_connection_store

    data = json.loads(Path(args.file).read_text())
    connection = Connection.from_dict(data)
    try:
        validate_connection(connection)
    except ValidationError as e:
        print(f"Invalid connection: {e}")
        sys.exit(2)
    get_connection_store().add(connection)
    print(f"Connection added: {connection.name} ({connection.fqdn})")
    print(f"  ID: {connection.id}")


# ============================================================
# Renewals
# ============================================================

def _print_operation(op: dict):
    print(f"  {op['operationId']}  {op['status']:24s} {op['progress']:3d}%  {op['message']}")
    if op.get("manualDNSEntry"):
        print()
        print(op["manualDNSEntry"]["instructions"])
    if op.get("error"):
        print(f"  error ({op['errorType']}): {op['error']}")


def cmd_renew(args):
    """Renew one connection in the foreground."""
    from renewal.errors import ConflictError, ValidationError
    from web.services import get_orchestrator

    orchestrator = get_orchestrator()
    try:
        operation = orchestrator.start_renewal(args.connection_id, created_by="cli", background=False)
    except LookupError as e:
        print(str(e))
        sys.exit(1)
    except ValidationError as e:
        print(f"Invalid connection: {e}")
        sys.exit(2)
    except ConflictError as e:
        print(f"{e} (operation {e.details.get('operation_id')})")
        sys.exit(3)

    _print_operation(operation.to_dict())
    if operation.status.value == "failed":
        sys.exit(4)


def cmd_status(args):
    """Show active operations, or the recent operations of one connection."""
    from web.services import get_bundle_store, get_operation_registry

    registry = get_operation_registry()
    if args.connection_id:
        ops = registry.for_connection(args.connection_id)
        for op in ops:
            _print_operation(op.to_dict())
        if not ops:
            for line in get_bundle_store().read_log(args.connection_id, tail=args.tail):
                print(line)
        return

    ops = registry.list_active()
    if not ops:
        print("No active renewals.")
        return
    for op in ops:
        _print_operation(op.to_dict())


def cmd_sweep(args):
    """Run the auto-renewal sweep once."""
    from web.services import get_scheduler

    scheduler = get_scheduler()
    if args.dry_run:
        due = scheduler.due_connections()
        for c in due:
            print(f"  due: {c.id}  {c.name} ({c.fqdn})")
        print(f"{len(due)} connection(s) due within {scheduler.threshold_days} day(s)")
        return
    summary = scheduler.sweep()
    print(json.dumps(summary, indent=2, default=str))

    # Renewals run in daemon threads; keep the process alive until they finish
    registry = scheduler.orchestrator.registry
    while any(registry.active_for_connection(cid) for cid in summary["started"]):
        time.sleep(2)
    for cid in summary["started"]:
        for op in registry.for_connection(cid)[:1]:
            _print_operation(op.to_dict())


def cmd_cancel(args):
    """Ask the running server to cancel an operation.

    Operations only exist in the server process's registry, so this goes
    through the API instead of building a local orchestrator.
    """
    url = f"{args.url.rstrip('/')}/api/v1/operations/{args.operation_id}/cancel"
    headers = {"X-API-Key": NETSSL_API_KEY} if NETSSL_API_KEY else {}
    try:
        response = requests.post(url, headers=headers, timeout=10)
    except requests.RequestException as e:
        print(f"Could not reach netssl server at {args.url}: {e}")
        sys.exit(1)

    if response.status_code == 202:
        print(f"Cancellation requested: {args.operation_id}")
        return
    try:
        message = response.json().get("error", response.text)
    except ValueError:
        message = response.text
    print(f"Cancel failed ({response.status_code}): {message}")
    sys.exit(1)


def cmd_scheduler(args):
    """Show scheduler configuration and the next run."""
    from web.services import get_scheduler
    print(json.dumps(get_scheduler().status(), indent=2, default=str))


# ============================================================
# Parser
# ============================================================

def build_parser():
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Certificate renewal orchestration for network appliances"
    )
    parser.add_argument("--log-level", default="", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    srv = subparsers.add_parser("serve", help="Run the API server")
    srv.add_argument("--host", default="0.0.0.0")
    srv.add_argument("--port", type=int, default=5000)
    srv.set_defaults(func=cmd_serve)

    conn = subparsers.add_parser("connections", help="Manage connections")
    conn_sub = conn.add_subparsers(dest="action")
    cl = conn_sub.add_parser("list", help="List connections")
    cl.set_defaults(func=cmd_connections_list)
    ca = conn_sub.add_parser("add", help="Add a connection from a JSON file")
    ca.add_argument("file", help="Path to connection JSON")
    ca.set_defaults(func=cmd_connections_add)

    rn = subparsers.add_parser("renew", help="Renew a connection's certificate")
    rn.add_argument("connection_id")
    rn.set_defaults(func=cmd_renew)

    st = subparsers.add_parser("status", help="Show renewal operations")
    st.add_argument("connection_id", nargs="?")
    st.add_argument("--tail", type=int, default=50, help="Log lines when no operation is retained")
    st.set_defaults(func=cmd_status)

    sw = subparsers.add_parser("sweep", help="Run the auto-renewal sweep now")
    sw.add_argument("--dry-run", action="store_true", help="Only list due connections")
    sw.set_defaults(func=cmd_sweep)

    cn = subparsers.add_parser("cancel", help="Cancel a running operation")
    cn.add_argument("operation_id")
    cn.add_argument("--url", default=NETSSL_API_URL, help="netssl server URL (NETSSL_API_URL)")
    cn.set_defaults(func=cmd_cancel)

    sc = subparsers.add_parser("scheduler", help="Show scheduler status")
    sc.set_defaults(func=cmd_scheduler)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if not hasattr(args, "func"):
        parser.parse_args([args.command, "--help"])
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
