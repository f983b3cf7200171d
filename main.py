#!/usr/bin/env python3
"""
RADIUS access gate -- operator CLI.

Every command first runs the startup sequence (wait for the database, then
create/migrate the grants table), so `init` on its own is a safe way to
bootstrap a new database.

Usage:
  python main.py init
  python main.py check alice@example.com
  python main.py add alice@example.com --display-name "Alice"
  python main.py remove alice@example.com
  python main.py list
  python main.py set-password alice@example.com
  python main.py sync

Environment variables:
  RADIUS_SERVER_ID     Server context every grant is scoped to (required).
  DATABASE_URL         SQLAlchemy URL, or DB_HOST/DB_PORT/DB_USER/DB_PASSWORD/DB_NAME.
  AZURE_TENANT_ID      Directory credentials; leave empty for local-only mode.
  AZURE_CLIENT_ID
  AZURE_CLIENT_SECRET

Exit status: 0 success, 1 the operation failed, 2 startup failed.
"""

from __future__ import annotations

import argparse
import getpass
import logging
from typing import Optional

from pydantic import ValidationError

import bootstrap
from core.config import get_settings
from core.errors import RadiusAuthzError
from core.models import IdentityRecord

logger = logging.getLogger("radiusauthz.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_STARTUP = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="radius-access",
        description="Manage and test RADIUS authorization grants.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  RADIUS_SERVER_ID=site-A python main.py init
  RADIUS_SERVER_ID=site-A python main.py check alice@example.com
  RADIUS_SERVER_ID=site-A python main.py add bob@example.com --display-name Bob
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Wait for the database and create/migrate the grants table")

    check = sub.add_parser("check", help="Run the authorization decision for a user")
    check.add_argument("upn", help="User principal name")

    add = sub.add_parser("add", help="Grant access without consulting the directory")
    add.add_argument("upn", help="User principal name")
    add.add_argument("--display-name", default=None, help="Human-readable label")

    remove = sub.add_parser("remove", help="Revoke a cached grant")
    remove.add_argument("upn", help="User principal name")

    sub.add_parser("list", help="List grants for this server")

    set_password = sub.add_parser("set-password", help="Cache a password digest for offline checks")
    set_password.add_argument("upn", help="User principal name")
    set_password.add_argument("--password", default=None, help="Password (prompted when omitted)")

    sub.add_parser("sync", help="Cache a grant for every directory user")
    return parser


def run_command(args: argparse.Namespace, services: bootstrap.Services) -> int:
    """Execute one parsed command against started services. Returns the exit status."""
    resolver = services.resolver

    if args.command == "init":
        print(f"Database ready, grants table verified for server {resolver.server_id}.")
        return EXIT_OK

    if args.command == "check":
        allowed = resolver.is_allowed(args.upn)
        print(f"{args.upn}: {'ALLOWED' if allowed else 'DENIED'} on {resolver.server_id}")
        return EXIT_OK if allowed else EXIT_FAILED

    if args.command == "add":
        ok = resolver.add_allowed_user(IdentityRecord(principal_name=args.upn, display_name=args.display_name))
        print(f"{args.upn}: {'added' if ok else 'not added (already allowed or database error)'}")
        return EXIT_OK if ok else EXIT_FAILED

    if args.command == "remove":
        ok = resolver.remove_allowed_user(args.upn)
        print(f"{args.upn}: {'removed' if ok else 'not removed (no grant or database error)'}")
        return EXIT_OK if ok else EXIT_FAILED

    if args.command == "list":
        records = resolver.get_allowed_users()
        for record in records:
            cached = "yes" if record.has_password else "no"
            print(f"  {record.user_principal_name:<40} {record.display_name or '-':<30} password cached: {cached}")
        print(f"{len(records)} grant(s) on {resolver.server_id}")
        return EXIT_OK

    if args.command == "set-password":
        password: Optional[str] = args.password or getpass.getpass(f"Password for {args.upn}: ")
        ok = services.credentials.update_password(args.upn, password)
        print(f"{args.upn}: {'password cached' if ok else 'not updated (no grant or database error)'}")
        return EXIT_OK if ok else EXIT_FAILED

    if args.command == "sync":
        added = resolver.sync_from_directory()
        print(f"{added} user(s) added from the directory")
        return EXIT_OK

    raise ValueError(f"Unknown command: {args.command!r}")


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"  [!] Invalid configuration: {exc}")
        return EXIT_STARTUP

    try:
        services = bootstrap.start(settings)
    except RadiusAuthzError as exc:
        logger.error("Failed to start: %s", exc)
        return EXIT_STARTUP

    try:
        return run_command(args, services)
    except RadiusAuthzError as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        return EXIT_FAILED
    finally:
        services.close()


if __name__ == "__main__":
    raise SystemExit(main())
