#!/usr/bin/env python3
"""
User service admin CLI -- maintenance tasks that run against the database
directly, without going through the HTTP API.

Usage:
  python main.py purge-sessions
  python main.py sessions ana@x.com
  python main.py logout-all ana@x.com
  python main.py deactivate ana@x.com
  python main.py activate ana@x.com
  python main.py --database-url sqlite:///other.db purge-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the user database (same as the API server).
  SECRET_KEY    Required unless DEBUG=true; loaded through core.config.
"""

import argparse
from typing import Optional

from auth.directory import UserDirectory
from auth.models import User
from auth.sessions import SessionRegistry, describe_device
from auth.store import UserStore
from core.config import get_settings


def _find_user(directory: UserDirectory, email: str) -> Optional[User]:
    """Look a user up by email, printing a notice when there is none."""
    user = directory.get_by_email(email.strip())
    if user is None:
        print(f"  [!] No user registered with email '{email}'.")
    return user


def _cmd_purge(store: UserStore, args: argparse.Namespace) -> int:
    removed = SessionRegistry(store).purge_expired()
    print(f"  Removed {removed} expired session(s).")
    return 0


def _cmd_sessions(store: UserStore, args: argparse.Namespace) -> int:
    directory = UserDirectory(store)
    user = _find_user(directory, args.email)
    if user is None:
        return 1
    registry = SessionRegistry(store)
    sessions = registry.active_sessions_for(user)
    print(f"\n  {directory.full_name(user)} <{user.email}> -- {len(sessions)} valid session(s)")
    print("  " + "─" * 40)
    for s in sessions:
        print(
            f"  #{s.id:<6} {describe_device(s):<16} {s.ip_address or '-':<15} "
            f"{registry.remaining_minutes(s)} min left"
        )
    print()
    return 0


def _cmd_logout_all(store: UserStore, args: argparse.Namespace) -> int:
    user = _find_user(UserDirectory(store), args.email)
    if user is None:
        return 1
    count = SessionRegistry(store).invalidate_all_for_user(user)
    print(f"  Invalidated {count} session(s) for {user.email}.")
    return 0


def _cmd_set_active(store: UserStore, args: argparse.Namespace) -> int:
    directory = UserDirectory(store)
    user = _find_user(directory, args.email)
    if user is None:
        return 1
    if args.command == "deactivate":
        directory.deactivate(user)
        # A deactivated account must not keep working through old tokens.
        count = SessionRegistry(store).invalidate_all_for_user(user)
        print(f"  Deactivated {user.email} ({count} session(s) invalidated).")
    else:
        directory.activate(user)
        print(f"  Activated {user.email}.")
    return 0


_COMMANDS = {
    "purge-sessions": _cmd_purge,
    "sessions": _cmd_sessions,
    "logout-all": _cmd_logout_all,
    "deactivate": _cmd_set_active,
    "activate": _cmd_set_active,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="user-service",
        description="Maintenance commands for the user service database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py purge-sessions
  python main.py sessions ana@x.com
  python main.py logout-all ana@x.com
  DATABASE_URL=sqlite:///prod.db python main.py deactivate ana@x.com
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("purge-sessions", help="Delete every session whose expiry has passed")
    for name, text in (
        ("sessions", "List the valid sessions of a user"),
        ("logout-all", "Invalidate every session of a user"),
        ("deactivate", "Deactivate a user and invalidate their sessions"),
        ("activate", "Re-activate a deactivated user"),
    ):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("email", metavar="EMAIL", help="Email address of the user")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    store = UserStore(args.database_url or get_settings().database_url)
    try:
        return _COMMANDS[args.command](store, args)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
