#!/usr/bin/env python3
"""
NovaSanctum -- operator command line.

Usage:
  python main.py create-user admin@example.com admin --role admin
  python main.py create-user alice@example.com alice --password-stdin < pw.txt
  python main.py unlock 42
  python main.py purge-sessions
  python main.py stats
  python main.py stats --json

Configuration comes from the same environment variables / .env file as the
API (DATABASE_URL, SECRET_KEY, BCRYPT_ROUNDS, ...).
"""

import argparse
import getpass
import json
import sys
from typing import Optional

from auth.errors import NovaSanctumError
from auth.service import AuthService
from auth.store import open_stores
from core.config import get_settings

MIN_PASSWORD_LENGTH = 8


def _read_password(from_stdin: bool) -> Optional[str]:
    """Read a new password from stdin (first line) or an interactive prompt."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def _cmd_create_user(service: AuthService, args: argparse.Namespace) -> int:
    password = _read_password(args.password_stdin)
    if password is None:
        return 1
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return 1
    user = service.register_user(args.email, args.username, password, args.role or ["user"])
    print(f"  Created user {user.id} <{user.email}> roles={','.join(user.roles)}")
    return 0


def _cmd_unlock(service: AuthService, args: argparse.Namespace) -> int:
    user = service.unlock_account(args.user_id)
    print(f"  Unlocked user {user.id} <{user.email}>")
    return 0


def _cmd_purge_sessions(service: AuthService, args: argparse.Namespace) -> int:
    purged = service.purge_expired_sessions()
    print(f"  Purged {purged} expired session(s).")
    return 0


def _cmd_stats(service: AuthService, args: argparse.Namespace) -> int:
    stats = service.security_stats()
    if args.json:
        print(json.dumps(stats, indent=2))
        return 0
    print("\nNovaSanctum -- Security Stats")
    print("-" * 40)
    print(f"  Total users        {stats['totalUsers']}")
    print(f"  Active sessions    {stats['activeSessions']}")
    print(f"  Failed logins 24h  {stats['failedLogins24h']}")
    print(f"  Locked accounts    {stats['lockedAccounts']}")
    for key, value in stats["config"].items():
        print(f"  {key:<30} {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="novasanctum",
        description="Operator commands for the NovaSanctum auth store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create an account")
    create.add_argument("email")
    create.add_argument("username")
    create.add_argument(
        "--role",
        action="append",
        metavar="ROLE",
        help="Role to grant (repeatable, default: user)",
    )
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    create.set_defaults(handler=_cmd_create_user)

    unlock = sub.add_parser("unlock", help="Clear an account lockout")
    unlock.add_argument("user_id", type=int)
    unlock.set_defaults(handler=_cmd_unlock)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions")
    purge.set_defaults(handler=_cmd_purge_sessions)

    stats = sub.add_parser("stats", help="Print security statistics")
    stats.add_argument("--json", action="store_true", help="Output JSON")
    stats.set_defaults(handler=_cmd_stats)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    stores = open_stores(settings.database_url, settings.store_timeout_seconds)
    try:
        service = AuthService.from_settings(settings, stores)
        return args.handler(service, args)
    except NovaSanctumError as exc:
        print(f"  [!] {exc.code}: {exc.message}")
        return 1
    finally:
        stores.close()


if __name__ == "__main__":
    sys.exit(main())
