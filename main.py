#!/usr/bin/env python3
"""
AuthGate -- administrative command line.

HTTP registration always creates `user` accounts. This CLI is how the first
admin (and any later admin) is created, directly against the credential store.

Usage:
  python main.py create-user --username root --email root@example.com --role admin
  python main.py create-user --username alice --email alice@example.com --first-name Alice

The password is prompted for twice (never taken from argv, which would leak it
into shell history and the process list).

Environment variables:
  SECRET_KEY    Required unless DEBUG=true (see core/config.py).
  DATABASE_URL  Credential store location (default sqlite:///authgate.db).
"""

import argparse
import getpass
import re
from typing import Optional

from api.models import EMAIL_PATTERN, USERNAME_PATTERN
from auth.credentials import hash_password
from auth.errors import ValidationError
from auth.flows import check_password_policy
from auth.models import Role, UserIdentity
from auth.store import UserStore
from core.config import Settings, get_settings

_USERNAME_RE = re.compile(USERNAME_PATTERN)
_EMAIL_RE = re.compile(EMAIL_PATTERN)


def _prompt_password() -> Optional[str]:
    """Prompt for a password twice. Returns None if the entries differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_user(args: argparse.Namespace, settings: Settings) -> int:
    """Create one account. Returns the process exit code."""
    username = args.username.strip()
    email = args.email.strip().lower()
    if not _USERNAME_RE.match(username):
        print("  [!] Username must be 3-50 characters: letters, digits, '_', '.', '-'.")
        return 2
    if not _EMAIL_RE.match(email):
        print(f"  [!] '{args.email}' doesn't look like an email address.")
        return 2

    password = _prompt_password()
    if password is None:
        return 2
    try:
        check_password_policy(password, settings.password_min_length)
    except ValidationError as e:
        print(f"  [!] {e.message}")
        return 2

    store = UserStore(settings.database_url)
    try:
        if store.get_by_username(username) is not None:
            print(f"  [!] Username '{username}' is already taken.")
            return 1
        if store.get_by_email(email) is not None:
            print(f"  [!] Email '{email}' is already registered.")
            return 1
        user_id = store.create(
            UserIdentity(
                username=username,
                email=email,
                password_hash=hash_password(password, rounds=settings.bcrypt_rounds),
                role=Role(args.role),
                first_name=args.first_name,
                last_name=args.last_name,
            )
        )
    finally:
        store.close()

    print(f"  Created {args.role} '{username}' (id {user_id}).")
    return 0


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="AuthGate administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --username root --email root@example.com --role admin
  DATABASE_URL=sqlite:///prod.db python main.py create-user --username ops --email ops@example.com
        """,
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = commands.add_parser("create-user", help="Create an account (prompts for the password)")
    create.add_argument("--username", required=True, help="Login name (3-50 chars, no '@')")
    create.add_argument("--email", required=True, help="Unique email address")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.user.value,
        help="Account role (default: user)",
    )
    create.add_argument("--first-name", default=None, metavar="NAME")
    create.add_argument("--last-name", default=None, metavar="NAME")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    settings = settings or get_settings()
    return create_user(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
