#!/usr/bin/env python3
"""
AuthApp -- administrative command line.

Usage:
  python main.py seed
  python main.py create-user alice@example.com --password s3cret --role Admin --role User
  python main.py list-users
  python main.py list-users --json
  python main.py check-login admin@task.com --password Admin123!

Environment variables (see core/config.py):
  DATABASE_URL      SQLAlchemy URL of the credential database.
  PASSWORD_SCHEME   sha256 (default) or bcrypt.
"""

import argparse
import getpass
import json
import logging
import sys
from typing import Optional

from auth.errors import AuthAppError
from auth.hashing import PasswordHasher
from auth.seed import seed_baseline
from auth.service import IdentityService
from auth.store import CredentialStore
from core.config import get_settings


def _read_password(value: Optional[str]) -> str:
    """Return the --password value, or prompt for it without echo."""
    if value is not None:
        return value
    return getpass.getpass("Password: ")


def _cmd_seed(service: IdentityService, args: argparse.Namespace) -> int:
    report = seed_baseline(service.store, service.hasher)
    if report.changed:
        print(
            f"  Seeded {report.roles_created} role(s), {report.users_created} user(s), "
            f"{report.assignments_created} assignment(s)."
        )
    else:
        print("  Baseline data already present; nothing to do.")
    return 0


def _cmd_create_user(service: IdentityService, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    try:
        user = service.create_user(args.email, password, args.role, username=args.username)
    except AuthAppError as e:
        print(f"  [!] {e}")
        return 1
    roles = ", ".join(user.roles) or "(none)"
    print(f"  Created user {user.id} <{user.email}> roles: {roles}")
    return 0


def _cmd_list_users(service: IdentityService, args: argparse.Namespace) -> int:
    users = service.list_users()
    if args.json:
        rows = [
            {
                "id": u.id,
                "username": u.username,
                "email": u.email,
                "is_active": u.is_active,
                "created_at": u.created_at,
                "roles": u.roles,
            }
            for u in users
        ]
        print(json.dumps(rows, indent=2))
        return 0
    if not users:
        print("  No users.")
        return 0
    for u in users:
        status = "active" if u.is_active else "inactive"
        print(f"  {u.id:>4}  {u.email:<32} {status:<8} {', '.join(u.roles)}")
    return 0


def _cmd_check_login(service: IdentityService, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if service.validate_credentials(args.email, password):
        roles = service.get_user_roles(args.email)
        print(f"  OK -- roles: {', '.join(roles) or '(none)'}")
        return 0
    print("  [!] Invalid credentials.")
    return 1


_COMMANDS = {
    "seed": _cmd_seed,
    "create-user": _cmd_create_user,
    "list-users": _cmd_list_users,
    "check-login": _cmd_check_login,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authapp",
        description="Manage AuthApp users and baseline data.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user alice@example.com --role User
  python main.py list-users --json
  DATABASE_URL=sqlite:///./other.db python main.py list-users
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("seed", help="Create the baseline Admin/User roles and seed accounts if missing")

    create = sub.add_parser("create-user", help="Create a user with optional roles")
    create.add_argument("email", help="Email address (also the default username)")
    create.add_argument("--password", default=None, help="Password (prompted if omitted)")
    create.add_argument("--username", default=None, help="Username (defaults to the email)")
    create.add_argument(
        "--role",
        action="append",
        default=[],
        metavar="NAME",
        help="Role to assign; repeat for several. Unknown names are ignored.",
    )

    listing = sub.add_parser("list-users", help="List users with their role names")
    listing.add_argument("--json", action="store_true", help="Output structured JSON")

    check = sub.add_parser("check-login", help="Verify an email/password pair")
    check.add_argument("email")
    check.add_argument("--password", default=None, help="Password (prompted if omitted)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = CredentialStore(args.db_url or settings.database_url)
    try:
        service = IdentityService(store, PasswordHasher(settings.password_scheme))
        return _COMMANDS[args.command](service, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
