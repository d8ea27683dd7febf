#!/usr/bin/env python3
"""
Capgate -- administrative command line for the auth core.

Usage:
  python main.py seed-roles
  python main.py create-user --username alice --password 's3cret-pass' --role editor
  python main.py create-user --username bob --password 's3cret-pass' --email bob@example.com
  python main.py issue-key --username alice

Environment variables:
  SECRET_KEY      Signing secret (required unless DEBUG=true). At least 32 characters.
  DATABASE_URL    SQLAlchemy URL of the credential store. Defaults to ./capgate_auth.db.
  TOKEN_LIFETIME  Lifetime of "user" tokens: seconds or 30s / 5m / 1h / 1d. Default 5m.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.authenticator import Authenticator
from auth.errors import AuthError
from auth.models import ROLES, Identity
from auth.roles import DEFAULT_ROLES, RoleRegistry
from auth.store import UserStore
from auth.tokens import get_token_service
from core.config import get_settings


def _build() -> tuple[UserStore, RoleRegistry, Authenticator]:
    store = UserStore(get_settings().database_url)
    registry = RoleRegistry(store)
    return store, registry, Authenticator(store, registry, get_token_service())


def cmd_seed_roles(args: argparse.Namespace, registry: RoleRegistry, authenticator: Authenticator) -> int:
    result = registry.seed(DEFAULT_ROLES)
    print(f"  Created: {', '.join(result.created) or '-'}")
    print(f"  Already present: {', '.join(result.skipped) or '-'}")
    return 0


def cmd_create_user(args: argparse.Namespace, registry: RoleRegistry, authenticator: Authenticator) -> int:
    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    try:
        session = authenticator.signup(args.username, password, email=args.email, role=args.role)
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' (or with that email) already exists.")
        return 1
    print(f"  Created user '{args.username}' (id={session.identity.user_id}, role={args.role}).")
    return 0


def cmd_issue_key(args: argparse.Namespace, registry: RoleRegistry, authenticator: Authenticator) -> int:
    user = authenticator.store.find_user_by_username(args.username)
    if user is None:
        print(f"  [!] No user named '{args.username}'.")
        return 1
    key = authenticator.create_key(Identity(user_id=user.id))
    # The key is printed once and never stored.
    print(key)
    return 0


_COMMANDS = {
    "seed-roles": cmd_seed_roles,
    "create-user": cmd_create_user,
    "issue-key": cmd_issue_key,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="capgate",
        description="Administer users, roles and key tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-roles
  python main.py create-user --username admin --role admin
  python main.py issue-key --username admin > admin.key
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed-roles", help="Create the default admin/editor/user roles if missing.")

    create = sub.add_parser("create-user", help="Create a local user account.")
    create.add_argument("--username", required=True)
    create.add_argument("--password", help="Prompted for when omitted.")
    create.add_argument("--email")
    create.add_argument("--role", choices=ROLES, default="user")

    key = sub.add_parser("issue-key", help="Print a non-expiring key token for a user.")
    key.add_argument("--username", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    store, registry, authenticator = _build()
    try:
        return _COMMANDS[args.command](args, registry, authenticator)
    except AuthError as exc:
        print(f"  [!] {exc.code}: {exc.message}")
        return 2
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
