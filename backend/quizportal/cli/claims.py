"""Role-claim administration for portal users.

    quizportal-admin list-admins [--role operational] [--all]
    quizportal-admin set-claim user@example.com [--role operational] [--unset]

Users must sign in again before a changed claim shows up in their client.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable, Sequence
from typing import NoReturn

from sqlalchemy.exc import SQLAlchemyError

from quizportal.core.config import get_settings
from quizportal.core.logging import configure_logging
from quizportal.domain.auth import KNOWN_ROLES, ROLE_ADMIN
from quizportal.domain.errors import PortalError
from quizportal.domain.models import UserRecord
from quizportal.infra.db.session import init_db
from quizportal.infra.identity.database import DatabaseIdentityDirectory
from quizportal.infra.ports.identity import IdentityDirectoryPort

logger = logging.getLogger(__name__)

DirectoryFactory = Callable[[], IdentityDirectoryPort]


def _default_directory() -> IdentityDirectoryPort:
    init_db()
    return DatabaseIdentityDirectory()


class UsageError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    """Reports bad arguments as ``UsageError`` so ``main`` can exit with 1."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        raise UsageError(f"{self.prog}: error: {message}")


def _build_parser() -> _Parser:
    parser = _Parser(prog="quizportal-admin", description="Manage admin/operational role claims")
    sub = parser.add_subparsers(dest="command")

    list_cmd = sub.add_parser("list-admins", help="List users holding a role claim")
    list_cmd.add_argument("--role", default=ROLE_ADMIN, type=str.lower)
    list_cmd.add_argument("--all", action="store_true", help="Print every user and their claims")

    set_cmd = sub.add_parser("set-claim", help="Grant or remove a role claim")
    set_cmd.add_argument("email", nargs="?")
    set_cmd.add_argument("--role", default=ROLE_ADMIN, type=str.lower)
    set_cmd.add_argument("--unset", action="store_true", help="Remove the role instead of granting it")
    return parser


def _print_users(users: Sequence[UserRecord], *, role: str, show_all: bool) -> None:
    selected = users if show_all else [user for user in users if user.claims.get(role) is True]
    if not selected:
        print("No users found." if show_all else f"No {role} users found.")
        return
    for user in selected:
        print(f"- email: {user.email or '(no email)'}")
        print(f"  uid  : {user.uid}")
        print(f"  claims: {dict(user.claims)}")


def _open_directory(factory: DirectoryFactory) -> IdentityDirectoryPort | None:
    try:
        return factory()
    except (PortalError, SQLAlchemyError, OSError) as exc:
        print(f"Failed to initialize identity directory: {exc}", file=sys.stderr)
        return None


def _list_admins(args: argparse.Namespace, factory: DirectoryFactory) -> int:
    directory = _open_directory(factory)
    if directory is None:
        return 1
    try:
        users = directory.list_users()
    except (PortalError, SQLAlchemyError) as exc:
        print(f"Failed to list users: {exc}", file=sys.stderr)
        return 1
    _print_users(users, role=args.role, show_all=args.all)
    return 0


def _set_claim(args: argparse.Namespace, factory: DirectoryFactory) -> int:
    directory = _open_directory(factory)
    if directory is None:
        return 1
    try:
        user = directory.get_user_by_email(args.email)
        if user is None:
            print(f"Error setting custom claims: no user with email {args.email}", file=sys.stderr)
            return 1
        claims = dict(user.claims)
        if args.unset:
            claims.pop(args.role, None)
        else:
            claims[args.role] = True
        updated = directory.set_custom_claims(user.uid, claims)
    except (PortalError, SQLAlchemyError) as exc:
        print(f"Error setting custom claims: {exc}", file=sys.stderr)
        return 1
    logger.info("%s claim %s for %s", args.role, "removed" if args.unset else "granted", updated.uid)
    print(f"Success. {args.role} claim updated for {args.email} => {dict(updated.claims)}")
    print("Note: sign out and sign back in for the client to see updated claims.")
    return 0


def main(argv: Sequence[str] | None = None, *, directory_factory: DirectoryFactory | None = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        return 1
    if args.command is None:
        parser.print_usage()
        return 1
    if args.command == "set-claim" and not args.email:
        print("usage: quizportal-admin set-claim <email> [--role admin|operational] [--unset]")
        return 1
    if args.role not in KNOWN_ROLES:
        print(f"Role must be one of: {', '.join(KNOWN_ROLES)}", file=sys.stderr)
        return 1

    configure_logging(get_settings().log_level)
    factory = directory_factory or _default_directory
    if args.command == "list-admins":
        return _list_admins(args, factory)
    return _set_claim(args, factory)


if __name__ == "__main__":
    raise SystemExit(main())
