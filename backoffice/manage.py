"""Operator commands for bootstrapping and recovering accounts."""

from __future__ import annotations

import argparse
import logging
import sys

from psycopg_pool import ConnectionPool

from .config import get_settings
from .domain.commands import AdminCommands
from .domain.contracts import CreateAccountInput
from .domain.errors import AccountError
from .domain.service import AccountService
from .repository import AccountRepository

logger = logging.getLogger(__name__)

OPERATOR_ACTOR = "operator"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back-office account management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-user", help="Create an account")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--password", required=True)

    suspend = subparsers.add_parser("suspend", help="Suspend an account by e-mail")
    suspend.add_argument("--email", required=True)

    unsuspend = subparsers.add_parser("unsuspend", help="Lift a suspension by e-mail")
    unsuspend.add_argument("--email", required=True)
    return parser


def execute(args: argparse.Namespace, service: AccountService) -> int:
    """Run a parsed command against ``service`` and return the exit status."""
    if args.command == "create-user":
        try:
            account = service.create_account(
                CreateAccountInput(name=args.name, email=args.email, password=args.password),
                actor=OPERATOR_ACTOR,
            )
        except AccountError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        print(f"created {account.email} ({account.account_id})")
        return 0

    account = service.get_account_by_email(args.email)
    if account is None:
        print(f"error: no account with email {args.email}", file=sys.stderr)
        return 1

    commands = AdminCommands(service)
    if args.command == "suspend":
        result = commands.suspend(account.account_id, OPERATOR_ACTOR)
    else:
        result = commands.unsuspend(account.account_id, OPERATOR_ACTOR)
    print(result.message, file=sys.stdout if result.ok else sys.stderr)
    return 0 if result.ok else 1


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    settings = get_settings()
    with ConnectionPool(settings.database_url) as pool:
        repository = AccountRepository(pool)
        repository.apply_schema()
        return execute(args, AccountService(repository))


if __name__ == "__main__":
    sys.exit(main())
