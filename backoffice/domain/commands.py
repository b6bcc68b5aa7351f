"""Administrator-facing commands with caller-side policies.

The acting administrator is always passed in explicitly so the commands can
be exercised without a request context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .account import Account
from .errors import AccountNotFound, PersistenceError, PolicyViolation
from .service import AccountService
from ..metrics import ADMIN_COMMANDS

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    succeeded = "succeeded"
    policy_violation = "policy_violation"
    not_found = "not_found"
    failed = "failed"


@dataclass(slots=True)
class CommandResult:
    """Result handed back to the admin UI layer for display."""

    outcome: Outcome
    message: str
    account: Account | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.succeeded


class AdminCommands:
    """Suspend, unsuspend and delete accounts on behalf of an administrator."""

    def __init__(self, service: AccountService) -> None:
        self._service = service

    def suspend(self, account_id: str, acting_admin_id: str) -> CommandResult:
        """Suspend ``account_id`` unless it belongs to the acting administrator."""
        return self._run(
            "suspend",
            account_id,
            acting_admin_id,
            guard_self="You cannot suspend yourself.",
            success="User Suspended",
        )

    def unsuspend(self, account_id: str, acting_admin_id: str | None = None) -> CommandResult:
        return self._run(
            "unsuspend",
            account_id,
            acting_admin_id,
            guard_self=None,
            success="User Unsuspended",
        )

    def delete(self, account_id: str, acting_admin_id: str) -> CommandResult:
        return self._run(
            "delete",
            account_id,
            acting_admin_id,
            guard_self="You cannot delete yourself.",
            success="User Deleted",
        )

    def _run(
        self,
        command: str,
        account_id: str,
        acting_admin_id: str | None,
        *,
        guard_self: str | None,
        success: str,
    ) -> CommandResult:
        try:
            if guard_self is not None and account_id == acting_admin_id:
                raise PolicyViolation(guard_self)
            account = self._service.require_account(account_id)
            if command == "suspend":
                account = self._service.suspend(account, actor=acting_admin_id)
            elif command == "unsuspend":
                account = self._service.unsuspend(account, actor=acting_admin_id)
            else:
                self._service.delete_account(account_id, actor=acting_admin_id)
                account = None
            result = CommandResult(Outcome.succeeded, success, account)
        except PolicyViolation as exc:
            logger.warning("%s of %s refused for %s: %s", command, account_id, acting_admin_id, exc)
            result = CommandResult(Outcome.policy_violation, str(exc))
        except AccountNotFound as exc:
            result = CommandResult(Outcome.not_found, "User not found.")
            logger.info("%s skipped: %s", command, exc)
        except PersistenceError as exc:
            logger.error("%s of %s failed: %s", command, account_id, exc)
            result = CommandResult(Outcome.failed, "The change could not be saved. Please try again.")

        ADMIN_COMMANDS.labels(command=command, outcome=result.outcome.value).inc()
        return result
