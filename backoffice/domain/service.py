"""Account service orchestrating persistence, suspension state, and auditing."""

from __future__ import annotations

from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timezone
import json
import logging
from typing import Tuple, Optional

from .account import Account
from .contracts import CreateAccountInput, UpdateAccountInput
from .errors import (
    AccountNotFound,
    AccountSuspended,
    DuplicateEmail,
    IdentityResolutionFailure,
    InvalidCredentials,
    PersistenceError,
)
from ..repository import AccountRepository, AuditLogRecord
from ..security.passwords import burn_verification, hash_password, verify_password

logger = logging.getLogger(__name__)


class AccountService:
    """Account workflows backed by Postgres storage.

    ``suspend`` and ``unsuspend`` are the only code paths that write the
    suspension timestamp; both record an audit event.
    """

    def __init__(self, repository: AccountRepository) -> None:
        """Store the repository used for persistence and auditing."""
        self._repository = repository

    def is_suspended(self, account: Account) -> bool:
        """Return ``True`` iff the account carries a suspension timestamp."""
        return account.suspended_at is not None

    def suspend(self, account: Account, *, actor: str | None = None) -> Account:
        """Suspend ``account`` as of now and return the persisted record.

        Suspending an already suspended account keeps its original timestamp.
        """
        updated = self._repository.mark_suspended(
            account.account_id, datetime.now(timezone.utc), actor=actor
        )
        if updated is None:
            raise AccountNotFound(account.account_id)
        logger.info("account %s suspended by %s", updated.account_id, actor)
        return updated

    def unsuspend(self, account: Account, *, actor: str | None = None) -> Account:
        """Lift the suspension on ``account``; a no-op for active accounts."""
        updated = self._repository.clear_suspension(account.account_id, actor=actor)
        if updated is None:
            raise AccountNotFound(account.account_id)
        logger.info("account %s unsuspended by %s", updated.account_id, actor)
        return updated

    def create_account(self, payload: CreateAccountInput, *, actor: str | None = None) -> Account:
        """Validate and persist a new account, hashing its password."""
        payload.validate()
        email = payload.email.strip()
        if self._repository.get_account_by_email(email) is not None:
            raise DuplicateEmail(email)
        return self._repository.create_account(
            name=payload.name.strip(),
            email=email,
            password_hash=hash_password(payload.password),
            actor=actor,
        )

    def get_account(self, account_id: str) -> Account | None:
        return self._repository.get_account(account_id)

    def get_account_by_email(self, email: str) -> Account | None:
        return self._repository.get_account_by_email(email.strip())

    def require_account(self, account_id: str) -> Account:
        """Return the account or raise ``AccountNotFound``."""
        account = self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def resolve_identity(self, account_id: str) -> Account:
        """Load the account behind an authenticated session.

        Raises ``IdentityResolutionFailure`` when the record is gone.
        """
        account = self._repository.get_account(account_id)
        if account is None:
            raise IdentityResolutionFailure(account_id)
        return account

    def list_accounts(self, *, suspended: bool | None = None) -> list[Account]:
        """List accounts; ``suspended`` narrows to suspended or active ones."""
        return self._repository.list_accounts(suspended=suspended)

    def update_account(
        self, account_id: str, payload: UpdateAccountInput, *, actor: str | None = None
    ) -> Account:
        """Edit identity fields. The suspension timestamp is not editable here."""
        payload.validate()
        current = self.require_account(account_id)
        name = payload.name.strip() if payload.name is not None else None
        email = payload.email.strip() if payload.email is not None else None
        if email is not None and email.lower() != current.email.lower():
            other = self._repository.get_account_by_email(email)
            if other is not None and other.account_id != account_id:
                raise DuplicateEmail(email)

        changed = [
            field
            for field, value in (("name", name), ("email", email))
            if value is not None and value != getattr(current, field)
        ]
        if payload.changes_password:
            changed.append("password")
        updated = self._repository.update_account(
            account_id,
            name=name,
            email=email,
            password_hash=hash_password(payload.password) if payload.changes_password else None,
            actor=actor,
            changed_fields=changed,
        )
        if updated is None:
            raise AccountNotFound(account_id)
        return updated

    def delete_account(self, account_id: str, *, actor: str | None = None) -> None:
        if not self._repository.delete_account(account_id, actor=actor):
            raise AccountNotFound(account_id)

    def authenticate(self, email: str, password: str) -> Account:
        """Check credentials for a login attempt.

        Raises ``InvalidCredentials`` on mismatch and ``AccountSuspended`` when
        the credentials are valid but the account is suspended.
        """
        account = self._repository.get_account_by_email(email.strip())
        if account is None:
            burn_verification(password)
            raise InvalidCredentials(email)
        if not verify_password(password, account.password_hash):
            raise InvalidCredentials(email)
        if self.is_suspended(account):
            self._repository.write_audit_event(
                account_id=account.account_id,
                event_type="session.login_rejected",
                actor=account.account_id,
                metadata={"reason": "suspended"},
            )
            raise AccountSuspended(account.account_id)
        self._repository.write_audit_event(
            account_id=account.account_id,
            event_type="session.login",
            actor=account.account_id,
            metadata={},
        )
        return account

    def record_forced_logout(self, account_id: str, reason: str) -> None:
        """Audit a gate-initiated logout. Failures are logged, never raised."""
        try:
            self._repository.write_audit_event(
                account_id=account_id,
                event_type="session.forced_logout",
                actor=None,
                metadata={"reason": reason},
            )
        except PersistenceError as exc:
            logger.error("could not audit forced logout of %s: %s", account_id, exc)

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit log records with optional filters and cursor pagination."""
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = self._repository.list_audit_events(
            account_id=account_id,
            event_type=event_type,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=decoded_cursor,
        )
        next_cursor = self._encode_cursor(next_cursor_tuple) if next_cursor_tuple else None
        return records, next_cursor

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            created_at = datetime.fromisoformat(data["created_at"])
            audit_id = int(data["audit_id"])
            return created_at, audit_id
        except Exception as exc:
            raise ValueError("invalid cursor") from exc
