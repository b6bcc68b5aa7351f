from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class Account:
    """Aggregate root for a back-office user."""

    account_id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    email_verified_at: datetime | None = None
    suspended_at: datetime | None = None

    @property
    def is_suspended(self) -> bool:
        """Return ``True`` when the account carries a suspension timestamp."""
        return self.suspended_at is not None

    @property
    def initials(self) -> str:
        return "".join(part[0] for part in self.name.split() if part)
