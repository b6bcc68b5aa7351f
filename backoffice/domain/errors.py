"""Exception types raised by the account domain."""

from __future__ import annotations

SUSPENDED_MESSAGE = "Your account has been suspended."
INVALID_CREDENTIALS_MESSAGE = "These credentials do not match our records."
STORE_UNAVAILABLE_MESSAGE = "We could not verify your account right now. Please try again."


class AccountError(Exception):
    """Base class for account workflow failures."""


class PersistenceError(AccountError):
    """The underlying store failed to read or write a record."""


class AccountNotFound(AccountError):
    def __init__(self, account_id: str) -> None:
        super().__init__(f"account {account_id} not found")
        self.account_id = account_id


class DuplicateEmail(AccountError):
    def __init__(self, email: str) -> None:
        super().__init__("the email has already been taken")
        self.email = email


class InvalidAccountData(AccountError):
    """Submitted account fields failed validation.

    ``errors`` maps each offending field to a list of messages.
    """

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__("invalid account data")
        self.errors = errors


class PolicyViolation(AccountError):
    """An administrator attempted an action the caller policy forbids."""


class IdentityResolutionFailure(AccountError):
    """An authenticated session references an account that no longer exists."""


class InvalidCredentials(AccountError):
    """The e-mail and password pair did not match a stored account."""


class AccountSuspended(AccountError):
    """Login was attempted for an account carrying a suspension timestamp."""
