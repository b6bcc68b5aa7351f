"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import EmailStr, TypeAdapter, ValidationError

from .errors import InvalidAccountData

MAX_FIELD_LENGTH = 255


def _check_length(errors: dict[str, list[str]], field: str, value: str | None) -> None:
    if value is not None and len(value) > MAX_FIELD_LENGTH:
        errors.setdefault(field, []).append(
            f"The {field} may not be greater than {MAX_FIELD_LENGTH} characters."
        )


_EMAIL = TypeAdapter(EmailStr)


def _check_email(errors: dict[str, list[str]], value: str | None) -> None:
    if value is None:
        return
    try:
        _EMAIL.validate_python(value.strip())
    except ValidationError:
        errors.setdefault("email", []).append("The email must be a valid email address.")


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to create a back-office account."""

    name: str
    email: str
    password: str

    def validate(self) -> None:
        errors: dict[str, list[str]] = {}
        for field in ("name", "email", "password"):
            if not getattr(self, field).strip():
                errors.setdefault(field, []).append(f"The {field} field is required.")
            _check_length(errors, field, getattr(self, field))
        if self.email.strip():
            _check_email(errors, self.email)
        if errors:
            raise InvalidAccountData(errors)


@dataclass(slots=True)
class UpdateAccountInput:
    """Partial edit of an account; ``None`` leaves a field untouched.

    A blank ``password`` keeps the current credential.
    """

    name: str | None = None
    email: str | None = None
    password: str | None = None

    def validate(self) -> None:
        errors: dict[str, list[str]] = {}
        for field in ("name", "email"):
            value = getattr(self, field)
            if value is not None and not value.strip():
                errors.setdefault(field, []).append(f"The {field} field is required.")
            _check_length(errors, field, value)
        _check_length(errors, "password", self.password)
        if self.email is not None and self.email.strip():
            _check_email(errors, self.email)
        if errors:
            raise InvalidAccountData(errors)

    @property
    def changes_password(self) -> bool:
        return bool(self.password)
