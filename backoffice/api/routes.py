"""HTTP route definitions for the back-office service."""

from __future__ import annotations

import logging

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..config import get_settings
from ..domain.account import Account
from ..domain.commands import AdminCommands, CommandResult, Outcome
from ..domain.contracts import MAX_FIELD_LENGTH, CreateAccountInput, UpdateAccountInput
from ..domain.errors import (
    INVALID_CREDENTIALS_MESSAGE,
    SUSPENDED_MESSAGE,
    AccountError,
    AccountNotFound,
    AccountSuspended,
    DuplicateEmail,
    InvalidAccountData,
    InvalidCredentials,
    PersistenceError,
)
from ..domain.service import AccountService
from ..metrics import LOGIN_ATTEMPTS
from ..security.auth import SessionAuthenticator, get_authenticator
from ..security.redis_throttle import RedisLoginThrottle
from ..security.throttle import LoginThrottle

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter(prefix="/admin")


class AccountResponse(BaseModel):
    """Serialised representation of an `Account` aggregate."""

    account_id: str
    name: str
    email: str
    initials: str
    email_verified_at: datetime | None
    suspended_at: datetime | None
    suspended: bool
    status_label: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        if account.suspended_at is not None:
            label = f"Suspended on: {account.suspended_at:%b %d, %Y %H:%M}"
        else:
            label = "Active"
        return cls(
            account_id=account.account_id,
            name=account.name,
            email=account.email,
            initials=account.initials,
            email_verified_at=account.email_verified_at,
            suspended_at=account.suspended_at,
            suspended=account.is_suspended,
            status_label=label,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., max_length=MAX_FIELD_LENGTH)


class LoginPageResponse(BaseModel):
    """Flashed state shown by the login page."""

    errors: dict[str, list[str]] = Field(default_factory=dict)
    status: str | None = None


class CreateAccountRequest(BaseModel):
    """Payload accepted when creating an account from the admin screen."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)
    email: EmailStr = Field(..., max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., min_length=1, max_length=MAX_FIELD_LENGTH)


class UpdateAccountRequest(BaseModel):
    """Partial edit payload; suspension state is changed through its own actions."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=MAX_FIELD_LENGTH)
    email: EmailStr | None = Field(default=None, max_length=MAX_FIELD_LENGTH)
    password: str | None = Field(default=None, max_length=MAX_FIELD_LENGTH)


class CommandResultResponse(BaseModel):
    """Outcome of an administrative command for display by the UI."""

    ok: bool
    outcome: Outcome
    message: str
    account: AccountResponse | None = None

    @classmethod
    def from_result(cls, result: CommandResult) -> "CommandResultResponse":
        return cls(
            ok=result.ok,
            outcome=result.outcome,
            message=result.message,
            account=AccountResponse.from_domain(result.account) if result.account else None,
        )


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None


settings = get_settings()

_OUTCOME_STATUS = {
    Outcome.succeeded: status.HTTP_200_OK,
    Outcome.policy_violation: status.HTTP_403_FORBIDDEN,
    Outcome.not_found: status.HTTP_404_NOT_FOUND,
    Outcome.failed: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _build_login_throttle() -> LoginThrottle | RedisLoginThrottle:
    """Instantiate the configured throttle backend, preferring Redis when available."""
    if settings.session_backend == "redis" and settings.redis_url:
        try:
            import redis

            client = redis.from_url(settings.redis_url)
            # ensure connectivity early to fail fast and fall back
            client.ping()
            logger.info("login throttle configured for redis backend at %s", settings.redis_url)
            return RedisLoginThrottle(
                client,
                max_attempts=settings.login_max_attempts,
                decay_seconds=settings.login_decay_seconds,
            )
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("redis login throttle unavailable, falling back to in-memory: %s", exc)

    logger.info("login throttle using in-memory backend")
    return LoginThrottle(
        max_attempts=settings.login_max_attempts,
        decay_seconds=settings.login_decay_seconds,
    )


login_throttle = _build_login_throttle()


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_commands(service: AccountService = Depends(get_service)) -> AdminCommands:
    return AdminCommands(service)


def get_acting_account(request: Request) -> Account:
    """Return the administrator the suspension gate resolved for this request."""
    account: Account | None = getattr(request.state, "account", None)
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")
    return account


def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(path, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/login", response_model=LoginPageResponse)
def login_page(auth: SessionAuthenticator = Depends(get_authenticator)) -> LoginPageResponse:
    """Return messages flashed by the previous redirect."""
    flashed = auth.pull_flash()
    return LoginPageResponse(errors=flashed.get("errors", {}), status=flashed.get("status"))


@router.post("/login", status_code=status.HTTP_303_SEE_OTHER)
def login(
    payload: LoginRequest,
    request: Request,
    service: AccountService = Depends(get_service),
    auth: SessionAuthenticator = Depends(get_authenticator),
) -> RedirectResponse:
    """Authenticate with e-mail and password, starting a new session on success."""
    client_host = request.client.host if request.client else "unknown"
    throttle_key = f"{payload.email.strip().lower()}|{client_host}"
    # counts the attempt up front so concurrent guesses cannot exceed the limit
    if not login_throttle.attempt(throttle_key):
        LOGIN_ATTEMPTS.labels(result="throttled").inc()
        seconds = login_throttle.available_in(throttle_key)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many login attempts. Please try again in {seconds} seconds.",
        )

    try:
        account = service.authenticate(payload.email, payload.password)
    except InvalidCredentials:
        LOGIN_ATTEMPTS.labels(result="invalid").inc()
        auth.flash("errors", {"email": [INVALID_CREDENTIALS_MESSAGE]})
        return _redirect(settings.login_path)
    except AccountSuspended:
        # the credentials were right, so the attempt is not held against the key
        login_throttle.clear(throttle_key)
        LOGIN_ATTEMPTS.labels(result="suspended").inc()
        auth.flash("errors", {"email": [SUSPENDED_MESSAGE]})
        return _redirect(settings.login_path)
    except PersistenceError as exc:
        raise _http_error(exc) from exc

    login_throttle.clear(throttle_key)
    LOGIN_ATTEMPTS.labels(result="ok").inc()
    auth.login(account.account_id)
    return _redirect(settings.home_path)


@router.post("/logout", status_code=status.HTTP_303_SEE_OTHER)
def logout(auth: SessionAuthenticator = Depends(get_authenticator)) -> RedirectResponse:
    auth.logout()
    auth.invalidate_session()
    auth.regenerate_session_id()
    auth.flash("status", "You have been logged out.")
    return _redirect(settings.login_path)


@admin_router.get("/users", response_model=list[AccountResponse])
def list_users(
    suspended: bool | None = Query(default=None),
    service: AccountService = Depends(get_service),
) -> list[AccountResponse]:
    """List accounts, optionally only suspended (``true``) or active (``false``) ones."""
    try:
        accounts = service.list_accounts(suspended=suspended)
    except AccountError as exc:
        raise _http_error(exc) from exc
    return [AccountResponse.from_domain(account) for account in accounts]


@admin_router.post("/users", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: CreateAccountRequest,
    actor: Account = Depends(get_acting_account),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    try:
        account = service.create_account(
            CreateAccountInput(name=payload.name, email=payload.email, password=payload.password),
            actor=actor.account_id,
        )
    except AccountError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(account)


@admin_router.get("/users/{account_id}", response_model=AccountResponse)
def get_user(account_id: str, service: AccountService = Depends(get_service)) -> AccountResponse:
    try:
        account = service.require_account(account_id)
    except AccountError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(account)


@admin_router.patch("/users/{account_id}", response_model=AccountResponse)
def update_user(
    account_id: str,
    payload: UpdateAccountRequest,
    actor: Account = Depends(get_acting_account),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    """Edit an account. A blank password keeps the current one."""
    try:
        account = service.update_account(
            account_id,
            UpdateAccountInput(name=payload.name, email=payload.email, password=payload.password),
            actor=actor.account_id,
        )
    except AccountError as exc:
        raise _http_error(exc) from exc
    return AccountResponse.from_domain(account)


@admin_router.delete("/users/{account_id}", response_model=CommandResultResponse)
def delete_user(
    account_id: str,
    response: Response,
    actor: Account = Depends(get_acting_account),
    commands: AdminCommands = Depends(get_commands),
) -> CommandResultResponse:
    return _command_response(response, commands.delete(account_id, actor.account_id))


@admin_router.post("/users/{account_id}/suspend", response_model=CommandResultResponse)
def suspend_user(
    account_id: str,
    response: Response,
    actor: Account = Depends(get_acting_account),
    commands: AdminCommands = Depends(get_commands),
) -> CommandResultResponse:
    """Suspend an account; the user is logged out on their next request."""
    return _command_response(response, commands.suspend(account_id, actor.account_id))


@admin_router.post("/users/{account_id}/unsuspend", response_model=CommandResultResponse)
def unsuspend_user(
    account_id: str,
    response: Response,
    actor: Account = Depends(get_acting_account),
    commands: AdminCommands = Depends(get_commands),
) -> CommandResultResponse:
    return _command_response(response, commands.unsuspend(account_id, actor.account_id))


@admin_router.get("/audit/logs", response_model=AuditLogResponse)
def list_audit_logs(
    account_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    service: AccountService = Depends(get_service),
) -> AuditLogResponse:
    """Return paginated audit events with optional filtering."""
    try:
        records, next_cursor = service.list_audit_events(
            account_id=account_id,
            event_type=event_type,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=cursor,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AccountError as exc:
        raise _http_error(exc) from exc

    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            account_id=record.account_id,
            event_type=record.event_type,
            actor=record.actor,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)


def _command_response(response: Response, result: CommandResult) -> CommandResultResponse:
    response.status_code = _OUTCOME_STATUS[result.outcome]
    return CommandResultResponse.from_result(result)


def _http_error(exc: AccountError) -> HTTPException:
    if isinstance(exc, AccountNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, DuplicateEmail):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"email": ["The email has already been taken."]},
        )
    if isinstance(exc, InvalidAccountData):
        return HTTPException(status_code=422, detail=exc.errors)
    if isinstance(exc, PersistenceError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="account store unavailable"
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
