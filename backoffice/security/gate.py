"""Per-request suspension gate.

Every request under the protected prefix is checked once before its
handler runs. Suspended accounts and sessions whose account has vanished are
logged out, their session is destroyed and re-issued under a new identifier,
and the client is redirected to the login page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from fastapi import Request, Response, status
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ..config import get_settings
from ..domain.account import Account
from ..domain.errors import (
    IdentityResolutionFailure,
    PersistenceError,
    STORE_UNAVAILABLE_MESSAGE,
    SUSPENDED_MESSAGE,
)
from ..domain.service import AccountService
from ..metrics import GATE_DECISIONS

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    """Operations the gate consumes from the authentication subsystem."""

    def current_identity(self) -> str | None: ...

    def logout(self) -> None: ...

    def invalidate_session(self) -> None: ...

    def regenerate_session_id(self) -> None: ...

    def flash(self, key: str, value: Any) -> None: ...


class Decision(str, Enum):
    unauthenticated = "unauthenticated"
    identity_lost = "identity_lost"
    suspended = "suspended"
    active = "active"


@dataclass(slots=True)
class GateDecision:
    decision: Decision
    account: Account | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.active


class SuspensionGate:
    """Decide whether an authenticated session may proceed."""

    def __init__(self, service: AccountService) -> None:
        self._service = service

    def check(self, auth: Authenticator) -> GateDecision:
        """Evaluate the request's session, terminating it when it must not continue.

        Raises ``PersistenceError`` when the account lookup itself fails. A
        failed forced-logout audit does not change the decision.
        """
        account_id = auth.current_identity()
        if account_id is None:
            return GateDecision(Decision.unauthenticated)

        try:
            account = self._service.resolve_identity(account_id)
        except IdentityResolutionFailure:
            logger.warning("session references missing account %s, logging out", account_id)
            self._terminate(auth)
            return GateDecision(Decision.identity_lost)

        if self._service.is_suspended(account):
            logger.info("account %s is suspended, forcing logout", account.account_id)
            self._terminate(auth)
            auth.flash("errors", {"email": [SUSPENDED_MESSAGE]})
            self._service.record_forced_logout(account.account_id, "suspended")
            return GateDecision(Decision.suspended, account)

        return GateDecision(Decision.active, account)

    def _terminate(self, auth: Authenticator) -> None:
        auth.logout()
        auth.invalidate_session()
        auth.regenerate_session_id()


class SuspensionGateMiddleware(BaseHTTPMiddleware):
    """Apply :class:`SuspensionGate` to every request under the protected prefix.

    Must sit inside the session middleware so ``request.state.auth`` exists.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        settings = get_settings()
        path = request.url.path
        prefix = settings.protected_prefix
        if path != prefix and not path.startswith(prefix + "/"):
            return await call_next(request)

        gate = SuspensionGate(request.app.state.account_service)
        login_redirect = RedirectResponse(settings.login_path, status_code=status.HTTP_303_SEE_OTHER)
        try:
            result = await run_in_threadpool(gate.check, request.state.auth)
        except PersistenceError as exc:
            # the account could not be checked, so the request must not proceed
            logger.error("suspension gate could not load account: %s", exc)
            GATE_DECISIONS.labels(decision="error").inc()
            request.state.auth.flash("errors", {"email": [STORE_UNAVAILABLE_MESSAGE]})
            return login_redirect

        GATE_DECISIONS.labels(decision=result.decision.value).inc()
        if not result.allowed:
            return login_redirect

        request.state.account = result.account
        return await call_next(request)
