from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock

import pytest
from fastapi.testclient import TestClient

from backoffice.api import routes
from backoffice.domain.account import Account
from backoffice.domain.contracts import CreateAccountInput
from backoffice.domain.errors import DuplicateEmail, PersistenceError
from backoffice.domain.service import AccountService
from backoffice.main import build_app
from backoffice.security.sessions import MemorySessionStore
from backoffice.security.throttle import LoginThrottle

ADMIN_PASSWORD = "admin-secret"
USER_PASSWORD = "user-secret"


@dataclass
class FakeAuditLogRecord:
    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict
    created_at: datetime


class FakeRepository:
    """In-memory repository mimicking Postgres-backed behaviors.

    Account writers record their audit entry in the same step, so a failing
    audit write leaves the account untouched.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self.audit_log: list[FakeAuditLogRecord] = []
        self._audit_seq = 0
        self._lock = Lock()
        self.fail_writes = False
        self.fail_reads = False
        self.fail_audit = False

    def add(self, account: Account) -> Account:
        """Seed a stored record directly."""
        self._accounts[account.account_id] = dataclasses.replace(account)
        return account

    def _check_write(self) -> None:
        if self.fail_writes:
            raise PersistenceError("write failed")

    def _check_audit(self) -> None:
        if self.fail_writes or self.fail_audit:
            raise PersistenceError("audit write failed")

    def _check_read(self) -> None:
        if self.fail_reads:
            raise PersistenceError("read failed")

    def _copy(self, account: Account | None) -> Account | None:
        return dataclasses.replace(account) if account is not None else None

    def _append_audit(self, account_id, event_type, actor, metadata) -> None:
        self._audit_seq += 1
        self.audit_log.append(
            FakeAuditLogRecord(
                audit_id=self._audit_seq,
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata,
                created_at=datetime.now(timezone.utc),
            )
        )

    def create_account(self, *, name: str, email: str, password_hash: str, actor=None) -> Account:
        self._check_write()
        with self._lock:
            if any(a.email.lower() == email.lower() for a in self._accounts.values()):
                raise DuplicateEmail(email)
            self._check_audit()
            now = datetime.now(timezone.utc)
            account = Account(
                account_id=str(uuid.uuid4()),
                name=name,
                email=email,
                password_hash=password_hash,
                created_at=now,
                updated_at=now,
            )
            self._accounts[account.account_id] = account
            self._append_audit(account.account_id, "account.created", actor, {"email": email})
            return self._copy(account)

    def get_account(self, account_id: str) -> Account | None:
        self._check_read()
        return self._copy(self._accounts.get(account_id))

    def get_account_by_email(self, email: str) -> Account | None:
        self._check_read()
        for account in self._accounts.values():
            if account.email.lower() == email.lower():
                return self._copy(account)
        return None

    def list_accounts(self, *, suspended: bool | None = None) -> list[Account]:
        self._check_read()
        accounts = sorted(self._accounts.values(), key=lambda a: (a.created_at, a.account_id))
        if suspended is not None:
            accounts = [a for a in accounts if (a.suspended_at is not None) == suspended]
        return [self._copy(a) for a in accounts]

    def update_account(
        self, account_id, *, name=None, email=None, password_hash=None, actor=None, changed_fields=None
    ):
        self._check_write()
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            self._check_audit()
            if name is not None:
                account.name = name
            if email is not None:
                account.email = email
            if password_hash is not None:
                account.password_hash = password_hash
            account.updated_at = datetime.now(timezone.utc)
            self._append_audit(account_id, "account.updated", actor, {"fields": changed_fields or []})
            return self._copy(account)

    def delete_account(self, account_id: str, *, actor=None) -> bool:
        self._check_write()
        with self._lock:
            if account_id not in self._accounts:
                return False
            self._check_audit()
            del self._accounts[account_id]
            self._append_audit(account_id, "account.deleted", actor, {})
            return True

    def mark_suspended(self, account_id: str, at: datetime, *, actor=None) -> Account | None:
        self._check_write()
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            self._check_audit()
            if account.suspended_at is None:
                account.suspended_at = max(at, account.created_at)
            account.updated_at = at
            self._append_audit(
                account_id,
                "account.suspended",
                actor,
                {"suspended_at": account.suspended_at.isoformat()},
            )
            return self._copy(account)

    def clear_suspension(self, account_id: str, *, actor=None) -> Account | None:
        self._check_write()
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            self._check_audit()
            was_suspended = account.suspended_at is not None
            account.suspended_at = None
            account.updated_at = datetime.now(timezone.utc)
            self._append_audit(
                account_id, "account.unsuspended", actor, {"was_suspended": was_suspended}
            )
            return self._copy(account)

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        self._check_audit()
        with self._lock:
            self._append_audit(account_id, event_type, actor, metadata or {})

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: tuple[datetime, int] | None = None,
    ):
        results = list(self.audit_log)
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        if created_after:
            results = [record for record in results if record.created_at >= created_after]
        if created_before:
            results = [record for record in results if record.created_at <= created_before]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor

    def events(self, event_type: str) -> list[FakeAuditLogRecord]:
        return [record for record in self.audit_log if record.event_type == event_type]


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def service(repository) -> AccountService:
    return AccountService(repository)


@pytest.fixture
def admin(service) -> Account:
    return service.create_account(
        CreateAccountInput(name="Ada Admin", email="admin@example.com", password=ADMIN_PASSWORD)
    )


@pytest.fixture
def user(service) -> Account:
    return service.create_account(
        CreateAccountInput(name="Una User", email="user@example.com", password=USER_PASSWORD)
    )


@pytest.fixture
def app(service):
    """Application with isolated service, session store and login throttle."""
    application = build_app()
    application.state.account_service = service
    application.state.session_store = MemorySessionStore(ttl_seconds=3600)

    original_throttle = routes.login_throttle
    routes.login_throttle = LoginThrottle(max_attempts=3, decay_seconds=60)
    yield application
    routes.login_throttle = original_throttle


@pytest.fixture
def client_factory(app):
    """Open independent browser-like clients against the same application."""
    clients: list[TestClient] = []

    def make() -> TestClient:
        client = TestClient(app, follow_redirects=False)
        client.__enter__()
        clients.append(client)
        return client

    yield make
    for client in clients:
        client.__exit__(None, None, None)


def login(client: TestClient, email: str, password: str):
    return client.post("/login", json={"email": email, "password": password})


@pytest.fixture
def admin_client(client_factory, admin):
    client = client_factory()
    response = login(client, admin.email, ADMIN_PASSWORD)
    assert response.status_code == 303
    return client
