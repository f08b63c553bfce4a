# ruff: noqa: E402
# tests/conftest.py
from __future__ import annotations

import sqlite3
import sys
import types
from pathlib import Path
from typing import Any

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from capbook.company.models import Company, CompanyStatus, VerificationRecord
from capbook.company.store import CompanyStore
from capbook.db import ensure_schema, get_conn
from capbook.effects.audit import SqliteAuditLog
from capbook.effects.coordinator import SideEffectCoordinator
from capbook.effects.mailer import ContactDirectory
from capbook.effects.notify import SqliteNotifier
from capbook.registry.client import RegistryRecord

VALID_CNPJ = "11222333000181"
OTHER_VALID_CNPJ = "11444777000161"


# -------------------------------- fakes -----------------------------------------------


class FakeRegistry:
    """
    Scripted registry lookup.

    Each call consumes the next response; the last one repeats forever.
    A response may be a RegistryRecord, an exception instance (raised), or a
    callable taking the registration number (for mid-lookup interference).
    """

    def __init__(self, *responses: Any) -> None:
        if not responses:
            raise ValueError("FakeRegistry needs at least one response")
        self.responses = list(responses)
        self.calls: list[str] = []

    def lookup(self, registration_number: str) -> RegistryRecord:
        self.calls.append(registration_number)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if callable(item):
            item = item(registration_number)
        if isinstance(item, BaseException):
            raise item
        return item


class RecordingMailer:
    def __init__(self, fail: BaseException | None = None) -> None:
        self.sent: list[Any] = []
        self.fail = fail

    def send(self, req) -> str:
        if self.fail is not None:
            raise self.fail
        self.sent.append(req)
        return f"msg-{len(self.sent)}"


class FailingSink:
    """Stands in for an audit log or notifier whose storage is down."""

    def __init__(self) -> None:
        self.calls = 0

    def record(self, event) -> int:
        self.calls += 1
        raise sqlite3.OperationalError("database is locked")

    def submit(self, req) -> int:
        self.calls += 1
        raise sqlite3.OperationalError("database is locked")


class FakeQueue:
    """Records enqueue() calls the way rq.Queue would receive them."""

    def __init__(self, fail: BaseException | None = None) -> None:
        self.calls: list[types.SimpleNamespace] = []
        self.attempts = 0
        self.fail = fail

    def enqueue(self, func, *args, **kwargs):
        self.attempts += 1
        if self.fail is not None:
            raise self.fail
        call = types.SimpleNamespace(func=func, args=args, kwargs=kwargs)
        self.calls.append(call)
        return types.SimpleNamespace(id=kwargs.get("job_id"))


def active_record(legal_name: str = "ACME COMERCIO LTDA") -> RegistryRecord:
    return RegistryRecord(
        registration_status="ATIVA",
        legal_name=legal_name,
        trade_name="ACME",
        incorporation_date="2015-03-10",
        legal_nature="206-2 - Sociedade Empresaria Limitada",
        main_activity={"code": "4751-2/01", "description": "Comercio varejista"},
        capital=50000.0,
    )


# -------------------------------- fixtures --------------------------------------------


@pytest.fixture
def conn():
    con = get_conn(":memory:")
    ensure_schema(con)
    yield con
    con.close()


@pytest.fixture
def store(conn) -> CompanyStore:
    return CompanyStore(conn)


@pytest.fixture
def audit_log(conn) -> SqliteAuditLog:
    return SqliteAuditLog(conn)


@pytest.fixture
def notifier(conn) -> SqliteNotifier:
    return SqliteNotifier(conn)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def coordinator(conn, audit_log, notifier, mailer) -> SideEffectCoordinator:
    return SideEffectCoordinator(
        audit=audit_log,
        notifier=notifier,
        mailer=mailer,
        contacts=ContactDirectory(conn),
        default_locale="pt-BR",
    )


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def add_user(conn):
    def _add(user_id: str, email: str | None = None, locale: str | None = None) -> None:
        conn.execute(
            "INSERT INTO users (id, email, locale) VALUES (?, ?, ?)",
            (user_id, email, locale),
        )
        conn.commit()

    return _add


@pytest.fixture
def make_company(store):
    """Insert a company; by default a DRAFT one owned by a PENDING job `verify-1`."""

    def _make(
        company_id: str = "c1",
        *,
        status: CompanyStatus = CompanyStatus.DRAFT,
        job_id: str | None = "verify-1",
        record: VerificationRecord | None = None,
        cnpj: str = VALID_CNPJ,
        name: str = "Acme",
        creator: str = "u1",
    ) -> Company:
        if record is None and job_id is not None:
            record = VerificationRecord.pending(job_id)
        return store.insert(
            Company(
                id=company_id,
                name=name,
                registration_number=cnpj,
                status=status,
                creator_user_id=creator,
                verification_record=record,
            )
        )

    return _make
