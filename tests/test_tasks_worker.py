from __future__ import annotations

import types
from contextlib import closing

import fakeredis
import pytest
from conftest import FakeRegistry, active_record
from rq import Queue, Retry, SimpleWorker
from rq.registry import FailedJobRegistry

from capbook.company.models import Company, CompanyStatus, ValidationStatus, VerificationRecord
from capbook.company.service import CompanyService
from capbook.company.store import CompanyStore
from capbook.config import load_settings
from capbook.db import ensure_schema, get_conn
from capbook.effects.audit import SqliteAuditLog
from capbook.queueing import tasks, worker
from capbook.queueing.dispatcher import VerificationDispatcher
from capbook.queueing.dlq import dead_letter_meta, push_to_dlq


@pytest.mark.parametrize(
    "retries_left,expected",
    [(2, (0, 3)), (1, (1, 3)), (0, (2, 3))],
)
def test_job_attempts_from_rq_counters(retries_left, expected):
    job = types.SimpleNamespace(meta={"max_attempts": 3}, retries_left=retries_left)
    assert tasks.job_attempts(job, 5) == expected


def test_job_attempts_defaults():
    assert tasks.job_attempts(None, 3) == (0, 3)
    # single-attempt jobs are enqueued without a Retry
    job = types.SimpleNamespace(meta={"max_attempts": 1}, retries_left=None)
    assert tasks.job_attempts(job, 3) == (0, 1)


def test_task_runs_one_delivery_against_configured_db(tmp_path, monkeypatch):
    db = tmp_path / "worker.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db}")
    with closing(get_conn()) as conn:
        ensure_schema(conn)
        CompanyStore(conn).insert(
            Company(
                id="c1",
                name="Acme",
                registration_number="11222333000181",
                status=CompanyStatus.DRAFT,
                creator_user_id="u1",
                verification_record=VerificationRecord.pending("verify-t"),
            )
        )

    registry = FakeRegistry(active_record())
    monkeypatch.setattr(tasks.RegistryClient, "from_config", lambda cfg: registry)

    result = tasks.task_verify_registration(
        {
            "job_id": "verify-t",
            "company_id": "c1",
            "registration_number": "11222333000181",
            "creator_user_id": "u1",
            "company_name": "Acme",
        }
    )

    assert result["outcome"] == "SUCCESS"
    # no users row, so no email was attempted
    assert result["side_effects"]["email"] == "skipped"
    with closing(get_conn()) as conn:
        assert CompanyStore(conn).get_company("c1").status is CompanyStatus.ACTIVE
        assert len(SqliteAuditLog(conn).list_for_company("c1")) == 2


def _enqueue(r, name="company-setup", retry=None, max_attempts=3):
    q = Queue(name, connection=r)
    return q.enqueue(
        tasks.task_verify_registration,
        {"job_id": "verify-x", "company_id": "c1", "registration_number": "11222333000181"},
        job_id="verify-x",
        retry=retry,
        meta={"job_type": "verify-registration", "company_id": "c1", "max_attempts": max_attempts},
    )


def test_push_to_dlq_copies_job_with_verification_meta():
    r = fakeredis.FakeRedis()
    job = _enqueue(r, retry=Retry(max=2))
    job.retries_left = 0

    new_id = push_to_dlq(job, err=RuntimeError("registry down"), dlq_name="dlq")

    dlq = Queue("dlq", connection=r)
    assert dlq.count == 1
    copy = dlq.fetch_job(new_id)
    assert list(copy.args) == list(job.args)
    assert copy.meta["failed_job_id"] == "verify-x"
    assert copy.meta["verification_job_id"] == "verify-x"
    assert copy.meta["company_id"] == "c1"
    assert copy.meta["cnpj_last_four"] == "0181"
    assert copy.meta["attempts"] == 3
    assert copy.meta["max_attempts"] == 3
    assert copy.meta["dlq_reason"] == "registry down"
    assert copy.meta["exc_type"] == "builtins.RuntimeError"
    assert copy.meta["job_type"] == "verify-registration"
    assert copy.meta["dead_lettered_at"]


def test_dead_letter_meta_for_single_attempt_job():
    r = fakeredis.FakeRedis()
    job = _enqueue(r, max_attempts=1)
    assert job.retries_left is None

    meta = dead_letter_meta(job, "boom")

    assert meta["attempts"] == 1
    assert meta["max_attempts"] == 1
    assert meta["exc_type"] == "str"


def test_push_to_dlq_skips_dlq_jobs():
    r = fakeredis.FakeRedis()
    job = _enqueue(r, name="dlq")
    assert push_to_dlq(job, err="again", dlq_name="dlq") is None
    assert Queue("dlq", connection=r).count == 1


def test_exception_handler_only_dlqs_final_attempt(monkeypatch):
    monkeypatch.setenv("DLQ_NAME", "company-setup-dlq")
    r = fakeredis.FakeRedis()
    job = _enqueue(r, retry=Retry(max=2))
    dlq = Queue("company-setup-dlq", connection=r)

    # RQ runs handlers before it books the retry, so retries_left > 0 means another attempt follows
    assert worker._dlq_exception_handler(job, RuntimeError, RuntimeError("x"), None) is True
    assert dlq.count == 0

    job.retries_left = 0
    assert worker._dlq_exception_handler(job, RuntimeError, RuntimeError("x"), None) is True
    assert dlq.count == 1


def test_exception_handler_dlqs_job_without_retry(monkeypatch):
    monkeypatch.setenv("DLQ_NAME", "company-setup-dlq")
    r = fakeredis.FakeRedis()
    job = _enqueue(r, max_attempts=1)

    worker._dlq_exception_handler(job, RuntimeError, RuntimeError("x"), None)

    assert Queue("company-setup-dlq", connection=r).count == 1


@pytest.fixture
def worker_env(tmp_path, monkeypatch):
    """File DB, no registry token (every lookup is transient) and no backoff."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'worker.db'}")
    monkeypatch.setenv("REGISTRY_API_TOKEN", "")
    monkeypatch.setenv("VERIFY_BACKOFF_BASE_MS", "0")
    monkeypatch.setenv("DLQ_NAME", "company-setup-dlq")
    monkeypatch.delenv("QUEUE_NAME", raising=False)
    monkeypatch.delenv("VERIFY_MAX_ATTEMPTS", raising=False)
    with closing(get_conn()) as conn:
        ensure_schema(conn)
    return fakeredis.FakeRedis()


def _create_and_dispatch(r) -> tuple[Queue, str, str]:
    cfg = load_settings()
    queue = Queue(cfg.queue.queue_name, connection=r)
    with closing(get_conn()) as conn:
        store = CompanyStore(conn)
        service = CompanyService(
            store=store,
            dispatcher=VerificationDispatcher(queue=queue, store=store, policy=cfg.retry),
        )
        company = service.create_company("Acme", "11222333000181", "u1")
        job_id = store.get_company(company.id).verification_record.job_id
    return queue, company.id, job_id


def _burst(queue, r) -> None:
    w = SimpleWorker([queue], connection=r, exception_handlers=[worker._dlq_exception_handler])
    w.work(burst=True)


def test_real_worker_dead_letters_exhausted_job(worker_env):
    r = worker_env
    queue, company_id, job_id = _create_and_dispatch(r)

    _burst(queue, r)

    dlq = Queue("company-setup-dlq", connection=r)
    assert dlq.count == 1
    [copy] = dlq.get_jobs()
    assert copy.meta["failed_job_id"] == job_id
    assert copy.meta["company_id"] == company_id
    assert copy.meta["attempts"] == 3

    failed = FailedJobRegistry(queue=queue)
    assert failed.get_job_ids() == [job_id]

    with closing(get_conn()) as conn:
        company = CompanyStore(conn).get_company(company_id)
        assert company.status is CompanyStatus.DRAFT
        assert company.verification_record.validation_status is ValidationStatus.FAILED
        assert company.verification_record.error.code == "COMPANY_CNPJ_REGISTRY_UNAVAILABLE"
        assert len(SqliteAuditLog(conn).list_for_company(company_id)) == 1


def test_real_worker_single_attempt_policy_dead_letters(worker_env, monkeypatch):
    monkeypatch.setenv("VERIFY_MAX_ATTEMPTS", "1")
    r = worker_env
    queue, company_id, _ = _create_and_dispatch(r)

    _burst(queue, r)

    [copy] = Queue("company-setup-dlq", connection=r).get_jobs()
    assert copy.meta["company_id"] == company_id
    assert copy.meta["attempts"] == 1


def test_queue_names_from_env(monkeypatch):
    monkeypatch.setenv("RQ_QUEUE", "company-setup, company-setup-dlq")
    assert worker._queue_names_from_env_or_cfg() == ["company-setup", "company-setup-dlq"]

    monkeypatch.delenv("RQ_QUEUE")
    monkeypatch.setenv("QUEUE_NAME", "setup-q")
    assert worker._queue_names_from_env_or_cfg() == ["setup-q"]
