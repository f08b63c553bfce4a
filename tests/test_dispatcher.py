from __future__ import annotations

import fakeredis
import pytest
from conftest import FakeQueue
from redis.exceptions import ConnectionError as RedisConnectionError
from rq import Queue

from capbook.company.models import ValidationStatus
from capbook.config import RetryConfig
from capbook.exceptions import StaleCompanyError
from capbook.queueing.dispatcher import VerificationDispatcher, default_retry
from capbook.queueing.tasks import task_verify_registration

POLICY = RetryConfig(max_attempts=3, backoff_base_ms=1000, job_timeout_seconds=120)


def _ids(*ids: str):
    it = iter(ids)
    return lambda: next(it)


def _dispatch(dispatcher, **kw):
    return dispatcher.dispatch("c1", "11222333000181", "u1", "Acme", **kw)


def test_enqueue_options_on_real_queue(make_company, store):
    make_company(job_id=None)
    queue = Queue("company-setup", connection=fakeredis.FakeRedis())
    dispatcher = VerificationDispatcher(queue=queue, store=store, policy=POLICY, id_factory=_ids("verify-a"))

    job_id = _dispatch(dispatcher, expected_version=0)

    assert job_id == "verify-a"
    assert queue.count == 1
    job = queue.fetch_job("verify-a")
    assert job.func_name == "capbook.queueing.tasks.task_verify_registration"
    assert job.args[0] == {
        "job_id": "verify-a",
        "company_id": "c1",
        "registration_number": "11222333000181",
        "creator_user_id": "u1",
        "company_name": "Acme",
    }
    assert job.retries_left == 2
    assert job.retry_intervals == [1, 2]
    assert job.timeout == 120
    assert job.meta["job_type"] == "verify-registration"
    assert job.meta["max_attempts"] == 3
    assert job.meta["company_id"] == "c1"


def test_dispatch_stamps_pending_record_before_enqueue(make_company, store, fake_queue):
    make_company(job_id=None)
    dispatcher = VerificationDispatcher(queue=fake_queue, store=store, policy=POLICY, id_factory=_ids("verify-a"))

    _dispatch(dispatcher)

    company = store.get_company("c1")
    assert company.verification_record.validation_status is ValidationStatus.PENDING
    assert company.verification_record.job_id == "verify-a"
    assert company.version == 1

    call = fake_queue.calls[0]
    assert call.func is task_verify_registration
    assert call.kwargs["job_id"] == "verify-a"


def test_second_dispatch_on_same_read_loses(make_company, store, fake_queue):
    company = make_company(job_id=None)
    dispatcher = VerificationDispatcher(
        queue=fake_queue, store=store, policy=POLICY, id_factory=_ids("verify-a", "verify-b")
    )

    _dispatch(dispatcher, expected_version=company.version)
    with pytest.raises(StaleCompanyError):
        _dispatch(dispatcher, expected_version=company.version)

    assert len(fake_queue.calls) == 1
    assert store.get_company("c1").verification_record.job_id == "verify-a"


def test_redis_errors_are_retried_then_recorded(make_company, store):
    make_company(job_id=None)
    queue = FakeQueue(fail=RedisConnectionError("connection refused"))
    dispatcher = VerificationDispatcher(queue=queue, store=store, policy=POLICY, id_factory=_ids("verify-a"))

    with pytest.raises(RedisConnectionError):
        _dispatch(dispatcher)

    assert queue.attempts == 3
    rec = store.get_company("c1").verification_record
    assert rec.validation_status is ValidationStatus.FAILED
    assert rec.job_id == "verify-a"
    assert rec.error.code == "COMPANY_CNPJ_ENQUEUE_FAILED"
    assert rec.failed_at


def test_other_enqueue_errors_are_not_retried(make_company, store):
    make_company(job_id=None)
    queue = FakeQueue(fail=TypeError("bad kwargs"))
    dispatcher = VerificationDispatcher(queue=queue, store=store, policy=POLICY, id_factory=_ids("verify-a"))

    with pytest.raises(TypeError):
        _dispatch(dispatcher)

    assert queue.attempts == 1
    assert store.get_company("c1").verification_record.error.code == "COMPANY_CNPJ_ENQUEUE_FAILED"


def test_default_retry_policy():
    retry = default_retry(POLICY)
    assert retry.max == 2
    assert retry.intervals == [1, 2]
    assert default_retry(RetryConfig(1, 1000, 120)) is None
