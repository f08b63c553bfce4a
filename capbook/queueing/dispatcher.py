# capbook/queueing/dispatcher.py
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from rq import Queue, Retry
from rq.job import Job
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from capbook.company.models import CompanyPatch, VerificationRecord
from capbook.company.store import CompanyStore
from capbook.config import VERIFY_JOB_TYPE, AppConfig, RetryConfig, load_settings
from capbook.db import utc_now_iso
from capbook.queueing.classifier import CODE_ENQUEUE_FAILED
from capbook.queueing.processor import VerificationJob
from capbook.queueing.redis_conn import get_redis
from capbook.queueing.tasks import task_verify_registration
from capbook.redact import cnpj_last_four

log = logging.getLogger(__name__)


def get_queue(cfg: AppConfig | None = None) -> Queue:
    cfg = cfg or load_settings()
    return Queue(cfg.queue.queue_name, connection=get_redis())


def default_retry(policy: RetryConfig) -> Retry | None:
    """
    RQ retry policy for verification jobs.

    Number of retries = max_attempts - 1; intervals grow exponentially from
    the configured base. A single-attempt policy means no Retry at all.
    """
    retries = policy.max_attempts - 1
    if retries < 1:
        return None
    return Retry(max=retries, interval=policy.retry_intervals())


def _new_job_id() -> str:
    return f"verify-{uuid.uuid4().hex}"


class VerificationDispatcher:
    """
    Enqueues exactly one verification job per call.

    Before enqueueing, the job id is stamped into the company's verification
    record (PENDING + jobId) with an optional version check. Only the job
    holding that id may later commit an outcome, which makes a stale or
    duplicate delivery a no-op. Eligibility (DRAFT, FAILED-for-retry) is the
    caller's check, not this class's.
    """

    def __init__(
        self,
        *,
        queue: Queue,
        store: CompanyStore,
        policy: RetryConfig,
        id_factory: Callable[[], str] = _new_job_id,
    ) -> None:
        self.queue = queue
        self.store = store
        self.policy = policy
        self.id_factory = id_factory

    def dispatch(
        self,
        company_id: str,
        registration_number: str,
        creator_user_id: str,
        company_name: str,
        *,
        expected_version: int | None = None,
    ) -> str:
        job_id = self.id_factory()
        self.store.update_company(
            company_id,
            CompanyPatch(verification_record=VerificationRecord.pending(job_id)),
            expected_version=expected_version,
        )

        job = VerificationJob(
            job_id=job_id,
            company_id=company_id,
            registration_number=registration_number,
            creator_user_id=creator_user_id,
            company_name=company_name,
            max_attempts=self.policy.max_attempts,
        )
        try:
            self._enqueue(job)
        except Exception as exc:
            log.exception("failed to enqueue verification job %s for company %s", job_id, company_id)
            self.store.update_company(
                company_id,
                CompanyPatch(
                    verification_record=VerificationRecord.failed(
                        job_id,
                        CODE_ENQUEUE_FAILED,
                        f"Could not schedule CNPJ validation: {exc}",
                        failed_at=utc_now_iso(),
                    )
                ),
            )
            raise

        log.info(
            "enqueued verification job %s for company %s cnpj=***%s",
            job_id,
            company_id,
            cnpj_last_four(registration_number),
        )
        return job_id

    @retry(
        reraise=True,
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
    )
    def _enqueue(self, job: VerificationJob) -> Job:
        return self.queue.enqueue(
            task_verify_registration,
            job.to_payload(),
            job_id=job.job_id,
            retry=default_retry(self.policy),
            job_timeout=self.policy.job_timeout_seconds,
            description=f"{VERIFY_JOB_TYPE} company={job.company_id}",
            meta={
                "job_type": VERIFY_JOB_TYPE,
                "company_id": job.company_id,
                "max_attempts": self.policy.max_attempts,
            },
        )
