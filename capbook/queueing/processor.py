# capbook/queueing/processor.py
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from capbook.company.models import (
    Company,
    CompanyPatch,
    CompanyStatus,
    ValidationStatus,
    VerificationRecord,
)
from capbook.company.state import Trigger, check_transition, is_verification_eligible
from capbook.company.store import CompanyStore
from capbook.db import utc_now_iso
from capbook.effects.coordinator import Outcome, OutcomeDetail, SideEffectCoordinator
from capbook.exceptions import StaleCompanyError
from capbook.queueing.classifier import (
    CODE_INACTIVE,
    CODE_NOT_FOUND,
    CODE_REGISTRY_UNAVAILABLE,
    DEFAULT_MAX_ATTEMPTS,
    FailureDecision,
    classify_failure,
    error_message,
)
from capbook.redact import cnpj_last_four
from capbook.registry.client import RegistryLookup, RegistryRecord

log = logging.getLogger(__name__)

# Result tags returned by process() for logs and RQ's job.result
RESULT_SKIPPED = "SKIPPED"
RESULT_STALE = "STALE"


@dataclass(frozen=True)
class VerificationJob:
    job_id: str
    company_id: str
    registration_number: str
    creator_user_id: str
    company_name: str
    attempt_number: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def to_payload(self) -> dict[str, Any]:
        # attempt counters are owned by the queue, not the payload
        return {
            "job_id": self.job_id,
            "company_id": self.company_id,
            "registration_number": self.registration_number,
            "creator_user_id": self.creator_user_id,
            "company_name": self.company_name,
        }

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        attempt_number: int = 0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        job_id: str | None = None,
    ) -> VerificationJob:
        return cls(
            job_id=str(payload.get("job_id") or job_id or ""),
            company_id=str(payload["company_id"]),
            registration_number=str(payload["registration_number"]),
            creator_user_id=str(payload["creator_user_id"]),
            company_name=str(payload.get("company_name") or ""),
            attempt_number=int(attempt_number),
            max_attempts=int(max_attempts),
        )


class VerificationProcessor:
    """
    Runs one verification job delivery end to end.

    Flow:
      1) load the company; skip if it is gone, dissolved, out of DRAFT, or the
         record no longer belongs to this job (superseded or already terminal)
      2) registry lookup
      3) raised error   -> classifier: RETRY re-raises, EXHAUSTED records + re-raises,
                           DEFINITIVE records and completes
         active status  -> DRAFT -> ACTIVE, COMPLETED record, verified_at
         other status   -> FAILED record, company stays DRAFT
      4) terminal write is a version-checked single UPDATE; side effects run only
         if that write landed
    """

    def __init__(
        self,
        *,
        store: CompanyStore,
        registry: RegistryLookup,
        coordinator: SideEffectCoordinator,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self.store = store
        self.registry = registry
        self.coordinator = coordinator
        self.clock = clock

    def process(self, job: VerificationJob) -> dict[str, Any]:
        start = time.perf_counter()
        company, skip_reason = self._load_owned_company(job)
        if company is None:
            log.info(
                "verification job %s skipped for company %s: %s",
                job.job_id,
                job.company_id,
                skip_reason,
            )
            return self._result(job, RESULT_SKIPPED, reason=skip_reason)

        log.debug(
            "processing verification job %s: company=%s cnpj=***%s attempt=%s/%s",
            job.job_id,
            job.company_id,
            cnpj_last_four(job.registration_number),
            job.attempt_number + 1,
            job.max_attempts,
        )

        try:
            record = self.registry.lookup(job.registration_number)
        except Exception as exc:
            decision = classify_failure(exc, job.attempt_number, job.max_attempts)
            if decision is FailureDecision.RETRY:
                log.warning(
                    "verification job %s attempt %s/%s failed, will retry: %s",
                    job.job_id,
                    job.attempt_number + 1,
                    job.max_attempts,
                    error_message(exc),
                )
                raise
            if decision is FailureDecision.DEFINITIVE:
                return self._fail(
                    company,
                    job,
                    Outcome.DEFINITIVE_FAILURE,
                    code=CODE_NOT_FOUND,
                    message=error_message(exc),
                )
            self._fail(
                company,
                job,
                Outcome.TRANSIENT_EXHAUSTED,
                code=CODE_REGISTRY_UNAVAILABLE,
                message=error_message(exc),
            )
            log.error(
                "verification job %s exhausted all %s attempts for company %s: %s",
                job.job_id,
                job.max_attempts,
                job.company_id,
                error_message(exc),
            )
            raise

        if record.is_active:
            result = self._activate(company, job, record)
        else:
            result = self._fail(
                company,
                job,
                Outcome.DEFINITIVE_FAILURE,
                code=CODE_INACTIVE,
                message=(
                    f"CNPJ has status {record.registration_status or 'UNKNOWN'} "
                    "in the registry; expected ATIVA"
                ),
                registry=record,
            )

        log.info(
            "verification job finished",
            extra={
                "job_id": job.job_id,
                "company_id": job.company_id,
                "outcome": result["outcome"],
                "attempt": job.attempt_number + 1,
                "latency_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return result

    # ---- helpers -------------------------------------------------------------------------

    def _load_owned_company(self, job: VerificationJob) -> tuple[Company | None, str | None]:
        company = self.store.read_company(job.company_id)
        if company is None:
            return None, "missing"
        if company.status is CompanyStatus.DISSOLVED:
            return None, "dissolved"
        if not is_verification_eligible(company.status):
            return None, f"status_{company.status.value.lower()}"
        rec = company.verification_record
        if rec is None or rec.job_id != job.job_id:
            return None, "superseded"
        if rec.validation_status is not ValidationStatus.PENDING:
            return None, "already_terminal"
        return company, None

    def _commit(self, company: Company, job: VerificationJob, patch: CompanyPatch) -> bool:
        try:
            self.store.update_company(company.id, patch, expected_version=company.version)
        except StaleCompanyError:
            log.warning(
                "verification job %s lost the race on company %s; dropping result",
                job.job_id,
                company.id,
            )
            return False
        return True

    def _activate(
        self,
        company: Company,
        job: VerificationJob,
        record: RegistryRecord,
    ) -> dict[str, Any]:
        check_transition(company.status, CompanyStatus.ACTIVE, Trigger.VERIFICATION)
        patch = CompanyPatch(
            verification_record=VerificationRecord.completed(job.job_id, record.to_dict()),
            status=CompanyStatus.ACTIVE,
            verified_at=self.clock(),
        )
        if not self._commit(company, job, patch):
            return self._result(job, RESULT_STALE)

        report = self.coordinator.run_side_effects(
            company.id,
            job.creator_user_id,
            job.company_name,
            Outcome.SUCCESS,
            OutcomeDetail(
                job_id=job.job_id,
                registration_number=job.registration_number,
                registration_status=record.registration_status,
                legal_name=record.legal_name,
            ),
        )
        return self._result(job, Outcome.SUCCESS.value, side_effects=report)

    def _fail(
        self,
        company: Company,
        job: VerificationJob,
        outcome: Outcome,
        *,
        code: str,
        message: str,
        registry: RegistryRecord | None = None,
    ) -> dict[str, Any]:
        patch = CompanyPatch(
            verification_record=VerificationRecord.failed(
                job.job_id,
                code,
                message,
                failed_at=self.clock(),
                registry=registry.to_dict() if registry is not None else None,
            ),
        )
        if not self._commit(company, job, patch):
            return self._result(job, RESULT_STALE)

        report = self.coordinator.run_side_effects(
            company.id,
            job.creator_user_id,
            job.company_name,
            outcome,
            OutcomeDetail(
                job_id=job.job_id,
                registration_number=job.registration_number,
                registration_status=registry.registration_status if registry else None,
                legal_name=registry.legal_name if registry else None,
                error_code=code,
                error_message=message,
            ),
        )
        return self._result(job, outcome.value, side_effects=report)

    @staticmethod
    def _result(job: VerificationJob, outcome: str, **extra: Any) -> dict[str, Any]:
        out: dict[str, Any] = {
            "job_id": job.job_id,
            "company_id": job.company_id,
            "outcome": outcome,
        }
        out.update(extra)
        return out
