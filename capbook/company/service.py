# capbook/company/service.py
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from capbook.company.cnpj import normalize_cnpj
from capbook.company.models import Company, CompanyPatch, CompanyStatus, ValidationStatus
from capbook.company.state import Trigger, check_transition
from capbook.company.store import CompanyStore
from capbook.exceptions import BusinessRuleError
from capbook.redact import cnpj_last_four

log = logging.getLogger(__name__)

CODE_CNPJ_DUPLICATE = "COMPANY_CNPJ_DUPLICATE"
CODE_RETRY_NOT_ALLOWED = "COMPANY_CNPJ_RETRY_NOT_ALLOWED"


class Dispatcher(Protocol):
    def dispatch(
        self,
        company_id: str,
        registration_number: str,
        creator_user_id: str,
        company_name: str,
        *,
        expected_version: int | None = None,
    ) -> str: ...


class CompanyService:
    """
    Entry points that feed (or are gated like) the verification pipeline.

    Creation and retry are the only callers of the dispatcher; both check
    eligibility here, against the version they read, and pass that version
    down so a concurrent request loses the race instead of enqueueing twice.
    """

    def __init__(
        self,
        *,
        store: CompanyStore,
        dispatcher: Dispatcher,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.id_factory = id_factory

    def create_company(self, name: str, registration_number: str, creator_user_id: str) -> Company:
        digits = normalize_cnpj(registration_number)
        if self.store.find_by_registration_number(digits) is not None:
            raise BusinessRuleError(
                "CNPJ already registered",
                code=CODE_CNPJ_DUPLICATE,
                details={"cnpjLastFour": cnpj_last_four(digits)},
            )

        company = self.store.insert(
            Company(
                id=self.id_factory(),
                name=name.strip(),
                registration_number=digits,
                status=CompanyStatus.DRAFT,
                creator_user_id=creator_user_id,
            )
        )
        log.info(
            "company %s created by user %s (cnpj=***%s)",
            company.id,
            creator_user_id,
            cnpj_last_four(digits),
        )

        self.dispatcher.dispatch(
            company.id,
            company.registration_number,
            creator_user_id,
            company.name,
            expected_version=company.version,
        )
        return self.store.get_company(company.id)

    def request_retry(self, company_id: str, user_id: str) -> str:
        """Re-dispatch verification after a FAILED outcome. Returns the new job id."""
        company = self.store.get_company(company_id)
        if company.status is not CompanyStatus.DRAFT:
            raise BusinessRuleError(
                "Verification can only be retried while the company is in DRAFT",
                code=CODE_RETRY_NOT_ALLOWED,
                details={"companyId": company_id, "currentStatus": company.status.value},
            )
        if company.validation_status is not ValidationStatus.FAILED:
            current = company.validation_status.value if company.validation_status else None
            raise BusinessRuleError(
                "Verification can only be retried after it has failed",
                code=CODE_RETRY_NOT_ALLOWED,
                details={"companyId": company_id, "validationStatus": current},
            )

        job_id = self.dispatcher.dispatch(
            company.id,
            company.registration_number,
            user_id,
            company.name,
            expected_version=company.version,
        )
        log.info("verification retry %s requested for company %s by %s", job_id, company_id, user_id)
        return job_id

    def update_status(self, company_id: str, new_status: CompanyStatus | str) -> Company:
        """ACTIVE <-> INACTIVE only; DRAFT leaves through verification alone."""
        target = CompanyStatus(new_status)
        company = self.store.get_company(company_id)
        check_transition(company.status, target, Trigger.STATUS_CHANGE)
        updated = self.store.update_company(
            company_id,
            CompanyPatch(status=target),
            expected_version=company.version,
        )
        log.info("company %s status changed: %s -> %s", company_id, company.status.value, target.value)
        return updated

    def dissolve(self, company_id: str) -> Company:
        company = self.store.get_company(company_id)
        check_transition(company.status, CompanyStatus.DISSOLVED, Trigger.DISSOLUTION)
        updated = self.store.update_company(
            company_id,
            CompanyPatch(status=CompanyStatus.DISSOLVED),
            expected_version=company.version,
        )
        log.info("company %s dissolved", company_id)
        return updated

    def get_setup_status(self, company_id: str) -> dict[str, Any]:
        """Read model polled by the frontend while verification runs."""
        company = self.store.get_company(company_id)
        rec = company.verification_record
        validation: dict[str, Any] = {
            "status": rec.validation_status.value if rec else None,
            "validatedAt": company.verified_at,
            "failedAt": rec.failed_at if rec else None,
            "error": rec.error.to_dict() if rec and rec.error else None,
        }
        return {
            "companyId": company.id,
            "companyStatus": company.status.value,
            "cnpjValidation": validation,
            "canRetry": (
                company.status is CompanyStatus.DRAFT
                and rec is not None
                and rec.validation_status is ValidationStatus.FAILED
            ),
        }
