# capbook/effects/coordinator.py
"""
Best-effort fan-out after a verification outcome has been committed.

Steps run in order: one per audit event, then notification, then email. Each
step has its own failure handling; a failed SES call never reaches the worker.
Nothing here is retried, the company record is already durable when this runs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from capbook.company.cnpj import format_cnpj
from capbook.company.models import CompanyStatus
from capbook.effects.audit import ACTOR_SYSTEM, AuditEvent, build_metadata
from capbook.effects.mailer import Contact, EmailRequest
from capbook.effects.notify import COMPANY_ACTIVATED, COMPANY_CNPJ_FAILED, NotificationRequest
from capbook.effects.templates import FAILED_TEMPLATE, SUCCESS_TEMPLATE, render_notification
from capbook.redact import cnpj_last_four, mask_email

log = logging.getLogger(__name__)

STEP_OK = "ok"
STEP_SKIPPED = "skipped"
STEP_FAILED = "failed"

ACTION_CNPJ_VALIDATED = "COMPANY_CNPJ_VALIDATED"
ACTION_STATUS_CHANGED = "COMPANY_STATUS_CHANGED"
ACTION_CNPJ_VALIDATION_FAILED = "COMPANY_CNPJ_VALIDATION_FAILED"
RESOURCE_COMPANY = "Company"
AUDIT_SOURCE = "scheduler"


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    DEFINITIVE_FAILURE = "DEFINITIVE_FAILURE"
    TRANSIENT_EXHAUSTED = "TRANSIENT_EXHAUSTED"


@dataclass(frozen=True)
class OutcomeDetail:
    job_id: str
    registration_number: str
    registration_status: str | None = None
    legal_name: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> Any: ...


class Notifier(Protocol):
    def submit(self, req: NotificationRequest) -> Any: ...


class Mailer(Protocol):
    def send(self, req: EmailRequest) -> Any: ...


class Contacts(Protocol):
    def get_contact(self, user_id: str) -> Contact | None: ...


class SideEffectCoordinator:
    def __init__(
        self,
        *,
        audit: AuditSink,
        notifier: Notifier,
        mailer: Mailer,
        contacts: Contacts,
        default_locale: str = "pt-BR",
    ) -> None:
        self.audit = audit
        self.notifier = notifier
        self.mailer = mailer
        self.contacts = contacts
        self.default_locale = default_locale

    def run_side_effects(
        self,
        company_id: str,
        creator_user_id: str,
        company_name: str,
        outcome: Outcome,
        detail: OutcomeDetail,
    ) -> dict[str, str]:
        """
        Run audit, notification and email for one terminal outcome.

        Returns {"audit": ..., "notification": ..., "email": ...} with each value
        one of "ok", "skipped", "failed"; "audit" is "failed" if any audit event
        failed. Never raises for step failures.
        """
        outcome = Outcome(outcome)
        steps: list[tuple[str, Callable[[], bool]]] = [
            (f"audit:{ev.action}", lambda ev=ev: self._record(ev))
            for ev in self._audit_events(company_id, creator_user_id, outcome, detail)
        ]
        steps += [
            (
                "notification",
                lambda: self._notify(company_id, creator_user_id, company_name, outcome, detail),
            ),
            ("email", lambda: self._send_email(creator_user_id, company_name, outcome, detail)),
        ]

        report: dict[str, str] = {}
        for name, step in steps:
            try:
                result = STEP_OK if step() else STEP_SKIPPED
            except Exception:  # noqa: BLE001
                log.exception(
                    "side effect %s failed for company %s (job %s, outcome %s)",
                    name,
                    company_id,
                    detail.job_id,
                    outcome.value,
                )
                result = STEP_FAILED
            # each audit event is its own step; the report keeps one "audit" entry
            key = name.partition(":")[0]
            if report.get(key) != STEP_FAILED:
                report[key] = result

        log.info(
            "side effects done",
            extra={"company_id": company_id, "job_id": detail.job_id, "outcome": outcome.value, **report},
        )
        return report

    # ---- audit ---------------------------------------------------------------------------

    def _record(self, event: AuditEvent) -> bool:
        self.audit.record(event)
        return True

    def _audit_events(
        self,
        company_id: str,
        creator_user_id: str,
        outcome: Outcome,
        detail: OutcomeDetail,
    ) -> list[AuditEvent]:
        def event(action: str, before: Any, after: Any, **extra: Any) -> AuditEvent:
            return AuditEvent(
                actor_id=creator_user_id,
                actor_type=ACTOR_SYSTEM,
                action=action,
                resource_type=RESOURCE_COMPANY,
                resource_id=company_id,
                company_id=company_id,
                before=before,
                after=after,
                metadata=build_metadata(
                    source=AUDIT_SOURCE,
                    request_id=detail.job_id,
                    cnpjLastFour=cnpj_last_four(detail.registration_number),
                    **extra,
                ),
            )

        if outcome is Outcome.SUCCESS:
            draft = {"status": CompanyStatus.DRAFT.value}
            return [
                event(
                    ACTION_CNPJ_VALIDATED,
                    draft,
                    {"status": CompanyStatus.ACTIVE.value, "cnpjValidated": True},
                ),
                event(
                    ACTION_STATUS_CHANGED,
                    draft,
                    {"status": CompanyStatus.ACTIVE.value},
                    trigger="cnpj_validation",
                ),
            ]

        after = {
            "outcome": outcome.value,
            "errorCode": detail.error_code,
            "errorMessage": detail.error_message,
        }
        if detail.registration_status is not None:
            after["registrationStatus"] = detail.registration_status
        return [event(ACTION_CNPJ_VALIDATION_FAILED, None, after)]

    # ---- notification --------------------------------------------------------------------

    def _notify(
        self,
        company_id: str,
        creator_user_id: str,
        company_name: str,
        outcome: Outcome,
        detail: OutcomeDetail,
    ) -> bool:
        ntype = COMPANY_ACTIVATED if outcome is Outcome.SUCCESS else COMPANY_CNPJ_FAILED
        subject, body = render_notification(
            ntype,
            self.default_locale,
            {
                "companyName": company_name,
                "reason": detail.registration_status or detail.error_code or "",
            },
        )
        self.notifier.submit(
            NotificationRequest(
                user_id=creator_user_id,
                notification_type=ntype,
                subject=subject,
                body=body,
                company_id=company_id,
                company_name=company_name,
                related_entity_id=company_id,
            )
        )
        return True

    # ---- email ---------------------------------------------------------------------------

    def _send_email(
        self,
        creator_user_id: str,
        company_name: str,
        outcome: Outcome,
        detail: OutcomeDetail,
    ) -> bool:
        contact = self.contacts.get_contact(creator_user_id)
        if contact is None or not contact.email:
            log.info("no email address for user %s; skipping email", creator_user_id)
            return False

        if outcome is Outcome.SUCCESS:
            template = SUCCESS_TEMPLATE
            variables = {
                "companyName": company_name,
                "legalName": detail.legal_name or company_name,
            }
        else:
            template = FAILED_TEMPLATE
            variables = {
                "companyName": company_name,
                "cnpj": format_cnpj(detail.registration_number) if detail.registration_number else "-",
                "registrationStatus": detail.registration_status or "INDISPONÍVEL",
            }

        locale = contact.locale or self.default_locale
        log.debug("sending %s (%s) to %s", template, locale, mask_email(contact.email))
        self.mailer.send(
            EmailRequest(
                to=contact.email,
                template_name=template,
                locale=locale,
                variables=variables,
            )
        )
        return True
