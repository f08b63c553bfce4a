# capbook/company/state.py
"""
Company lifecycle rules.

    DRAFT --(verification)--> ACTIVE <--(status change)--> INACTIVE
    DRAFT | ACTIVE | INACTIVE --(dissolution)--> DISSOLVED   (terminal)

Each edge is owned by exactly one trigger. Anything else raises a
BusinessRuleError naming the current and requested status; same-state
requests are rejected too.
"""

from __future__ import annotations

from enum import Enum

from capbook.company.models import CompanyStatus
from capbook.exceptions import BusinessRuleError


class Trigger(str, Enum):
    VERIFICATION = "verification"
    STATUS_CHANGE = "status_change"
    DISSOLUTION = "dissolution"


INVALID_TRANSITION = "COMPANY_INVALID_STATUS_TRANSITION"
CANNOT_UPDATE_DISSOLVED = "COMPANY_CANNOT_UPDATE_DISSOLVED"
ALREADY_DISSOLVED = "COMPANY_ALREADY_DISSOLVED"

_EDGES: dict[tuple[CompanyStatus, CompanyStatus], Trigger] = {
    (CompanyStatus.DRAFT, CompanyStatus.ACTIVE): Trigger.VERIFICATION,
    (CompanyStatus.ACTIVE, CompanyStatus.INACTIVE): Trigger.STATUS_CHANGE,
    (CompanyStatus.INACTIVE, CompanyStatus.ACTIVE): Trigger.STATUS_CHANGE,
    (CompanyStatus.DRAFT, CompanyStatus.DISSOLVED): Trigger.DISSOLUTION,
    (CompanyStatus.ACTIVE, CompanyStatus.DISSOLVED): Trigger.DISSOLUTION,
    (CompanyStatus.INACTIVE, CompanyStatus.DISSOLVED): Trigger.DISSOLUTION,
}


def allowed_targets(current: CompanyStatus, trigger: Trigger) -> set[CompanyStatus]:
    return {dst for (src, dst), owner in _EDGES.items() if src is current and owner is trigger}


def check_transition(
    current: CompanyStatus,
    target: CompanyStatus,
    trigger: Trigger,
) -> None:
    current = CompanyStatus(current)
    target = CompanyStatus(target)
    details = {
        "currentStatus": current.value,
        "targetStatus": target.value,
        "trigger": trigger.value,
        "allowedTargets": sorted(s.value for s in allowed_targets(current, trigger)),
    }

    if current is CompanyStatus.DISSOLVED:
        if trigger is Trigger.DISSOLUTION:
            raise BusinessRuleError(
                "Company is already dissolved",
                code=ALREADY_DISSOLVED,
                details=details,
            )
        raise BusinessRuleError(
            "Dissolved companies cannot be updated",
            code=CANNOT_UPDATE_DISSOLVED,
            details=details,
        )

    if _EDGES.get((current, target)) is not trigger:
        raise BusinessRuleError(
            f"Invalid status transition {current.value} -> {target.value} via {trigger.value}",
            code=INVALID_TRANSITION,
            details=details,
        )


def is_verification_eligible(status: CompanyStatus) -> bool:
    return CompanyStatus(status) is CompanyStatus.DRAFT
