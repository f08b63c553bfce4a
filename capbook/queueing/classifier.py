# capbook/queueing/classifier.py
from __future__ import annotations

from enum import Enum

from capbook.exceptions import RegistryNotFoundError

DEFAULT_MAX_ATTEMPTS = 3

# Error codes persisted on verification_record.error
CODE_INACTIVE = "COMPANY_CNPJ_INACTIVE"
CODE_NOT_FOUND = "COMPANY_CNPJ_NOT_FOUND"
CODE_REGISTRY_UNAVAILABLE = "COMPANY_CNPJ_REGISTRY_UNAVAILABLE"
CODE_ENQUEUE_FAILED = "COMPANY_CNPJ_ENQUEUE_FAILED"


class FailureDecision(str, Enum):
    RETRY = "RETRY"  # re-raise, let the queue redeliver; no writes, no side effects
    EXHAUSTED = "EXHAUSTED"  # record FAILED, run side effects, then re-raise
    DEFINITIVE = "DEFINITIVE"  # record FAILED, run side effects, complete the job


def is_final_attempt(attempt_number: int, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> bool:
    """attempt_number is 0-based: the number of attempts already made before this one."""
    return attempt_number + 1 >= max_attempts


def classify_failure(
    error: BaseException,
    attempt_number: int,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> FailureDecision:
    """
    Decide what a raised registry error means for this delivery.

    A "not found" answer is the registry speaking, not failing, so it is
    definitive on any attempt. Everything else is treated as transient.
    """
    if isinstance(error, RegistryNotFoundError):
        return FailureDecision.DEFINITIVE
    if is_final_attempt(attempt_number, max_attempts):
        return FailureDecision.EXHAUSTED
    return FailureDecision.RETRY


def error_message(error: BaseException) -> str:
    msg = str(error).strip()
    return msg or type(error).__name__
