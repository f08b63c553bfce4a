# capbook/exceptions.py
"""
Shared exception classes used across the codebase.

Every error that can end up in a company's verification record or in a
rejected request carries a stable machine-readable ``code`` plus a
human-readable message.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for errors with a stable code and optional details."""

    code = "APP_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class BusinessRuleError(AppError):
    """
    Raised when a request is valid in shape but violates a business rule.

    Examples:
        - Status change from DRAFT or DISSOLVED
        - Retry requested while validation is not FAILED
    """

    code = "BUSINESS_RULE_VIOLATION"


class NotFoundError(AppError):
    code = "NOT_FOUND"


class InvalidRegistrationNumberError(BusinessRuleError):
    code = "COMPANY_INVALID_CNPJ"


class StaleCompanyError(AppError):
    """
    Raised when an optimistic version check fails on a company write.

    Means another writer (a newer dispatch, a status change, a dissolution)
    committed first; the caller must re-read before deciding anything.
    """

    code = "COMPANY_VERSION_CONFLICT"


class RegistryError(AppError):
    """Base for failures talking to the registry lookup service."""

    code = "REGISTRY_ERROR"


class RegistryUnavailableError(RegistryError):
    """
    Raised when the registry cannot give an answer right now.

    Examples:
        - Network error or timeout
        - HTTP 5xx
        - HTTP 401/403 (misconfigured token)
        - Service not configured
    """

    code = "REGISTRY_UNAVAILABLE"


class RegistryNotFoundError(RegistryError):
    """Raised when the registry answers that the number does not exist."""

    code = "REGISTRY_NOT_FOUND"


__all__ = [
    "AppError",
    "BusinessRuleError",
    "NotFoundError",
    "InvalidRegistrationNumberError",
    "StaleCompanyError",
    "RegistryError",
    "RegistryUnavailableError",
    "RegistryNotFoundError",
]
