# capbook/company/models.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class CompanyStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DISSOLVED = "DISSOLVED"


class ValidationStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class VerificationError:
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class VerificationRecord:
    """
    Outcome of the latest registration check, stored wholesale on the company.

    Registry data lives under ``registry`` and never shares a namespace with
    the authoritative keys (validationStatus, jobId, error, failedAt), so an
    upstream payload cannot overwrite them.
    """

    validation_status: ValidationStatus
    job_id: str | None = None
    error: VerificationError | None = None
    failed_at: str | None = None
    registry: dict[str, Any] | None = None

    @classmethod
    def pending(cls, job_id: str) -> VerificationRecord:
        return cls(validation_status=ValidationStatus.PENDING, job_id=job_id)

    @classmethod
    def completed(cls, job_id: str, registry: dict[str, Any]) -> VerificationRecord:
        return cls(
            validation_status=ValidationStatus.COMPLETED,
            job_id=job_id,
            registry=dict(registry),
        )

    @classmethod
    def failed(
        cls,
        job_id: str | None,
        code: str,
        message: str,
        *,
        failed_at: str,
        registry: dict[str, Any] | None = None,
    ) -> VerificationRecord:
        return cls(
            validation_status=ValidationStatus.FAILED,
            job_id=job_id,
            error=VerificationError(code=code, message=message),
            failed_at=failed_at,
            registry=dict(registry) if registry is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "validationStatus": self.validation_status.value,
            "jobId": self.job_id,
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        if self.failed_at is not None:
            out["failedAt"] = self.failed_at
        if self.registry is not None:
            out["registry"] = dict(self.registry)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VerificationRecord | None:
        if not data:
            return None
        err_raw = data.get("error")
        error = None
        if isinstance(err_raw, dict) and err_raw.get("code"):
            error = VerificationError(
                code=str(err_raw["code"]),
                message=str(err_raw.get("message") or ""),
            )
        registry = data.get("registry")
        return cls(
            validation_status=ValidationStatus(data.get("validationStatus", "PENDING")),
            job_id=data.get("jobId"),
            error=error,
            failed_at=data.get("failedAt"),
            registry=dict(registry) if isinstance(registry, dict) else None,
        )


@dataclass(frozen=True)
class Company:
    id: str
    name: str
    registration_number: str
    status: CompanyStatus
    creator_user_id: str | None
    verification_record: VerificationRecord | None = None
    verified_at: str | None = None
    version: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def validation_status(self) -> ValidationStatus | None:
        if self.verification_record is None:
            return None
        return self.verification_record.validation_status


@dataclass(frozen=True)
class CompanyPatch:
    """
    A single atomic write to a company row.

    Fields left as None are not touched. Verification outcomes always carry a
    full ``verification_record``, which replaces the stored one wholesale.
    """

    verification_record: VerificationRecord | None = None
    status: CompanyStatus | None = None
    verified_at: str | None = None

    def is_empty(self) -> bool:
        return (
            self.verification_record is None
            and self.status is None
            and self.verified_at is None
        )
