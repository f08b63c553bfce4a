# capbook/company/__init__.py
from __future__ import annotations

from .cnpj import format_cnpj, is_valid_cnpj, normalize_cnpj
from .models import (
    Company,
    CompanyPatch,
    CompanyStatus,
    ValidationStatus,
    VerificationError,
    VerificationRecord,
)
from .service import CompanyService
from .state import Trigger, allowed_targets, check_transition, is_verification_eligible
from .store import CompanyStore

__all__ = [
    "Company",
    "CompanyPatch",
    "CompanyService",
    "CompanyStatus",
    "CompanyStore",
    "Trigger",
    "ValidationStatus",
    "VerificationError",
    "VerificationRecord",
    "allowed_targets",
    "check_transition",
    "format_cnpj",
    "is_valid_cnpj",
    "is_verification_eligible",
    "normalize_cnpj",
]
