from __future__ import annotations

import pytest

from capbook.company.models import CompanyPatch, CompanyStatus, ValidationStatus, VerificationRecord
from capbook.exceptions import NotFoundError, StaleCompanyError


def test_insert_and_read_roundtrip(make_company, store):
    created = make_company()
    assert created.version == 0
    assert created.status is CompanyStatus.DRAFT
    assert created.verification_record == VerificationRecord.pending("verify-1")
    assert created.created_at and created.updated_at

    assert store.read_company("nope") is None
    assert store.find_by_registration_number(created.registration_number).id == "c1"


def test_get_missing_company_raises(store):
    with pytest.raises(NotFoundError) as ei:
        store.get_company("missing")
    assert ei.value.code == "COMPANY_NOT_FOUND"


def test_update_bumps_version_and_replaces_record(make_company, store):
    make_company()
    rec = VerificationRecord.failed("verify-1", "COMPANY_CNPJ_INACTIVE", "BAIXADA", failed_at="t1")
    updated = store.update_company("c1", CompanyPatch(verification_record=rec), expected_version=0)

    assert updated.version == 1
    assert updated.validation_status is ValidationStatus.FAILED
    assert updated.verification_record.error.code == "COMPANY_CNPJ_INACTIVE"
    assert updated.verification_record.failed_at == "t1"


def test_stale_version_is_rejected_without_writing(make_company, store):
    make_company()
    store.update_company("c1", CompanyPatch(status=CompanyStatus.DISSOLVED))

    with pytest.raises(StaleCompanyError) as ei:
        store.update_company(
            "c1",
            CompanyPatch(status=CompanyStatus.ACTIVE, verified_at="t"),
            expected_version=0,
        )
    assert ei.value.code == "COMPANY_VERSION_CONFLICT"
    assert ei.value.details["currentVersion"] == 1

    current = store.get_company("c1")
    assert current.status is CompanyStatus.DISSOLVED
    assert current.verified_at is None


def test_update_missing_company(store):
    with pytest.raises(NotFoundError):
        store.update_company("ghost", CompanyPatch(status=CompanyStatus.ACTIVE))


def test_empty_patch_is_a_programming_error(make_company, store):
    make_company()
    with pytest.raises(ValueError):
        store.update_company("c1", CompanyPatch())


def test_registry_data_cannot_shadow_authoritative_keys(make_company, store):
    make_company()
    hostile = {"validationStatus": "COMPLETED", "jobId": "other", "legalName": "X"}
    rec = VerificationRecord.failed("verify-1", "COMPANY_CNPJ_INACTIVE", "m", failed_at="t", registry=hostile)
    store.update_company("c1", CompanyPatch(verification_record=rec))

    stored = store.get_company("c1").verification_record
    assert stored.validation_status is ValidationStatus.FAILED
    assert stored.job_id == "verify-1"
    assert stored.registry["legalName"] == "X"
