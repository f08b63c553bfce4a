# capbook/company/store.py
from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from capbook.company.models import Company, CompanyPatch, CompanyStatus, VerificationRecord
from capbook.db import utc_now_iso
from capbook.exceptions import NotFoundError, StaleCompanyError

log = logging.getLogger(__name__)

_COLUMNS = (
    "id, name, registration_number, status, verification_record, verified_at, "
    "creator_user_id, version, created_at, updated_at"
)


def _dump_record(record: VerificationRecord | None) -> str | None:
    if record is None:
        return None
    return json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False)


def _load_record(raw: str | None) -> VerificationRecord | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        log.warning("Unreadable verification_record JSON; treating as absent")
        return None
    return VerificationRecord.from_dict(data if isinstance(data, dict) else None)


def _row_to_company(row: sqlite3.Row) -> Company:
    return Company(
        id=row["id"],
        name=row["name"],
        registration_number=row["registration_number"],
        status=CompanyStatus(row["status"]),
        creator_user_id=row["creator_user_id"],
        verification_record=_load_record(row["verification_record"]),
        verified_at=row["verified_at"],
        version=int(row["version"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class CompanyStore:
    """
    SQLite-backed company records keyed by company id.

    Every write is a single UPDATE that bumps ``version``; passing
    ``expected_version`` turns it into a compare-and-set.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    def insert(self, company: Company) -> Company:
        now = utc_now_iso()
        self.conn.execute(
            f"INSERT INTO companies ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                company.id,
                company.name,
                company.registration_number,
                CompanyStatus(company.status).value,
                _dump_record(company.verification_record),
                company.verified_at,
                company.creator_user_id,
                company.version,
                company.created_at or now,
                company.updated_at or now,
            ),
        )
        self.conn.commit()
        return self.get_company(company.id)

    def read_company(self, company_id: str) -> Company | None:
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM companies WHERE id = ?",
            (company_id,),
        ).fetchone()
        return _row_to_company(row) if row else None

    def get_company(self, company_id: str) -> Company:
        company = self.read_company(company_id)
        if company is None:
            raise NotFoundError(
                f"Company {company_id} not found",
                code="COMPANY_NOT_FOUND",
                details={"companyId": company_id},
            )
        return company

    def find_by_registration_number(self, registration_number: str) -> Company | None:
        row = self.conn.execute(
            f"SELECT {_COLUMNS} FROM companies WHERE registration_number = ?",
            (registration_number,),
        ).fetchone()
        return _row_to_company(row) if row else None

    def update_company(
        self,
        company_id: str,
        patch: CompanyPatch,
        *,
        expected_version: int | None = None,
    ) -> Company:
        if patch.is_empty():
            raise ValueError("update_company called with an empty patch")

        sets: list[str] = []
        params: list[Any] = []
        if patch.verification_record is not None:
            sets.append("verification_record = ?")
            params.append(_dump_record(patch.verification_record))
        if patch.status is not None:
            sets.append("status = ?")
            params.append(CompanyStatus(patch.status).value)
        if patch.verified_at is not None:
            sets.append("verified_at = ?")
            params.append(patch.verified_at)
        sets.append("version = version + 1")
        sets.append("updated_at = ?")
        params.append(utc_now_iso())

        sql = f"UPDATE companies SET {', '.join(sets)} WHERE id = ?"
        params.append(company_id)
        if expected_version is not None:
            sql += " AND version = ?"
            params.append(int(expected_version))

        cur = self.conn.execute(sql, params)
        self.conn.commit()

        if cur.rowcount == 0:
            current = self.read_company(company_id)
            if current is None:
                raise NotFoundError(
                    f"Company {company_id} not found",
                    code="COMPANY_NOT_FOUND",
                    details={"companyId": company_id},
                )
            raise StaleCompanyError(
                f"Company {company_id} changed concurrently",
                details={
                    "companyId": company_id,
                    "expectedVersion": expected_version,
                    "currentVersion": current.version,
                },
            )
        return self.get_company(company_id)
