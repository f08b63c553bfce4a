# capbook/effects/audit.py
from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any

from capbook.db import utc_now_iso
from capbook.redact import truncate_ip

ACTOR_USER = "USER"
ACTOR_SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class AuditEvent:
    actor_type: str
    action: str
    resource_type: str
    resource_id: str | None
    company_id: str | None
    actor_id: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


def build_metadata(
    *,
    source: str,
    request_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Audit metadata with the client IP truncated to its network."""
    meta: dict[str, Any] = {
        "source": source,
        "requestId": request_id,
        "ip": truncate_ip(ip),
        "userAgent": user_agent,
    }
    meta.update(extra)
    return meta


class SqliteAuditLog:
    """
    Append-only audit trail stored in the `audit_events` table.

    Each row holds:
      - created_at:  UTC timestamp (ISO 8601)
      - actor_id / actor_type
      - action:      stable code like "COMPANY_CNPJ_VALIDATED"
      - resource_type / resource_id / company_id
      - changes:     JSON {"before": ..., "after": ...}
      - metadata:    JSON dict (source, requestId, redacted ip, userAgent, ...)

    Rows are never updated or deleted here. Unlike the request-path helpers,
    record() raises on failure; callers that must not fail catch it.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def record(self, event: AuditEvent) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO audit_events (
                created_at, actor_id, actor_type, action,
                resource_type, resource_id, company_id, changes, metadata
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                utc_now_iso(),
                event.actor_id,
                event.actor_type,
                event.action,
                event.resource_type,
                event.resource_id,
                event.company_id,
                json.dumps(
                    {"before": event.before, "after": event.after},
                    separators=(",", ":"),
                    ensure_ascii=False,
                ),
                json.dumps(event.metadata or {}, separators=(",", ":"), ensure_ascii=False),
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def list_for_company(self, company_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """
        Most recent events for a company, newest first.

        If the table does not exist or a query error occurs, returns an empty list.
        """
        if limit < 1:
            limit = 1
        try:
            cur = self.conn.execute(
                """
                SELECT id, created_at, actor_id, actor_type, action,
                       resource_type, resource_id, company_id, changes, metadata
                FROM audit_events
                WHERE company_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (company_id, limit),
            )
        except sqlite3.Error:
            return []

        results: list[dict[str, Any]] = []
        for row in cur.fetchall():
            results.append(
                {
                    "id": row[0],
                    "createdAt": row[1],
                    "actorId": row[2],
                    "actorType": row[3],
                    "action": row[4],
                    "resourceType": row[5],
                    "resourceId": row[6],
                    "companyId": row[7],
                    "changes": json.loads(row[8]) if row[8] else None,
                    "metadata": json.loads(row[9]) if row[9] else {},
                }
            )
        return results
