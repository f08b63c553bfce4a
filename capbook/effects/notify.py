# capbook/effects/notify.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from capbook.db import utc_now_iso

COMPANY_ACTIVATED = "COMPANY_ACTIVATED"
COMPANY_CNPJ_FAILED = "COMPANY_CNPJ_FAILED"


@dataclass(frozen=True)
class NotificationRequest:
    user_id: str
    notification_type: str
    subject: str
    body: str
    company_id: str | None = None
    company_name: str | None = None
    related_entity_type: str | None = "Company"
    related_entity_id: str | None = None


class SqliteNotifier:
    """In-app notifications, one row per request in the `notifications` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def submit(self, req: NotificationRequest) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO notifications (
                created_at, user_id, notification_type, subject, body,
                related_entity_type, related_entity_id, company_id, company_name
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                utc_now_iso(),
                req.user_id,
                req.notification_type,
                req.subject,
                req.body,
                req.related_entity_type,
                req.related_entity_id,
                req.company_id,
                req.company_name,
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def list_for_user(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        cur = self.conn.execute(
            """
            SELECT id, created_at, notification_type, subject, body,
                   related_entity_type, related_entity_id, company_id, company_name, is_read
            FROM notifications
            WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (user_id, max(limit, 1)),
        )
        keys = (
            "id",
            "createdAt",
            "notificationType",
            "subject",
            "body",
            "relatedEntityType",
            "relatedEntityId",
            "companyId",
            "companyName",
            "isRead",
        )
        return [dict(zip(keys, tuple(row))) for row in cur.fetchall()]
