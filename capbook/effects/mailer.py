# capbook/effects/mailer.py
"""
Transactional email via AWS SES, plus the contact lookup it depends on.

Requires:
  - boto3
  - SES domain verified for the FROM address

Configuration (env vars, see capbook.config.SesConfig):
  SES_FROM_EMAIL      - Sender address
  SES_FROM_NAME       - Sender display name
  SES_AWS_REGION      - AWS region for SES
  AWS_ACCESS_KEY_ID   - (standard boto3 credential)
  AWS_SECRET_ACCESS_KEY
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from capbook.config import SesConfig
from capbook.effects.templates import render_email
from capbook.redact import mask_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Contact:
    user_id: str
    email: str | None
    locale: str | None


@dataclass(frozen=True)
class EmailRequest:
    to: str
    template_name: str
    locale: str
    variables: dict[str, Any] = field(default_factory=dict)


class ContactDirectory:
    """Reads a user's email address and preferred locale."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get_contact(self, user_id: str) -> Contact | None:
        row = self.conn.execute(
            "SELECT id, email, locale FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        email = (row[1] or "").strip() or None
        locale = (row[2] or "").strip() or None
        return Contact(user_id=row[0], email=email, locale=locale)


class SesMailer:
    """
    Renders a template and sends it through SES.

    The boto3 client is created lazily on first send (avoids import-time
    boto3 calls). send() raises on SES errors; the caller decides whether a
    failed email matters.
    """

    def __init__(self, cfg: SesConfig, client: Any = None) -> None:
        self.cfg = cfg
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import boto3

            self._client = boto3.client("ses", region_name=self.cfg.region)
        return self._client

    def send(self, req: EmailRequest) -> str:
        rendered = render_email(req.template_name, req.locale, req.variables)
        from_addr = f"{self.cfg.from_name} <{self.cfg.from_email}>"

        response = self._get_client().send_email(
            Source=from_addr,
            Destination={"ToAddresses": [req.to]},
            Message={
                "Subject": {"Data": rendered.subject, "Charset": "UTF-8"},
                "Body": {
                    "Html": {"Data": rendered.html, "Charset": "UTF-8"},
                    "Text": {"Data": rendered.text, "Charset": "UTF-8"},
                },
            },
        )
        message_id = str(response.get("MessageId", "unknown"))
        logger.info(
            "SES email sent",
            extra={
                "to": mask_email(req.to),
                "template": req.template_name,
                "locale": req.locale,
                "message_id": message_id,
            },
        )
        return message_id
