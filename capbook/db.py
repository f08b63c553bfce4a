# capbook/db.py
import os
import sqlite3
from datetime import UTC, datetime

# -------------------- basics --------------------

SCHEMA = """
CREATE TABLE IF NOT EXISTS companies (
  id                  TEXT PRIMARY KEY,
  name                TEXT NOT NULL,
  registration_number TEXT NOT NULL UNIQUE,
  status              TEXT NOT NULL DEFAULT 'DRAFT',
  verification_record TEXT,
  verified_at         TEXT,
  creator_user_id     TEXT,
  version             INTEGER NOT NULL DEFAULT 0,
  created_at          TEXT NOT NULL,
  updated_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
  id     TEXT PRIMARY KEY,
  email  TEXT,
  locale TEXT
);

CREATE TABLE IF NOT EXISTS audit_events (
  id            INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at    TEXT NOT NULL,
  actor_id      TEXT,
  actor_type    TEXT NOT NULL,
  action        TEXT NOT NULL,
  resource_type TEXT NOT NULL,
  resource_id   TEXT,
  company_id    TEXT,
  changes       TEXT,
  metadata      TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_events_company
  ON audit_events (company_id, created_at);

CREATE TABLE IF NOT EXISTS notifications (
  id                  INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at          TEXT NOT NULL,
  user_id             TEXT NOT NULL,
  notification_type   TEXT NOT NULL,
  subject             TEXT,
  body                TEXT,
  related_entity_type TEXT,
  related_entity_id   TEXT,
  company_id          TEXT,
  company_name        TEXT,
  is_read             INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_notifications_user
  ON notifications (user_id, created_at);
"""


def _db_path() -> str:
    # Prefer DATABASE_URL if set; otherwise fall back to DATABASE_PATH; otherwise dev.db
    url = os.environ.get("DATABASE_URL")
    if url:
        if not url.startswith("sqlite:///"):
            raise RuntimeError(f"Only sqlite supported; got {url}")
        return url.removeprefix("sqlite:///")
    path = os.environ.get("DATABASE_PATH")
    if path:
        return path
    return "dev.db"


def get_conn(db_path: str | None = None) -> sqlite3.Connection:
    """
    Shared SQLite connection helper for the worker, services and CLI.

    - If db_path is None, uses _db_path() (DATABASE_URL/DATABASE_PATH/dev.db).
    - Ensures foreign key enforcement.
    - Sets row_factory to sqlite3.Row for dict-like access.
    """
    if db_path is None:
        db_path = _db_path()
    con = sqlite3.connect(db_path)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys=ON")
    return con


def ensure_schema(con: sqlite3.Connection) -> None:
    """Create all tables used by this package if they don't exist."""
    con.executescript(SCHEMA)
    con.commit()


def utc_now_iso() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


__all__ = ["SCHEMA", "get_conn", "ensure_schema", "utc_now_iso"]
