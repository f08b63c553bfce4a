# capbook/queueing/tasks.py
"""
RQ entrypoints.

The worker process imports this module; each job builds its own object graph
from config (one SQLite connection, one registry client) and tears it down
when the job ends.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from typing import Any

from rq import get_current_job

from capbook.company.store import CompanyStore
from capbook.config import AppConfig, load_settings
from capbook.db import get_conn
from capbook.effects.audit import SqliteAuditLog
from capbook.effects.coordinator import SideEffectCoordinator
from capbook.effects.mailer import ContactDirectory, SesMailer
from capbook.effects.notify import SqliteNotifier
from capbook.queueing.processor import VerificationJob, VerificationProcessor
from capbook.registry.client import RegistryClient, RegistryLookup

log = logging.getLogger(__name__)


def build_processor(
    cfg: AppConfig,
    conn: sqlite3.Connection,
    *,
    registry: RegistryLookup | None = None,
    mailer: Any = None,
) -> VerificationProcessor:
    """Wire a VerificationProcessor from config; registry/mailer may be injected."""
    coordinator = SideEffectCoordinator(
        audit=SqliteAuditLog(conn),
        notifier=SqliteNotifier(conn),
        mailer=mailer or SesMailer(cfg.ses),
        contacts=ContactDirectory(conn),
        default_locale=cfg.default_locale,
    )
    return VerificationProcessor(
        store=CompanyStore(conn),
        registry=registry or RegistryClient.from_config(cfg.registry),
        coordinator=coordinator,
    )


def job_attempts(job: Any, default_max_attempts: int) -> tuple[int, int]:
    """
    Return (attempt_number, max_attempts) for an RQ job.

    RQ starts a job with retries_left == Retry.max and decrements it each time
    the job is requeued, so attempts already made = (max_attempts - 1) - retries_left.
    """
    if job is None:
        return 0, default_max_attempts
    meta = getattr(job, "meta", None) or {}
    try:
        max_attempts = int(meta.get("max_attempts", default_max_attempts))
    except (TypeError, ValueError):
        max_attempts = default_max_attempts
    retries_left = getattr(job, "retries_left", None)
    try:
        retries_left = int(retries_left) if retries_left is not None else 0
    except (TypeError, ValueError):
        retries_left = 0
    attempt_number = (max_attempts - 1) - retries_left
    return max(attempt_number, 0), max_attempts


def task_verify_registration(payload: dict[str, Any]) -> dict[str, Any]:
    """
    RQ task: verify one company's registration number.

    Raises only for transient registry failures (so RQ's Retry engages) and,
    after recording the failure, on the final attempt.
    """
    cfg = load_settings()
    rq_job = get_current_job()  # may be None if called outside RQ
    attempt_number, max_attempts = job_attempts(rq_job, cfg.retry.max_attempts)

    job = VerificationJob.from_payload(
        payload,
        attempt_number=attempt_number,
        max_attempts=max_attempts,
        job_id=getattr(rq_job, "id", None),
    )
    log.info(
        "task_verify_registration start job=%s company=%s attempt=%s/%s",
        job.job_id,
        job.company_id,
        attempt_number + 1,
        max_attempts,
    )

    with closing(get_conn()) as conn:
        processor = build_processor(cfg, conn)
        try:
            return processor.process(job)
        finally:
            registry = processor.registry
            if isinstance(registry, RegistryClient):
                registry.close()
