# capbook/queueing/dlq.py
from __future__ import annotations

import logging
from typing import Any

from rq import Queue
from rq.job import Job

from capbook.config import load_settings
from capbook.db import utc_now_iso
from capbook.redact import cnpj_last_four

log = logging.getLogger(__name__)


def _exc_type(err: BaseException | str) -> str:
    if isinstance(err, BaseException):
        return f"{type(err).__module__}.{type(err).__name__}"
    return "str"


def dead_letter_meta(job: Job, err: BaseException | str) -> dict[str, Any]:
    """
    Meta for the DLQ copy of an exhausted verification job.

    The attempt count is taken from RQ's counters as seen by an exception
    handler, i.e. before the failed attempt is booked: retries_left is 0 on
    the last attempt and None for jobs enqueued without a Retry.
    """
    meta = dict(job.meta or {})
    payload = job.args[0] if job.args and isinstance(job.args[0], dict) else {}

    max_attempts = int(meta.get("max_attempts") or 1)
    retries_left = job.retries_left or 0

    meta.update(
        {
            "company_id": meta.get("company_id") or payload.get("company_id"),
            "verification_job_id": payload.get("job_id") or job.id,
            "cnpj_last_four": cnpj_last_four(payload.get("registration_number")),
            "attempts": max(max_attempts - retries_left, 1),
            "max_attempts": max_attempts,
            "failed_job_id": job.id,
            "origin": job.origin,
            "dead_lettered_at": utc_now_iso(),
            "dlq_reason": str(err),
            "exc_type": _exc_type(err),
        }
    )
    return meta


def push_to_dlq(job: Job, *, err: BaseException | str, dlq_name: str | None = None) -> str | None:
    """
    Copy a verification job that used up its retries onto the DLQ.

    The copy keeps the task and payload so an operator can inspect or requeue
    it. Returns the new DLQ job id, or None if skipped (already a DLQ job) or
    if the copy itself failed. Re-running a DLQ copy is harmless: the company
    record no longer belongs to a PENDING job, so the processor skips it.
    """
    dlq_name = dlq_name or load_settings().queue.dlq_name
    if getattr(job, "origin", "") == dlq_name:
        return None

    try:
        meta = dead_letter_meta(job, err)
        dlq = Queue(dlq_name, connection=job.connection)
        copy = dlq.enqueue(
            job.func,
            *job.args,
            **job.kwargs,
            job_timeout=job.timeout,
            description=f"dead-letter {meta['verification_job_id']} company={meta['company_id']}",
            meta=meta,
        )
    except Exception:  # noqa: BLE001
        log.exception("Failed to push verification job %s to DLQ %s", getattr(job, "id", "<?>"), dlq_name)
        return None

    log.warning(
        "verification job %s for company %s dead-lettered to %s as %s after %s/%s attempts: %s",
        job.id,
        meta["company_id"],
        dlq_name,
        copy.id,
        meta["attempts"],
        meta["max_attempts"],
        meta["dlq_reason"],
    )
    return copy.id
