# capbook/queueing/worker.py
from __future__ import annotations

import importlib
import logging
import os

from rq import Queue
from rq import SimpleWorker as RQSimpleWorker
from rq import Worker as RQWorker

from capbook.config import load_settings
from capbook.queueing import tasks as _tasks  # noqa: F401  (ensure task module is imported)
from capbook.queueing.dlq import push_to_dlq
from capbook.queueing.redis_conn import get_redis

log = logging.getLogger(__name__)


def _dlq_exception_handler(job, exc_type, exc_value, tb):
    """
    RQ exception handler: copy verification jobs with no retries left to the DLQ.

    Returns True so RQ keeps running the remaining handlers (and its default
    failed-job bookkeeping).
    """
    try:
        dlq_name = load_settings().queue.dlq_name
        # Never DLQ jobs already running on the DLQ queue
        if getattr(job, "origin", "") == dlq_name:
            return True
        # Handlers run before RQ schedules the retry; retries_left is 0 on the last
        # attempt and None when the job was enqueued without a Retry
        if not job.retries_left:
            push_to_dlq(job, err=exc_value, dlq_name=dlq_name)
    except Exception:  # noqa: BLE001
        log.exception("DLQ exception handler failed")
    return True


def _queue_names_from_env_or_cfg() -> list[str]:
    raw = os.getenv("RQ_QUEUE", "")
    if raw.strip():
        return [q.strip() for q in raw.split(",") if q.strip()]
    return [load_settings().queue.queue_name]


def _select_worker_cls():
    """
    Windows: always SimpleWorker (forking Worker uses os.wait4 which doesn't exist on Windows).
    Non-Windows: honor RQ_WORKER_CLASS if provided; else use Worker.
    """
    if os.name == "nt":
        return RQSimpleWorker

    env_cls = os.getenv("RQ_WORKER_CLASS", "").strip()
    if env_cls:
        mod, name = env_cls.rsplit(".", 1)
        return getattr(importlib.import_module(mod), name)
    return RQWorker


def run(burst: bool = False) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")

    r = get_redis()
    queue_names = _queue_names_from_env_or_cfg()
    queues = [Queue(name, connection=r) for name in queue_names]

    worker_cls = _select_worker_cls()
    log.info("Worker class: %s.%s", worker_cls.__module__, worker_cls.__name__)
    log.info("Queues: %s", ", ".join(queue_names))

    w = worker_cls(queues, connection=r, exception_handlers=[_dlq_exception_handler])

    # The scheduler moves retried jobs back onto the queue when their backoff elapses.
    w.work(with_scheduler=True, burst=burst)


if __name__ == "__main__":
    run()
