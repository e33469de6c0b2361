# app/services/flow_runtime.py
"""
Runtime helpers for the flow executor.

- ConversationLocks: one re-entrant lock per conversation so that two
  inbound messages for the same chat can't start two executions.
- DelayScheduler: runs delay-node continuations as one-shot APScheduler
  jobs instead of sleeping inside the message handler.
"""
from __future__ import annotations

import logging
import threading
import weakref
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.job import Job
from apscheduler.schedulers.background import BackgroundScheduler

log = logging.getLogger("whatsaflow.flows.runtime")


class ConversationLock:
    """Re-entrant lock for one conversation"""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
        return False


class ConversationLocks:
    """
    Registry of locks keyed by conversation id.

    Entries are weak: a lock lives while some caller holds it, so the map
    doesn't grow with every conversation ever seen.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[Any, ConversationLock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def get(self, conversation_id: Any) -> ConversationLock:
        with self._guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = ConversationLock()
                self._locks[conversation_id] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class DelayScheduler:
    """Schedules one-shot callbacks on an APScheduler BackgroundScheduler"""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler(daemon=True)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("✅ Delay scheduler started")

    def schedule(self, delay_ms: int, callback: Callable[..., Any], *args: Any) -> Job:
        self.start()
        run_date = datetime.now() + timedelta(milliseconds=max(0, delay_ms))
        job = self.scheduler.add_job(
            callback,
            trigger="date",
            run_date=run_date,
            args=list(args),
            misfire_grace_time=None,  # a late continuation still runs
        )
        log.debug(f"⏱️ Scheduled continuation {job.id} in {delay_ms} ms")
        return job

    def pending(self) -> int:
        return len(self.scheduler.get_jobs())

    def cancel_all(self) -> int:
        """Drop every pending continuation. Returns how many were dropped"""
        count = self.pending()
        self.scheduler.remove_all_jobs()
        if count:
            log.info(f"🧹 Cancelled {count} pending delay jobs")
        return count

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("Delay scheduler stopped")

    def _on_job_error(self, event) -> None:
        log.error(f"❌ Delayed flow continuation {event.job_id} failed: {event.exception}")
