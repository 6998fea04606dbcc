"""Background resumption of runs suspended at wait steps."""

from __future__ import annotations

import threading
from datetime import datetime

from flask import Flask

from ..extensions import db
from ..models.runs import ExecutionRun
from ..utils.clock import utcnow
from .errors import DispatchIsolationError
from .execution_log import ExecutionLogger
from .walker import GraphWalker


class ResumeScheduler:
    """Polls for due suspended runs and hands them back to the walker.

    A run is only resumed after it has been claimed with a compare-and-swap from
    suspended to running, so duplicate wake-ups and concurrent pollers are harmless.
    Claims are leased: a run left running by a process that died mid-resume becomes
    due again once its lease expires.
    """

    def __init__(
        self,
        app: Flask,
        walker: GraphWalker,
        execution_log: ExecutionLogger,
        poll_interval: float = 15.0,
        batch_size: int = 100,
    ) -> None:
        self.app = app
        self.walker = walker
        self.execution_log = execution_log
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_due(self, now: datetime | None = None) -> list[int]:
        """Resume every run whose wait has elapsed; returns the ids actually resumed."""

        now = now or utcnow()
        due = self.execution_log.due_run_ids(now, self.batch_size)
        return [run_id for run_id in due if self.resume_run(run_id, now)]

    def resume_run(self, run_id: int, now: datetime | None = None) -> bool:
        if not self.execution_log.claim_for_resume(run_id, now):
            return False

        run = db.session.get(ExecutionRun, run_id)
        if run is None:
            return False
        try:
            self.walker.resume(run, run.automation)
        except DispatchIsolationError as exc:
            self.app.logger.exception("resumed run %s crashed", run_id)
            self.execution_log.fail_by_id(exc.run_id, str(exc))
        return True

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="automation-resume", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run_loop(self) -> None:
        while not self._stop.wait(self.poll_interval):
            with self.app.app_context():
                try:
                    resumed = self.run_due()
                except Exception:
                    self.app.logger.exception("resume scheduler poll failed")
                    db.session.rollback()
                    continue
                if resumed:
                    self.app.logger.info("resumed %s suspended automation runs", len(resumed))


_scheduler_instance: ResumeScheduler | None = None
_scheduler_lock = threading.Lock()


def ensure_scheduler_started(app: Flask) -> ResumeScheduler:
    """Ensure one resume scheduler thread is polling for this process."""
    global _scheduler_instance
    with _scheduler_lock:
        if _scheduler_instance is None:
            _scheduler_instance = app.extensions["automation"].scheduler
            _scheduler_instance.start()
    return _scheduler_instance
