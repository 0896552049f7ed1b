from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable
from uuid import uuid4

from .converter import ImageConverter
from .models import JobRecord, JobStatus, ProgressInfo
from .pipeline import CancelCheck, ProgressCallback, default_output_dir, run_archive_pipeline

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, dict[str, Any]], None]
PipelineRunner = Callable[[JobRecord, ProgressCallback, CancelCheck], Path]

EVENT_PROGRESS = "processing-progress"
EVENT_COMPLETE = "job-complete"
EVENT_FAILED = "job-failed"
EVENT_CANCELLED = "job-cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """Holds job records and runs them one at a time on a background thread.

    The job list is the only state shared with callers; every access goes
    through ``self._lock``. The worker never does I/O while holding it.
    """

    def __init__(
        self,
        output_dir: Path | None = None,
        temp_root: Path | None = None,
        event_cb: EventCallback | None = None,
        runner: PipelineRunner | None = None,
    ):
        self.output_dir = output_dir
        self.temp_root = temp_root
        self.event_cb = event_cb
        self._runner = runner or self._run_pipeline
        self._converter: ImageConverter | None = None

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._jobs: list[JobRecord] = []
        self._running = False
        self._cancel = threading.Event()
        self._worker: threading.Thread | None = None

    # -- caller operations -------------------------------------------------

    def enqueue(self, paths: Iterable[str | Path], start_worker: bool = True) -> list[JobRecord]:
        with self._lock:
            created = [JobRecord(id=str(uuid4()), input_path=str(path)) for path in paths]
            self._jobs.extend(created)
            snapshots = [job.snapshot() for job in created]
        for job in snapshots:
            logger.info("Queued job %s for %s", job.id, job.input_path)
        if start_worker and snapshots:
            self.start_worker_if_idle()
        return snapshots

    def cancel_current(self) -> None:
        self._cancel.set()

    def discard_pending(self) -> int:
        """Cancel every job that has not started yet. The running job is untouched."""
        with self._lock:
            dropped = [job for job in self._jobs if job.status is JobStatus.PENDING]
            for job in dropped:
                job.status = JobStatus.CANCELLED
                job.error = "Cancelled before start"
                job.updated_at = _utcnow()
        for job in dropped:
            self._emit(EVENT_CANCELLED, {"job_id": job.id})
        return len(dropped)

    def clear_finished(self) -> int:
        with self._lock:
            before = len(self._jobs)
            self._jobs = [job for job in self._jobs if not job.status.is_terminal]
            return before - len(self._jobs)

    def start_worker_if_idle(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._worker = threading.Thread(target=self._worker_loop, name="imagezip-worker", daemon=True)
            self._worker.start()
            return True

    def list_jobs(self) -> list[JobRecord]:
        with self._lock:
            return [job.snapshot() for job in self._jobs]

    def get(self, job_id: str) -> JobRecord | None:
        with self._lock:
            job = self._find(job_id)
            return job.snapshot() if job else None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: not self._running, timeout=timeout)

    # -- worker ------------------------------------------------------------

    def _worker_loop(self) -> None:
        try:
            while True:
                self._cancel.clear()
                job = self._next_pending()
                if job is None:
                    return
                try:
                    self._run_job(job)
                except Exception as exc:
                    logger.exception("Worker error on job %s", job.id)
                    self._mark_failed(job.id, f"Internal error: {exc}")
        finally:
            self._release_worker()

    def _run_job(self, job: JobRecord) -> None:
        logger.info("Processing job %s (%s)", job.id, job.input_path)
        try:
            output_path = self._runner(
                job,
                lambda info, job_id=job.id: self._on_progress(job_id, info),
                self._cancel.is_set,
            )
        except Exception as exc:
            if self._cancel.is_set():
                self._mark_cancelled(job.id)
            else:
                logger.warning("Job %s failed: %s", job.id, exc)
                self._mark_failed(job.id, str(exc))
            return

        if self._cancel.is_set():
            # Cancellation wins over a result that finished in the meantime.
            try:
                Path(output_path).unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to remove output of cancelled job %s: %s", job.id, output_path)
            self._mark_cancelled(job.id)
        else:
            self._mark_success(job.id, str(output_path))

    def _release_worker(self) -> None:
        # Normally done by _next_pending; this covers a loop that died early.
        # A newer worker may already own the flag, leave it alone then.
        with self._lock:
            if self._worker is not threading.current_thread():
                return
            self._running = False
            self._worker = None
            for job in self._jobs:
                if job.status is JobStatus.PROCESSING:
                    job.status = JobStatus.FAILED
                    job.error = "Worker stopped unexpectedly"
                    job.progress = None
                    job.updated_at = _utcnow()
            self._idle.notify_all()

    def _next_pending(self) -> JobRecord | None:
        with self._lock:
            for job in self._jobs:
                if job.status is JobStatus.PENDING:
                    job.status = JobStatus.PROCESSING
                    job.updated_at = _utcnow()
                    return job.snapshot()
            # Cleared in the same critical section as the lookup so a
            # concurrent enqueue either sees a live worker or starts one.
            self._running = False
            self._worker = None
            self._idle.notify_all()
            return None

    def _run_pipeline(self, job: JobRecord, progress_cb: ProgressCallback, cancel_check: CancelCheck) -> Path:
        if self._converter is None:
            self._converter = ImageConverter()
        return run_archive_pipeline(
            job.id,
            Path(job.input_path),
            output_dir=self.output_dir or default_output_dir(),
            temp_root=self.temp_root,
            converter=self._converter,
            progress_cb=progress_cb,
            cancel_check=cancel_check,
        )

    def _update(self, job_id: str, **kwargs) -> None:
        with self._lock:
            job = self._find(job_id)
            if job is None:
                return
            for k, v in kwargs.items():
                setattr(job, k, v)
            job.updated_at = _utcnow()

    def _find(self, job_id: str) -> JobRecord | None:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    def _on_progress(self, job_id: str, info: ProgressInfo) -> None:
        self._update(job_id, progress=info)
        self._emit(EVENT_PROGRESS, {"job_id": job_id, **info.to_dict()})

    def _mark_success(self, job_id: str, output_path: str) -> None:
        self._update(job_id, status=JobStatus.SUCCESS, output_path=output_path, progress=None)
        logger.info("Job %s finished: %s", job_id, output_path)
        self._emit(EVENT_COMPLETE, {"job_id": job_id, "output_path": output_path})

    def _mark_failed(self, job_id: str, error: str) -> None:
        self._update(job_id, status=JobStatus.FAILED, error=error, progress=None)
        self._emit(EVENT_FAILED, {"job_id": job_id, "error": error})

    def _mark_cancelled(self, job_id: str) -> None:
        self._update(job_id, status=JobStatus.CANCELLED, error="Cancelled by user", progress=None)
        logger.info("Job %s cancelled", job_id)
        self._emit(EVENT_CANCELLED, {"job_id": job_id})

    def _emit(self, name: str, payload: dict[str, Any]) -> None:
        if not self.event_cb:
            return
        try:
            self.event_cb(name, payload)
        except Exception:
            logger.exception("Event callback failed for %s", name)
