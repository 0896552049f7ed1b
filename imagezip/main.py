from __future__ import annotations

import itertools
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from .converter import get_diagnostics
from .job_queue import JobQueue
from .models import JobStatus
from .report import APP_VERSION


class EnqueueRequest(BaseModel):
    paths: list[str]


class EventBuffer:
    """Keeps the most recent worker events for clients that poll."""

    def __init__(self, maxlen: int):
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._events: deque[dict[str, Any]] = deque(maxlen=max(1, maxlen))

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"seq": next(self._seq), "event": name, "payload": payload})

    def since(self, seq: int) -> list[dict[str, Any]]:
        with self._lock:
            return [item for item in self._events if item["seq"] > seq]


def _env_path(name: str) -> Path | None:
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser() if raw else None


events = EventBuffer(int(os.getenv("IMAGEZIP_EVENT_BUFFER", "500")))
job_queue = JobQueue(
    output_dir=_env_path("IMAGEZIP_OUTPUT_DIR"),
    temp_root=_env_path("IMAGEZIP_TEMP_DIR"),
    event_cb=events,
)

app = FastAPI(title="Image Zip Converter", version=APP_VERSION)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/diagnostics")
def diagnostics() -> JSONResponse:
    return JSONResponse(get_diagnostics())


@app.get("/api/jobs")
def list_jobs() -> JSONResponse:
    jobs = [item.to_dict() for item in job_queue.list_jobs()]
    return JSONResponse({"items": jobs, "running": job_queue.is_running})


@app.post("/api/jobs")
def enqueue_jobs(request: EnqueueRequest) -> JSONResponse:
    paths = [p.strip() for p in request.paths if p and p.strip()]
    if not paths:
        raise HTTPException(status_code=400, detail="No zip paths given")

    created = job_queue.enqueue(paths)
    return JSONResponse({"items": [job.to_dict() for job in created]})


@app.post("/api/jobs/cancel")
def cancel_current() -> JSONResponse:
    job_queue.cancel_current()
    return JSONResponse({"ok": True})


@app.post("/api/jobs/clear")
def clear_finished() -> JSONResponse:
    removed = job_queue.clear_finished()
    return JSONResponse({"removed": removed})


@app.get("/api/jobs/{job_id}")
def get_job(job_id: str) -> JSONResponse:
    record = job_queue.get(job_id)
    if not record:
        raise HTTPException(status_code=404, detail="Job not found")
    return JSONResponse(record.to_dict())


@app.get("/api/jobs/{job_id}/download")
def download_output(job_id: str):
    record = job_queue.get(job_id)
    if not record:
        raise HTTPException(status_code=404, detail="Job not found")
    if record.status is not JobStatus.SUCCESS or not record.output_path:
        raise HTTPException(status_code=409, detail="Job is not completed")

    output_path = Path(record.output_path)
    if not output_path.exists():
        raise HTTPException(status_code=404, detail="Output file not found")

    return FileResponse(path=output_path, filename=output_path.name, media_type="application/zip")


@app.get("/api/events")
def list_events(since: int = 0) -> JSONResponse:
    return JSONResponse({"items": events.since(since)})
