from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELLED)


class Phase(str, Enum):
    SCANNING = "scanning"
    CONVERTING = "converting"
    PACKAGING = "packaging"


@dataclass(frozen=True)
class ProgressInfo:
    current_file: int
    total_files: int
    current_filename: str
    phase: Phase

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_file": self.current_file,
            "total_files": self.total_files,
            "current_filename": self.current_filename,
            "phase": self.phase.value,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    id: str
    input_path: str
    status: JobStatus = JobStatus.PENDING
    progress: ProgressInfo | None = None  # only while processing
    output_path: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def snapshot(self) -> JobRecord:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "input_path": self.input_path,
            "status": self.status.value,
            "progress": self.progress.to_dict() if self.progress else None,
            "output_path": self.output_path,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
