from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .converter import JPEG_QUALITY, preservation_note

APP_VERSION = "1.0.0"
REPORT_NAME = "report.json"


@dataclass(frozen=True)
class ConversionRecord:
    original_path: str
    output_path: str
    original_format: str
    metadata_preserved: bool


@dataclass(frozen=True)
class SkippedRecord:
    path: str
    reason: str


@dataclass(frozen=True)
class Report:
    app_version: str
    timestamp: str
    input_zip: str
    files_scanned: int
    files_included: int
    files_converted: int
    files_skipped: int
    conversions: tuple[ConversionRecord, ...] = ()
    skipped: tuple[SkippedRecord, ...] = ()
    metadata_notes: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "appVersion": self.app_version,
            "timestamp": self.timestamp,
            "inputZip": self.input_zip,
            "stats": {
                "filesScanned": self.files_scanned,
                "filesIncluded": self.files_included,
                "filesConverted": self.files_converted,
                "filesSkipped": self.files_skipped,
            },
            "conversions": [
                {
                    "originalPath": c.original_path,
                    "outputPath": c.output_path,
                    "originalFormat": c.original_format,
                    "metadataPreserved": c.metadata_preserved,
                }
                for c in self.conversions
            ],
            "skipped": [{"path": s.path, "reason": s.reason} for s in self.skipped],
            "metadataNotes": list(self.metadata_notes),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


@dataclass
class ReportBuilder:
    input_zip: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    files_scanned: int = 0
    files_included: int = 0
    files_converted: int = 0
    conversions: list[ConversionRecord] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)

    @classmethod
    def for_archive(cls, input_path: str | Path, timestamp: str | None = None) -> ReportBuilder:
        name = Path(input_path).name or "unknown.zip"
        if timestamp is None:
            return cls(input_zip=name)
        return cls(input_zip=name, timestamp=timestamp)

    def increment_scanned(self) -> None:
        self.files_scanned += 1

    def add_conversion(self, original_path: str, output_path: str, original_format: str, metadata_preserved: bool) -> None:
        self.conversions.append(ConversionRecord(original_path, output_path, original_format, metadata_preserved))
        self.files_included += 1
        self.files_converted += 1

    def add_copied(self, original_path: str, output_path: str) -> None:
        # Copies only count; the conversions list is for transcoded files.
        self.files_included += 1

    def add_skipped(self, path: str, reason: str) -> None:
        self.skipped.append(SkippedRecord(path, reason))

    def finalize(self) -> Report:
        notes: list[str] = []
        seen: set[str] = set()
        for record in self.conversions:
            if record.original_format in seen:
                continue
            seen.add(record.original_format)
            notes.append(preservation_note(record.original_format))
        if self.files_converted:
            notes.append(f"All converted images encoded as JPEG with quality {JPEG_QUALITY}")

        return Report(
            app_version=APP_VERSION,
            timestamp=self.timestamp,
            input_zip=self.input_zip,
            files_scanned=self.files_scanned,
            files_included=self.files_included,
            files_converted=self.files_converted,
            files_skipped=len(self.skipped),
            conversions=tuple(self.conversions),
            skipped=tuple(self.skipped),
            metadata_notes=tuple(notes),
        )

    def to_json(self) -> str:
        return self.finalize().to_json()
