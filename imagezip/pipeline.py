from __future__ import annotations

import logging
import os
import shutil
import sys
import zipfile
from pathlib import Path, PurePosixPath
from typing import Callable

from .collision import CollisionManager
from .converter import TRANSCODE_SUFFIX, ConversionResult, ImageConverter, extension_of
from .errors import ConversionError, JobCancelled, ProcessingError
from .models import Phase, ProgressInfo
from .report import REPORT_NAME, ReportBuilder
from .workspace import TempWorkspace

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressInfo], None]
CancelCheck = Callable[[], bool]

OUTPUT_SUFFIX = "-converted"
NESTED_ARCHIVE_REASON = "nested archive ignored"


def default_output_dir() -> Path:
    explicit = os.getenv("IMAGEZIP_OUTPUT_DIR", "").strip()
    if explicit:
        return Path(explicit).expanduser()

    if sys.platform.startswith("linux"):
        xdg = os.getenv("XDG_DOWNLOAD_DIR", "").strip()
        if xdg:
            return Path(xdg).expanduser()
    return Path.home() / "Downloads"


def _check_cancel(cancel_check: CancelCheck | None) -> None:
    if cancel_check and cancel_check():
        raise JobCancelled()


def _emit(progress_cb: ProgressCallback | None, current: int, total: int, name: str, phase: Phase) -> None:
    if progress_cb:
        progress_cb(ProgressInfo(current_file=current, total_files=total, current_filename=name, phase=phase))


def _entry_relative_path(name: str) -> PurePosixPath:
    rel = PurePosixPath(name.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ProcessingError(f"Unsafe entry path in zip: {name}")
    return rel


def desired_output_path(rel: PurePosixPath, needs_conversion: bool) -> PurePosixPath:
    if needs_conversion:
        return rel.with_suffix(TRANSCODE_SUFFIX)
    return rel


def _scan_archive(
    archive: zipfile.ZipFile,
    converter: ImageConverter,
    report: ReportBuilder,
) -> list[zipfile.ZipInfo]:
    images: list[zipfile.ZipInfo] = []
    for info in archive.infolist():
        report.increment_scanned()
        if info.is_dir():
            continue
        if info.filename.lower().endswith(".zip"):
            report.add_skipped(info.filename, NESTED_ARCHIVE_REASON)
            continue
        if converter.classify(info.filename):
            images.append(info)
    return images


def _extract_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with archive.open(info) as src, target.open("wb") as dst:
        shutil.copyfileobj(src, dst)


def _convert_entry(
    archive: zipfile.ZipFile,
    info: zipfile.ZipInfo,
    workspace: TempWorkspace,
    converter: ImageConverter,
    collisions: CollisionManager,
) -> tuple[str, ConversionResult]:
    rel = _entry_relative_path(info.filename)
    extract_path = workspace.extract_dir / Path(*rel.parts)
    needs_conversion: bool | None = None

    try:
        _extract_entry(archive, info, extract_path)
        needs_conversion = converter.needs_transcode(extract_path)
        unique = collisions.reserve_unique(desired_output_path(rel, needs_conversion))
        staging_path = workspace.staging_dir / Path(*PurePosixPath(unique).parts)
        result = converter.convert(extract_path, staging_path)
    except ProcessingError:
        raise
    except Exception as exc:
        extracted_size = extract_path.stat().st_size if extract_path.exists() else None
        error = ConversionError(
            info.filename,
            exc,
            extension=extension_of(info.filename),
            needs_conversion=needs_conversion,
            compressed_size=info.compress_size,
            uncompressed_size=info.file_size,
            extracted_size=extracted_size,
        )
        logger.error("Error processing image from zip\n  %s", "\n  ".join(error.describe()))
        raise error from exc

    return unique, result


def _write_output_zip(staged: list[tuple[Path, str]], report: ReportBuilder, output_zip: Path) -> None:
    with zipfile.ZipFile(output_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for staging_path, arcname in staged:
            zf.write(staging_path, arcname)
        zf.writestr(REPORT_NAME, report.to_json())


def unique_output_path(output_dir: Path, input_stem: str) -> Path:
    candidate = output_dir / f"{input_stem}{OUTPUT_SUFFIX}.zip"
    counter = 1
    while candidate.exists():
        candidate = output_dir / f"{input_stem}{OUTPUT_SUFFIX}-{counter}.zip"
        counter += 1
    return candidate


def place_output(temp_zip: Path, output_dir: Path, input_stem: str) -> Path:
    if not output_dir.is_dir():
        raise ProcessingError(f"Could not find output folder: {output_dir}")

    final_path = unique_output_path(output_dir, input_stem)
    partial = output_dir / f".{final_path.name}.part"
    try:
        shutil.copyfile(temp_zip, partial)
        os.replace(partial, final_path)
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise ProcessingError(f"Failed to copy output zip to {output_dir}: {exc}") from exc
    return final_path


def run_archive_pipeline(
    job_id: str,
    input_zip: Path,
    *,
    output_dir: Path,
    temp_root: Path | None = None,
    converter: ImageConverter | None = None,
    progress_cb: ProgressCallback | None = None,
    cancel_check: CancelCheck | None = None,
) -> Path:
    """Convert one zip and return the path of the placed output archive.

    Raises ``JobCancelled`` at any checkpoint once ``cancel_check`` returns
    true, ``ConversionError`` on the first entry that fails (nothing is
    written to ``output_dir`` in that case) and ``ProcessingError`` for
    unreadable input, archives without images and placement failures.
    """
    converter = converter or ImageConverter()
    input_zip = Path(input_zip)

    with TempWorkspace(job_id, temp_root=temp_root) as workspace:
        try:
            archive = zipfile.ZipFile(input_zip)
        except (OSError, zipfile.BadZipFile) as exc:
            raise ProcessingError(f"Failed to read zip archive {input_zip.name}: {exc}") from exc

        with archive:
            _emit(progress_cb, 0, len(archive.infolist()), "Scanning...", Phase.SCANNING)
            _check_cancel(cancel_check)

            report = ReportBuilder.for_archive(input_zip)
            images = _scan_archive(archive, converter, report)
            total = len(images)
            if total == 0:
                raise ProcessingError("No image files found in zip")
            logger.info("Job %s: %d image(s) in %s", job_id, total, input_zip.name)

            collisions = CollisionManager()
            staged: list[tuple[Path, str]] = []
            for idx, info in enumerate(images, start=1):
                _check_cancel(cancel_check)
                _emit(progress_cb, idx, total, info.filename, Phase.CONVERTING)

                unique, result = _convert_entry(archive, info, workspace, converter, collisions)
                if result.converted:
                    report.add_conversion(info.filename, unique, result.original_format or "", result.metadata_preserved)
                else:
                    report.add_copied(info.filename, unique)
                staged.append((workspace.staging_dir / Path(*PurePosixPath(unique).parts), unique))

        _emit(progress_cb, total, total, "Creating output zip...", Phase.PACKAGING)
        _check_cancel(cancel_check)

        _write_output_zip(staged, report, workspace.output_zip_path)
        final_path = place_output(workspace.output_zip_path, output_dir, input_zip.stem or "output")
        logger.info("Job %s: wrote %s", job_id, final_path)
        return final_path
