from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from .job_queue import EVENT_CANCELLED, EVENT_COMPLETE, EVENT_FAILED, EVENT_PROGRESS, JobQueue
from .models import JobStatus


def configure_logging(log_level: str) -> None:
    logger = logging.getLogger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(log_level.upper())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(handler)


def _print_event(name: str, payload: dict[str, Any]) -> None:
    if name == EVENT_PROGRESS:
        print(
            f"[{payload['phase']}] {payload['current_file']}/{payload['total_files']} {payload['current_filename']}",
            flush=True,
        )
    elif name == EVENT_COMPLETE:
        print(f"done: {payload['output_path']}", flush=True)
    elif name == EVENT_FAILED:
        print(f"failed: {payload['error']}", flush=True)
    elif name == EVENT_CANCELLED:
        print("cancelled", flush=True)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert the images inside zip archives to JPEG/PNG/GIF.")
    parser.add_argument("zips", nargs="+", type=Path, help="Zip archives to convert, processed in order")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Where converted archives are written (default: env IMAGEZIP_OUTPUT_DIR or ~/Downloads)",
    )
    parser.add_argument("--temp-dir", type=Path, default=None, help="Parent directory for job workspaces")
    parser.add_argument(
        "--log-level",
        default="warning",
        choices=("critical", "error", "warning", "info", "debug"),
        help="Log level (default: %(default)s)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    queue = JobQueue(output_dir=args.output_dir, temp_root=args.temp_dir, event_cb=_print_event)
    queue.enqueue([str(p) for p in args.zips])
    try:
        queue.wait_until_idle()
    except KeyboardInterrupt:
        # Drop the backlog first so the worker cannot pick up the next job.
        dropped = queue.discard_pending()
        print(f"Cancelling current job and dropping {dropped} queued job(s)", flush=True)
        queue.cancel_current()
        queue.wait_until_idle()

    jobs = queue.list_jobs()
    return 0 if all(job.status is JobStatus.SUCCESS for job in jobs) else 1


if __name__ == "__main__":
    raise SystemExit(main())
