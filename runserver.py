from __future__ import annotations

import argparse
import os

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the image zip converter API.")
    parser.add_argument(
        "--host",
        default=os.getenv("IMAGEZIP_HOST", "127.0.0.1"),
        help="Host to bind (default: %(default)s or env IMAGEZIP_HOST)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("IMAGEZIP_PORT", "8765")),
        help="Port to bind (default: %(default)s or env IMAGEZIP_PORT)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload (default: False)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=("critical", "error", "warning", "info", "debug", "trace"),
        help="Uvicorn log level (default: info)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    uvicorn.run(
        app="imagezip.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
