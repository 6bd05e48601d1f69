#!/usr/bin/env python3
"""Standalone entry point for the videoconv backend.

Accepts --port, --host, and --data-dir CLI args and sets environment
variables BEFORE importing any app modules (so pydantic-settings picks
them up). Uploads and converted files live under the data directory.
"""

import argparse
import os


def main():
    parser = argparse.ArgumentParser(description="videoconv Backend Server")
    parser.add_argument("--port", type=int, default=5174, help="Port to listen on")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Directory holding uploads/ and output/ (default: cwd)",
    )
    args = parser.parse_args()

    data_dir = os.path.abspath(args.data_dir or os.getcwd())
    os.makedirs(data_dir, exist_ok=True)

    # Set env vars BEFORE any app imports so pydantic Settings reads them
    os.environ["API_PORT"] = str(args.port)
    os.environ["API_HOST"] = args.host
    os.environ.setdefault("UPLOAD_DIR", os.path.join(data_dir, "uploads"))
    os.environ.setdefault("OUTPUT_DIR", os.path.join(data_dir, "output"))

    import uvicorn

    uvicorn.run(
        "videoconv.main:app",
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
