#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os

import uvicorn

from catrescue.settings import configure_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the cat rescue reports API.")
    parser.add_argument("--host", default=os.environ.get("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8000")))
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    args = parser.parse_args()

    configure_logging(args.log_level)
    uvicorn.run(
        "catrescue.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
