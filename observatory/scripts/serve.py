#!/usr/bin/env python3
"""Run the Agent Observatory HTTP API with uvicorn.

Usage:
  python -m observatory.scripts.serve --port 3188
"""
from __future__ import annotations

import argparse

import uvicorn

from observatory import config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Agent Observatory server")
    parser.add_argument("--host", default=config.HOST, help=f"Bind address (default: {config.HOST})")
    parser.add_argument("--port", type=int, default=config.PORT, help=f"Bind port (default: {config.PORT})")
    args = parser.parse_args(argv)

    uvicorn.run("observatory.main:app", host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
