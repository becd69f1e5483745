#!/usr/bin/env python3
"""Collect one metrics snapshot from agent transcripts and print it as JSON.

Usage:
  python -m observatory.scripts.collect --days 7 --pretty
  python -m observatory.scripts.collect --state-dir ~/.openclaw --days all --out snapshot.json
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from observatory.models import CollectOptions
from observatory.services.collector import collect_metrics


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agent Observatory collector")
    parser.add_argument("--state-dir", default=None, help="Runtime state root (default: OBSERVATORY_STATE_DIR or ~/.openclaw)")
    parser.add_argument("--workspace-dir", default=None, help="Workspace root holding the memory/ corpus")
    parser.add_argument("--days", default=None, help="Trailing window in days, or 'all'")
    parser.add_argument("--agent", default=None, help="Only aggregate sessions for this agent id")
    parser.add_argument("--channel", default=None, help="Only aggregate sessions from this channel")
    parser.add_argument("--session-limit", type=float, default=None, help="Max sessions in the payload")
    parser.add_argument("--memory-limit", type=float, default=None, help="Max corpus files in the payload")
    parser.add_argument("--timeline-limit", type=float, default=None, help="Max timeline events per session")
    parser.add_argument("--out", default="", help="Write the snapshot to this file instead of stdout")
    parser.add_argument("--pretty", action="store_true", help="Indent the JSON output")
    return parser


def options_from_args(args: argparse.Namespace) -> CollectOptions:
    return CollectOptions(
        stateDir=args.state_dir,
        workspaceDir=args.workspace_dir,
        days=args.days,
        agent=args.agent,
        channel=args.channel,
        sessionLimit=args.session_limit,
        memoryLimit=args.memory_limit,
        timelineLimit=args.timeline_limit,
    )


async def _run(args: argparse.Namespace) -> int:
    payload = await collect_metrics(options_from_args(args))
    output = payload.model_dump_json(indent=2 if args.pretty else None)

    if args.out:
        out_path = Path(args.out).expanduser().resolve()
        out_path.write_text(output, encoding="utf-8")
        print(f"Wrote metrics snapshot to {out_path}")
        return 0

    sys.stdout.write(f"{output}\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
