#!/usr/bin/env python3
"""
Command line entry point.

Usage:
    timelapse serve [--host 0.0.0.0] [--port 3000] [--config timelapse.yaml]
    timelapse run https://example.com [--quick] [--config timelapse.yaml]
"""

import argparse
import asyncio
import json
import sys

from .config import load_config
from .errors import ConfigError
from .log import setup_logging
from .pipeline import JobRequest
from .progress import COMPLETE, ERROR, ProgressBus


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    config = load_config(args.config)
    app = create_app(config)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


async def _run_job(args: argparse.Namespace) -> int:
    from .server import build_coordinator

    config = load_config(args.config)
    if args.collapse:
        config.resolver.collapse = args.collapse
    if args.latest:
        config.resolver.quick_sample_end = 'latest'
    config.ensure_dirs()

    bus = ProgressBus(heartbeat_interval=config.heartbeat_interval)
    coordinator = build_coordinator(config, bus)
    outcome = {'stage': None}

    async def observe():
        async for event in bus.subscribe():
            if event is None:
                continue
            print(json.dumps(event.to_dict()), flush=True)
            if event.stage in (COMPLETE, ERROR):
                outcome['stage'] = event.stage
                return

    observer = asyncio.create_task(observe())
    # Let the observer register before the job starts publishing
    await asyncio.sleep(0)
    coordinator.submit(JobRequest(target=args.url, quick_mode=args.quick))
    try:
        await coordinator.wait()
        await asyncio.wait_for(observer, timeout=5)
    except asyncio.TimeoutError:
        observer.cancel()
    return 0 if outcome['stage'] == COMPLETE else 1


def cmd_run(args: argparse.Namespace) -> int:
    return asyncio.run(_run_job(args))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Turn archived snapshots of a page into a timelapse video")
    parser.add_argument("--config", help="Path to YAML config (default: $TIMELAPSE_CONFIG)")
    parser.add_argument("--log-level", help="Log level (default: $LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve.add_argument("--port", type=int, default=3000, help="Bind port")
    serve.set_defaults(func=cmd_serve)

    run = sub.add_parser("run", help="Run one job in-process and print progress as JSON lines")
    run.add_argument("url", help="Target URL to build a timelapse for")
    run.add_argument("--quick", action="store_true", help="Quick mode: only a small sample of snapshots")
    run.add_argument("--latest", action="store_true", help="Quick mode samples the latest snapshots instead of the earliest")
    run.add_argument("--collapse", choices=["year", "month", "day", "hour", "minute", "second"],
                     help="Collapse snapshots to one per period")
    run.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return args.func(args)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
