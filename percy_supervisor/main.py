from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Sequence

from .binary import BinaryNotFoundError, LocalBinaryProvider
from .config import (
    BINARY_PATH_ENV,
    DEFAULT_LOG_FILE,
    DEFAULT_POLL_INTERVAL,
    BrowserStackCredentials,
    PercyOptions,
    PercySettings,
)
from .launcher import ProcessSupervisor
from .percy import Percy

LOGGER = logging.getLogger("Percy.CLI")


def _load_percy_options(path: Path | None) -> dict[str, Any] | None:
    if path is None:
        return None
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Percy config {path} must contain a JSON object.")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="percy-supervisor",
        description="Run the Percy CLI as a supervised child process.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--binary",
        type=Path,
        default=os.environ.get(BINARY_PATH_ENV),
        help=f"Path to the Percy executable. Defaults to {BINARY_PATH_ENV} or 'percy' on PATH.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser(
        "start",
        parents=[common],
        help="Start Percy and block until it exits or Ctrl-C.",
    )
    start.add_argument("--project", default=None, help="BrowserStack project name.")
    start.add_argument(
        "--app",
        action="store_true",
        help="Run in app mode (app:exec:start) instead of automate mode.",
    )
    start.add_argument(
        "--capture-mode",
        default=None,
        help="Override the Percy capture mode reported to BrowserStack.",
    )
    start.add_argument(
        "--percy",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Explicitly enable or disable Percy for this project.",
    )
    start.add_argument(
        "--config-json",
        type=Path,
        default=None,
        help="JSON file with Percy options written to the runtime config.",
    )
    start.add_argument("--user", default=None, help="BrowserStack username.")
    start.add_argument("--key", default=None, help="BrowserStack access key.")
    start.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help="Seconds between healthcheck attempts.",
    )
    start.add_argument(
        "--log-file",
        type=Path,
        default=DEFAULT_LOG_FILE,
        help="File receiving the Percy process output (appended).",
    )

    subparsers.add_parser("stop", parents=[common], help="Run 'percy exec:stop'.")
    return parser


def _run_start(args: argparse.Namespace) -> int:
    try:
        percy_options = _load_percy_options(args.config_json)
    except (OSError, ValueError) as exc:
        LOGGER.error("Failed to read Percy options: %s", exc)
        return 1

    options = PercyOptions(
        percy=args.percy,
        percy_capture_mode=args.capture_mode,
        percy_options=percy_options,
        app=args.app,
        project_name=args.project,
    )
    settings = PercySettings.from_env(
        poll_interval=args.poll_interval, log_path=args.log_file
    )
    percy = Percy(
        options,
        credentials=BrowserStackCredentials.resolve(args.user, args.key),
        settings=settings,
        binary_provider=LocalBinaryProvider(args.binary),
    )

    try:
        started = asyncio.run(percy.start())
    except KeyboardInterrupt:
        LOGGER.info("Startup interrupted. Stopping Percy.")
        asyncio.run(percy.stop())
        return 1

    if not started:
        if percy.is_running():
            asyncio.run(percy.stop())
        return 1

    print(f"Percy build id: {percy.build_id}")
    exited = percy.supervisor.exited
    try:
        while not exited.wait(1.0):
            pass
        LOGGER.warning("Percy exited on its own (log file: %s).", settings.log_path)
        return 0
    except KeyboardInterrupt:
        LOGGER.info("Shutdown requested by user.")
    finally:
        if percy.is_running():
            asyncio.run(percy.stop())
    return 0


def _run_stop(args: argparse.Namespace) -> int:
    supervisor = ProcessSupervisor(binary_provider=LocalBinaryProvider(args.binary))
    try:
        binary = supervisor.resolve_binary()
    except BinaryNotFoundError as exc:
        LOGGER.error(str(exc))
        return 1
    try:
        return supervisor.stop(binary)
    except OSError as exc:
        LOGGER.error("Failed to run Percy exec:stop: %s", exc)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    args = build_parser().parse_args(argv)
    if args.command == "start":
        return _run_start(args)
    return _run_stop(args)


if __name__ == "__main__":
    sys.exit(main())
