from __future__ import annotations

import logging
import os
import subprocess
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Mapping, Sequence

from .binary import BinaryProvider, LocalBinaryProvider
from .config import DEFAULT_LOG_FILE

LOGGER = logging.getLogger("Percy.Launcher")
CHILD_LOGGER_NAME = "PercyChild"

_LOG_BYTES = 5 * 1024 * 1024
_LOG_BACKUPS = 5
_SHUTDOWN_TIMEOUT = 10.0
_PUMP_JOIN_TIMEOUT = 2.0

PopenFactory = Callable[..., "subprocess.Popen[str]"]

START_COMMAND = "exec:start"
APP_START_COMMAND = "app:exec:start"
STOP_COMMAND = "exec:stop"


def start_args(is_app: bool, config_path: Path | None = None) -> list[str]:
    """Build the `exec:start` argument list for the Percy binary."""

    args = [APP_START_COMMAND if is_app else START_COMMAND]
    if config_path is not None:
        args.extend(["-c", str(config_path)])
    return args


def _open_child_log(log_path: Path) -> tuple[logging.Logger, logging.Handler]:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(CHILD_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = RotatingFileHandler(
        log_path,
        mode="a",
        maxBytes=_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    )
    logger.addHandler(handler)
    return logger, handler


def _pump_stream(stream, logger: logging.Logger, prefix: str) -> None:
    for line in iter(stream.readline, ""):
        if not line:
            break
        logger.info("%s%s", prefix, line.rstrip())
    stream.close()


class ProcessSupervisor:
    """Own the Percy child process, its log file and its running flag."""

    def __init__(
        self,
        *,
        binary_provider: BinaryProvider | None = None,
        log_path: Path = DEFAULT_LOG_FILE,
        popen: PopenFactory = subprocess.Popen,
        shutdown_timeout: float = _SHUTDOWN_TIMEOUT,
    ) -> None:
        self._binary_provider = binary_provider or LocalBinaryProvider()
        self._binary_path: Path | None = None
        self._log_path = log_path
        self._popen = popen
        self._shutdown_timeout = shutdown_timeout
        self._lock = threading.Lock()
        self._process: subprocess.Popen[str] | None = None
        self._running = False
        self._exited = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def exited(self) -> threading.Event:
        """Event set once the current child process has exited."""

        return self._exited

    @property
    def process(self) -> subprocess.Popen[str] | None:
        return self._process

    @property
    def log_path(self) -> Path:
        return self._log_path

    def resolve_binary(self) -> Path:
        if self._binary_path is None:
            self._binary_path = self._binary_provider.get_binary_path()
        return self._binary_path

    def spawn(
        self, binary: Path, args: Sequence[str], env: Mapping[str, str]
    ) -> subprocess.Popen[str]:
        """Launch the Percy binary with its output appended to the log file."""

        with self._lock:
            if self._process is not None and self._process.poll() is None:
                raise RuntimeError(
                    f"Percy process PID={self._process.pid} is already running."
                )

            env_vars = os.environ.copy()
            env_vars.update(env)
            cmd = [str(binary), *args]

            child_logger, handler = _open_child_log(self._log_path)
            try:
                process = self._popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    bufsize=1,
                    errors="replace",
                    env=env_vars,
                )
            except OSError:
                child_logger.removeHandler(handler)
                handler.close()
                raise

            self._process = process
            self._exited.clear()
            self._running = True

            pumps: list[threading.Thread] = []
            for stream, prefix in (
                (process.stdout, "[stdout] "),
                (process.stderr, "[stderr] "),
            ):
                if stream is None:
                    continue
                pump = threading.Thread(
                    target=_pump_stream,
                    args=(stream, child_logger, prefix),
                    daemon=True,
                )
                pump.start()
                pumps.append(pump)

            watcher = threading.Thread(
                target=self._watch_exit,
                args=(process, child_logger, handler, pumps),
                name="PercyExitWatcher",
                daemon=True,
            )
            watcher.start()

        LOGGER.info(
            "Launched Percy PID=%s with args %s (log file: %s)",
            process.pid,
            list(args),
            self._log_path,
        )
        return process

    def stop(self, binary: Path) -> int:
        """Run `exec:stop`, reap the supervised child and return the stop exit code."""

        try:
            stopper = self._popen(
                [str(binary), STOP_COMMAND],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
            output, _ = stopper.communicate()
            if output:
                LOGGER.debug("Percy exec:stop output: %s", output.strip())
            exit_code = stopper.returncode
            LOGGER.info("Percy exec:stop finished with code %s.", exit_code)

            process = self._process
            if process is not None:
                self._reap(process)
            return exit_code
        finally:
            self._running = False

    def _reap(self, process: subprocess.Popen[str]) -> None:
        if process.poll() is None:
            try:
                process.wait(timeout=self._shutdown_timeout)
            except subprocess.TimeoutExpired:
                LOGGER.warning(
                    "Percy PID=%s did not exit after exec:stop within %.1fs; terminating.",
                    process.pid,
                    self._shutdown_timeout,
                )
                process.terminate()
                try:
                    process.wait(timeout=self._shutdown_timeout)
                except subprocess.TimeoutExpired:
                    LOGGER.warning(
                        "Percy PID=%s ignored terminate; forcing kill.", process.pid
                    )
                    process.kill()
                    process.wait()
        self._mark_exited(process)

    def _watch_exit(
        self,
        process: subprocess.Popen[str],
        child_logger: logging.Logger,
        handler: logging.Handler,
        pumps: Sequence[threading.Thread],
    ) -> None:
        exit_code = process.wait()
        if self._mark_exited(process):
            LOGGER.info("Percy PID=%s exited with code %s.", process.pid, exit_code)

        for pump in pumps:
            pump.join(timeout=_PUMP_JOIN_TIMEOUT)
        child_logger.removeHandler(handler)
        handler.close()

    def _mark_exited(self, process: subprocess.Popen[str]) -> bool:
        with self._lock:
            if process is not self._process or self._exited.is_set():
                return False
            self._running = False
            self._exited.set()
            return True
