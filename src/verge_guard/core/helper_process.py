"""Lifecycle of the core sidecar process."""

from __future__ import annotations

import logging
from pathlib import Path
import subprocess
from typing import IO, Sequence

from verge_guard.core.errors import BinaryMissingError, EscalationFailure
from verge_guard.core.storage import get_logs_dir

logger = logging.getLogger(__name__)

STOP_GRACE_S = 5.0


class HelperProcess:
    def __init__(
        self,
        binary: Path | None,
        args: Sequence[str] = (),
        *,
        logs_dir: Path | None = None,
    ) -> None:
        self.binary = binary
        self.args = list(args)
        self.logs_dir = logs_dir
        self._proc: subprocess.Popen[bytes] | None = None
        self._log_handle: IO[bytes] | None = None
        self.stdout_path: Path | None = None

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def returncode(self) -> int | None:
        if self._proc is None:
            return None
        return self._proc.poll()

    def start(self) -> None:
        if self.is_running():
            return
        if self.binary is None or not self.binary.exists():
            raise BinaryMissingError(
                f"Core binary not found: {self.binary}",
                user_message="Core binary not found. Check the core directory setting.",
            )

        logs_dir = self.logs_dir or get_logs_dir()
        logs_dir.mkdir(parents=True, exist_ok=True)
        self.stdout_path = logs_dir / f"{self.binary.stem}.log"
        argv = [str(self.binary), *self.args]
        logger.info("Starting helper: %s", argv)
        self._log_handle = self.stdout_path.open("ab")
        try:
            self._proc = subprocess.Popen(
                argv,
                stdout=self._log_handle,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
        except OSError as exc:
            self._close_log()
            raise EscalationFailure(
                f"Failed to start {argv[0]}: {exc}",
                user_message=f"Failed to start the core: {exc.strerror or exc}",
            ) from exc

    def stop(self) -> None:
        proc = self._proc
        if proc is None:
            return
        if proc.poll() is None:
            logger.info("Stopping helper pid=%s", proc.pid)
            proc.terminate()
            try:
                proc.wait(timeout=STOP_GRACE_S)
            except subprocess.TimeoutExpired:
                logger.warning("Helper pid=%s ignored SIGTERM; killing", proc.pid)
                proc.kill()
                proc.wait(timeout=STOP_GRACE_S)
        self._proc = None
        self._close_log()

    def restart(self) -> None:
        self.stop()
        self.start()

    def _close_log(self) -> None:
        if self._log_handle is not None:
            self._log_handle.close()
            self._log_handle = None
