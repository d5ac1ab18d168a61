"""Owned ffmpeg child process: spawn, stream stdout, always kill and reap."""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import Iterator, List, Sequence

from .errors import ProcessExitError, ProcessSpawnError

logger = logging.getLogger(__name__)

STDERR_TAIL = 20


class MuxProcess:
    def __init__(self, cmd: Sequence[str], pass_fds: Sequence[int] = ()):
        self.cmd = list(cmd)
        self.pass_fds = tuple(pass_fds)
        self.proc = None
        self.stderr_lines: List[str] = []
        self._stderr_thread = None

    def start(self) -> "MuxProcess":
        try:
            self.proc = subprocess.Popen(
                self.cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                pass_fds=self.pass_fds,
            )
        except FileNotFoundError as exc:
            raise ProcessSpawnError(f"{self.cmd[0]} is not installed or not in PATH") from exc
        except OSError as exc:
            raise ProcessSpawnError(f"Could not start {self.cmd[0]}: {exc}") from exc

        # Drain stderr to avoid deadlock and capture errors.
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()
        logger.debug("started %s (pid %s)", self.cmd[0], self.proc.pid)
        return self

    def _drain_stderr(self) -> None:
        stream = self.proc.stderr
        if stream is None:
            return
        try:
            for line in iter(stream.readline, b""):
                text = line.decode("utf-8", "ignore").strip()
                if text:
                    self.stderr_lines.append(text)
                # Keep only the last few lines to include in errors
                if len(self.stderr_lines) > STDERR_TAIL:
                    self.stderr_lines.pop(0)
        except (OSError, ValueError):
            # pipe closed by terminate()
            return

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr_lines)

    def iter_stdout(self, chunk_size: int) -> Iterator[bytes]:
        stdout = self.proc.stdout
        for chunk in iter(lambda: stdout.read(chunk_size), b""):
            yield chunk

    def kill(self) -> None:
        if self.proc is not None and self.proc.poll() is None:
            self.proc.kill()

    def check(self, timeout: float = 5) -> None:
        """Wait for exit and raise ProcessExitError on a non-zero code."""
        try:
            returncode = self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.kill()
            returncode = self.proc.wait()
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=1)
        if returncode != 0:
            logger.error("%s exited with code %s: %s", self.cmd[0], returncode, self.stderr_text)
            raise ProcessExitError(returncode, self.stderr_text)

    def terminate(self) -> None:
        if self.proc is None:
            return
        self.kill()
        try:
            self.proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("%s (pid %s) did not exit after kill", self.cmd[0], self.proc.pid)
        for stream in (self.proc.stdout, self.proc.stderr):
            if stream is not None:
                stream.close()
