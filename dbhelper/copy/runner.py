"""External tool execution.

Runs ToolCommand descriptors as OS processes: a single process, or a pipe
where each step's stdout feeds the next step's stdin. The runner knows
nothing about PostgreSQL; it reports exit codes, captured output, elapsed
time, and whether the run timed out or was cancelled.
"""

from __future__ import annotations

import os
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from typing import IO, Protocol

from loguru import logger

from .models import ToolCommand

STDERR_TAIL_CHARS = 4000


@dataclass
class ToolResult:
    """Result of running one ToolCommand.

    ``returncode`` is the first non-zero step exit code (pipefail
    semantics), or 0 when every step succeeded.
    """

    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled


class ToolRunner(Protocol):
    """Executes tool commands. Tests substitute a fake implementation."""

    def run(
        self,
        command: ToolCommand,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ToolResult: ...

    def terminate_all(self) -> None: ...


class SubprocessToolRunner:
    """Runs tool commands with ``subprocess.Popen``.

    Every live process is tracked so a cancellation can terminate all of
    them from another thread.

    Args:
        poll_interval: Seconds between checks for timeout/cancellation
        kill_grace: Seconds to wait after SIGTERM before SIGKILL
    """

    def __init__(self, poll_interval: float = 0.2, kill_grace: float = 5.0) -> None:
        self._poll_interval = poll_interval
        self._kill_grace = kill_grace
        self._live: set[subprocess.Popen[bytes]] = set()
        self._lock = threading.Lock()

    def run(
        self,
        command: ToolCommand,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ToolResult:
        """Execute a command and wait for every step to exit.

        Args:
            command: Steps to run, piped in order
            timeout: Seconds before the whole command is terminated
            cancel_event: When set, the command is terminated

        Returns:
            ToolResult with pipefail exit code and captured output
        """
        start = time.monotonic()
        logger.debug(f"Running: {command.render()}")

        with tempfile.TemporaryFile() as stdout_file:
            stderr_files = [tempfile.TemporaryFile() for _ in command.steps]
            try:
                try:
                    processes = self._spawn(command, stdout_file, stderr_files)
                except FileNotFoundError as e:
                    return ToolResult(
                        returncode=127,
                        stderr=f"command not found: {e.filename}",
                        elapsed=time.monotonic() - start,
                    )

                timed_out, cancelled = self._wait(processes, start, timeout, cancel_event)
                returncodes = [p.returncode for p in processes]
                stdout = _read(stdout_file)
                stderr = "\n".join(filter(None, (_read(f) for f in stderr_files)))
            finally:
                for f in stderr_files:
                    f.close()

        returncode = next((rc for rc in returncodes if rc != 0), 0)
        if (timed_out or cancelled) and returncode == 0:
            returncode = -1
        elapsed = time.monotonic() - start
        if timed_out:
            stderr = (stderr + f"\ntimeout: command exceeded {timeout}s").strip()
        logger.debug(
            f"Finished in {elapsed:.2f}s with exit codes {returncodes}"
            + (" (timed out)" if timed_out else "")
            + (" (cancelled)" if cancelled else "")
        )
        return ToolResult(
            returncode=returncode,
            stdout=stdout,
            stderr=stderr[-STDERR_TAIL_CHARS:],
            elapsed=elapsed,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def _spawn(
        self,
        command: ToolCommand,
        stdout_file: IO[bytes],
        stderr_files: list[IO[bytes]],
    ) -> list[subprocess.Popen[bytes]]:
        processes: list[subprocess.Popen[bytes]] = []
        previous: subprocess.Popen[bytes] | None = None
        last = len(command.steps) - 1

        try:
            for index, step in enumerate(command.steps):
                env = {**os.environ, **step.env}
                proc = subprocess.Popen(
                    list(step.argv),
                    stdin=previous.stdout if previous else subprocess.DEVNULL,
                    stdout=stdout_file if index == last else subprocess.PIPE,
                    stderr=stderr_files[index],
                    env=env,
                )
                if previous is not None and previous.stdout is not None:
                    # Let the producer see SIGPIPE if the consumer exits early
                    previous.stdout.close()
                processes.append(proc)
                self._track(proc)
                previous = proc
        except FileNotFoundError:
            for proc in processes:
                self._stop(proc)
                self._untrack(proc)
            raise
        return processes

    def _wait(
        self,
        processes: list[subprocess.Popen[bytes]],
        start: float,
        timeout: float | None,
        cancel_event: threading.Event | None,
    ) -> tuple[bool, bool]:
        timed_out = False
        cancelled = False
        try:
            while any(p.poll() is None for p in processes):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                if timeout is not None and time.monotonic() - start > timeout:
                    timed_out = True
                    break
                time.sleep(self._poll_interval)
        finally:
            for proc in processes:
                if proc.poll() is None:
                    self._stop(proc)
                self._untrack(proc)
        return timed_out, cancelled

    def _stop(self, proc: subprocess.Popen[bytes]) -> None:
        """Terminate, wait, then kill."""
        proc.terminate()
        try:
            proc.wait(timeout=self._kill_grace)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def _track(self, proc: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._live.add(proc)

    def _untrack(self, proc: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._live.discard(proc)

    def terminate_all(self) -> None:
        """Terminate every process currently started by this runner."""
        with self._lock:
            live = list(self._live)
        if live:
            logger.warning(f"Terminating {len(live)} running tool process(es)")
        for proc in live:
            if proc.poll() is None:
                self._stop(proc)


def _read(f: IO[bytes]) -> str:
    f.seek(0)
    return f.read().decode("utf-8", errors="replace").strip()
