"""Run external tools with streamed output, timeouts and cancellation."""

from __future__ import annotations

import logging
import os
import queue
import shlex
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

import psutil

from ..config.constants import OUTPUT_TAIL_LINES, READER_JOIN_TIMEOUT, STREAM_POLL_INTERVAL
from .base import JobCancelledError, ProcessTimeoutError, SpawnError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    OutputCallback = Callable[[str, str], None]

LOG = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"


@dataclass(frozen=True)
class ExitResult:
    """Outcome of a process that ran to completion."""

    command: list[str]
    return_code: int
    stdout_tail: str
    stderr_tail: str
    duration: float

    @property
    def succeeded(self) -> bool:
        return self.return_code == 0


def _session_kwargs() -> dict[str, Any]:
    """Start children in their own process group so terminal signals do not reach them directly."""
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _pump(stream: IO[str], name: str, sink: queue.Queue[tuple[str, str | None]]) -> None:
    """Forward lines from a pipe into ``sink``; a ``None`` line marks EOF."""
    try:
        for line in stream:
            sink.put((name, line))
    except (OSError, ValueError) as e:
        # Pipe closed underneath us during teardown
        LOG.debug("Stopped reading %s: %s", name, e)
    finally:
        sink.put((name, None))


class ProcessRunner:
    """
    Launch executables and stream their output line by line.

    Only a bounded tail of each stream is retained; everything else goes
    straight to the ``on_output_line`` callback. Every exit path, including
    an exception raised by a callback, reaps the child and terminates any
    processes it started.
    """

    def __init__(
        self,
        *,
        terminate_grace: float = 5.0,
        kill_timeout: float = 5.0,
        tail_lines: int = OUTPUT_TAIL_LINES,
    ) -> None:
        self.terminate_grace = terminate_grace
        self.kill_timeout = kill_timeout
        self.tail_lines = tail_lines
        self._spawn_count = 0
        self._count_lock = threading.Lock()

    @property
    def spawn_count(self) -> int:
        """Number of launch attempts made by this runner."""
        with self._count_lock:
            return self._spawn_count

    def run(
        self,
        executable: str | Path,
        args: Sequence[str],
        *,
        timeout: float | None = None,
        on_output_line: OutputCallback | None = None,
        cancel_event: threading.Event | None = None,
        on_spawn: Callable[[int], None] | None = None,
    ) -> ExitResult:
        """
        Run ``executable`` with ``args`` until it exits.

        Args:
            executable: Path of the program to launch
            args: Program arguments
            timeout: Wall-clock limit in seconds, None for no limit
            on_output_line: Called with ``(stream, line)`` for every non-empty line
            cancel_event: When set, the process tree is terminated
            on_spawn: Called with the child's pid once it has started

        Returns:
            The exit status and the tail of both streams

        Raises:
            SpawnError: The process could not be launched
            ProcessTimeoutError: ``timeout`` elapsed first
            JobCancelledError: ``cancel_event`` was set first

        """
        command = [str(executable), *(str(a) for a in args)]
        LOG.info("Running command: %s", shlex.join(command))

        with self._count_lock:
            self._spawn_count += 1

        start_time = time.monotonic()
        try:
            proc = subprocess.Popen(  # noqa: S603
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **_session_kwargs(),
            )
        except OSError as e:
            msg = f"Failed to launch {command[0]}: {e}"
            raise SpawnError(msg, cause=e) from e

        lines: queue.Queue[tuple[str, str | None]] = queue.Queue()
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, STDOUT, lines), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, STDERR, lines), daemon=True),
        ]
        for reader in readers:
            reader.start()

        tails: dict[str, deque[str]] = {
            STDOUT: deque(maxlen=self.tail_lines),
            STDERR: deque(maxlen=self.tail_lines),
        }
        deadline = start_time + timeout if timeout else None
        open_streams = len(readers)

        try:
            if on_spawn is not None:
                on_spawn(proc.pid)

            while open_streams or proc.poll() is None:
                self._check_limits(proc, command, deadline, timeout, cancel_event, tails)
                try:
                    stream, line = lines.get(timeout=STREAM_POLL_INTERVAL)
                except queue.Empty:
                    continue
                if line is None:
                    open_streams -= 1
                    continue

                line = line.rstrip("\r\n")
                if not line:
                    continue
                tails[stream].append(line)
                LOG.debug("[%s:%s] %s", Path(command[0]).name, stream, line)
                if on_output_line is not None:
                    on_output_line(stream, line)

            return_code = proc.wait()
        finally:
            if proc.poll() is None:
                self.terminate_tree(proc)
            for reader, pipe in zip(readers, (proc.stdout, proc.stderr)):
                reader.join(timeout=READER_JOIN_TIMEOUT)
                if pipe is not None and not reader.is_alive():
                    pipe.close()

        duration = time.monotonic() - start_time
        LOG.debug("%s exited with code %d in %.2fs", Path(command[0]).name, return_code, duration)
        return ExitResult(
            command=command,
            return_code=return_code,
            stdout_tail="\n".join(tails[STDOUT]),
            stderr_tail="\n".join(tails[STDERR]),
            duration=duration,
        )

    def _check_limits(
        self,
        proc: subprocess.Popen[str],
        command: list[str],
        deadline: float | None,
        timeout: float | None,
        cancel_event: threading.Event | None,
        tails: dict[str, deque[str]],
    ) -> None:
        name = Path(command[0]).name
        if cancel_event is not None and cancel_event.is_set():
            LOG.info("Cancelling %s (pid %d)", name, proc.pid)
            self.terminate_tree(proc)
            msg = f"{name} was cancelled"
            raise JobCancelledError(msg)

        if deadline is not None and time.monotonic() > deadline:
            LOG.warning("%s exceeded its %gs timeout, terminating", name, timeout)
            self.terminate_tree(proc)
            msg = f"{name} timed out after {timeout:g}s"
            raise ProcessTimeoutError(msg, timeout=timeout, stderr="\n".join(tails[STDERR]) or None)

    def terminate_tree(self, proc: subprocess.Popen[str]) -> None:
        """
        Terminate ``proc`` and all of its descendants.

        Stragglers are killed once the grace period ends, and the whole tree
        is reaped before the kill timeout that follows it runs out.
        """
        try:
            children = psutil.Process(proc.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                continue
        if proc.poll() is None:
            proc.terminate()

        grace_deadline = time.monotonic() + self.terminate_grace
        kill_deadline = grace_deadline + self.kill_timeout
        try:
            proc.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            LOG.warning("pid %d ignored termination, killing", proc.pid)
            proc.kill()

        _, alive = psutil.wait_procs(children, timeout=_remaining(grace_deadline))
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue
        if alive:
            _, alive = psutil.wait_procs(alive, timeout=_remaining(kill_deadline))

        try:
            proc.wait(timeout=_remaining(kill_deadline))
        except subprocess.TimeoutExpired:
            LOG.error("pid %d survived kill", proc.pid)
        if alive:
            LOG.error("Processes survived kill: %s", ", ".join(str(p.pid) for p in alive))


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())
