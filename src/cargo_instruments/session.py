from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from collections import deque
from pathlib import Path
from typing import IO

from .errors import OpenFailed, ProfilingFailed, ProfilingInterrupted, ProfilingTimedOut, SpawnFailed
from .model import Invocation, SessionOutcome, SessionPlan, SessionState

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 40


def trace_produced(path: Path) -> bool:
    """True if the backend left a non-empty trace bundle (directory) or file at `path`."""
    if path.is_dir():
        return any(path.iterdir())
    if path.is_file():
        return path.stat().st_size > 0
    return False


class _StderrPump(threading.Thread):
    """Forward child stderr line by line, keeping the last lines for diagnostics.

    Helpers forked by the backend may hold the pipe open after the backend exits;
    `finish` stops waiting for them and nothing more is forwarded afterwards.
    """

    def __init__(self, src: IO[bytes], sink: IO[str]) -> None:
        super().__init__(daemon=True)
        self._src = src
        self._sink = sink
        self._lock = threading.Lock()
        self._tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._released = False

    def run(self) -> None:
        for raw in iter(self._src.readline, b""):
            line = raw.decode(errors="replace")
            with self._lock:
                if self._released:
                    break
                self._tail.append(line)
                self._sink.write(line)
                self._sink.flush()
        self._src.close()

    def finish(self, timeout: float) -> str:
        """Wait up to `timeout` seconds for EOF, then return the collected tail."""
        self.join(timeout=timeout)
        with self._lock:
            if self.is_alive():
                self._released = True
                logger.debug("backend stderr still open after %.1fs; no longer forwarding it", timeout)
            return "".join(self._tail)


def _signal_group(proc: subprocess.Popen[bytes], sig: signal.Signals) -> bool:
    """Send `sig` to the child's process group. False if the group is already gone."""
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        return False
    except PermissionError:
        proc.send_signal(sig)
    return True


def _kill_process_group(proc: subprocess.Popen[bytes], *, grace_s: float) -> None:
    """SIGTERM the child's process group, then SIGKILL it if it outlives `grace_s`."""
    for sig in (signal.SIGTERM, signal.SIGKILL):
        if not _signal_group(proc, sig):
            return
        try:
            proc.wait(timeout=grace_s)
            return
        except subprocess.TimeoutExpired:
            continue
    proc.wait()


def _interrupt_process_group(proc: subprocess.Popen[bytes], *, finalize_s: float, grace_s: float) -> None:
    """Pass a Ctrl-C on to the backend and let it finish writing the trace.

    The backend runs in its own session, so a terminal SIGINT only reaches us.
    A second Ctrl-C, or a backend still running after `finalize_s`, gets the
    SIGTERM/SIGKILL treatment.
    """
    if not _signal_group(proc, signal.SIGINT):
        proc.wait()
        return
    try:
        proc.wait(timeout=finalize_s)
    except (subprocess.TimeoutExpired, KeyboardInterrupt):
        _kill_process_group(proc, grace_s=grace_s)


class SessionRunner:
    """Run one recording session and classify how it ended.

    States move `IDLE -> SPAWNING -> RUNNING -> {COMPLETED, TIMED_OUT, FAILED}`,
    then `COMPLETED -> OPENING -> DONE` when the plan asks to open the trace.
    A runner serves a single session.
    """

    def __init__(
        self,
        *,
        kill_grace_ms: int = 2000,
        finalize_grace_ms: int = 30000,
        stderr_drain_ms: int = 1000,
        stderr: IO[str] | None = None,
    ) -> None:
        self.kill_grace_ms = kill_grace_ms
        self.finalize_grace_ms = finalize_grace_ms
        self.stderr_drain_ms = stderr_drain_ms
        self._stderr = stderr if stderr is not None else sys.stderr
        self.state = SessionState.IDLE
        self.history: list[SessionState] = [SessionState.IDLE]

    def _transition(self, state: SessionState) -> None:
        logger.debug("session %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _spawn(self, inv: Invocation) -> subprocess.Popen[bytes]:
        env = {**os.environ, **dict(inv.env)}
        try:
            return subprocess.Popen(
                inv.command,
                cwd=inv.cwd,
                env=env,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            self._transition(SessionState.FAILED)
            raise SpawnFailed(inv.program, e) from e

    def run(self, plan: SessionPlan) -> SessionOutcome:
        if self.state is not SessionState.IDLE:
            raise RuntimeError("SessionRunner has already run a session")

        inv = plan.record
        dest = plan.destination.path
        self._transition(SessionState.SPAWNING)
        proc = self._spawn(inv)
        self._transition(SessionState.RUNNING)

        assert proc.stderr is not None
        pump = _StderrPump(proc.stderr, self._stderr)
        pump.start()

        grace_s = self.kill_grace_ms / 1000
        timed_out = False
        interrupted = False
        try:
            try:
                if inv.watchdog_ms is None:
                    proc.wait()
                else:
                    try:
                        proc.wait(timeout=inv.watchdog_ms / 1000)
                    except subprocess.TimeoutExpired:
                        timed_out = True
                        self._transition(SessionState.TIMED_OUT)
                        _kill_process_group(proc, grace_s=grace_s)
            except KeyboardInterrupt:
                interrupted = True
                logger.debug("interrupted; forwarding SIGINT to %s", inv.program)
                _interrupt_process_group(proc, finalize_s=self.finalize_grace_ms / 1000, grace_s=grace_s)
            except BaseException:
                _kill_process_group(proc, grace_s=grace_s)
                raise
        finally:
            stderr_tail = pump.finish(self.stderr_drain_ms / 1000)

        exit_code = proc.returncode

        if interrupted:
            if not trace_produced(dest):
                self._transition(SessionState.FAILED)
                raise ProfilingInterrupted(exit_code, stderr_tail)
        elif timed_out:
            if not trace_produced(dest):
                self._transition(SessionState.FAILED)
                raise ProfilingTimedOut(inv.watchdog_ms or 0, stderr_tail)
        elif exit_code != 0:
            self._transition(SessionState.FAILED)
            raise ProfilingFailed(exit_code, stderr_tail)
        elif not trace_produced(dest):
            self._transition(SessionState.FAILED)
            raise ProfilingFailed(exit_code, stderr_tail, reason=f"instruments exited without writing {dest}")

        self._transition(SessionState.COMPLETED)
        open_error: str | None = None
        if plan.open_after is not None:
            self._transition(SessionState.OPENING)
            open_error = self._open(plan.open_after)
            self._transition(SessionState.DONE)

        return SessionOutcome(
            state=self.state,
            destination=dest,
            exit_code=exit_code,
            stderr_tail=stderr_tail,
            timed_out=timed_out,
            interrupted=interrupted,
            open_error=open_error,
            history=tuple(self.history),
        )

    def _open(self, inv: Invocation) -> str | None:
        try:
            proc = subprocess.run(inv.command, cwd=inv.cwd, capture_output=True, check=False)
        except OSError as e:
            err = OpenFailed(f"could not open {inv.argv[-1]}: {e}")
        else:
            if proc.returncode == 0:
                return None
            detail = proc.stderr.decode(errors="replace").strip() or f"exit code {proc.returncode}"
            err = OpenFailed(f"could not open {inv.argv[-1]}: {detail}")
        logger.warning("%s", err)
        return str(err)
