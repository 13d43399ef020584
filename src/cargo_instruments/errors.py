from __future__ import annotations


class InstrumentsError(RuntimeError):
    """Base class for errors that end a profiling session."""

    exit_code = 1


class BackendUnavailable(InstrumentsError):
    exit_code = 2

    def __init__(self, message: str = "") -> None:
        super().__init__(
            message
            or "Xcode Instruments is not installed. Please install the Xcode Command Line Tools."
        )


class BuildFailed(InstrumentsError):
    def __init__(self, underlying_message: str) -> None:
        super().__init__(underlying_message)
        self.underlying_message = underlying_message


class UnknownTemplate(InstrumentsError):
    exit_code = 2

    def __init__(self, requested: str, available: list[str]) -> None:
        self.requested = requested
        self.available = list(available)
        if requested:
            head = f"Unknown template '{requested}'."
        else:
            head = "No template given; pass one with --template."
        lines = [head, "Available templates:", *(f"  {name}" for name in self.available)]
        super().__init__("\n".join(lines))


class OutputDirUnwritable(InstrumentsError):
    exit_code = 2

    def __init__(self, path: object, reason: object) -> None:
        super().__init__(f"failed to create {path}: {reason}")
        self.path = path


class SpawnFailed(InstrumentsError):
    def __init__(self, program: str, reason: object) -> None:
        super().__init__(f"failed to launch {program}: {reason}")
        self.program = program


class ProfilingFailed(InstrumentsError):
    def __init__(self, exit_code: int | None, stderr_tail: str, *, reason: str = "") -> None:
        self.backend_exit_code = exit_code
        self.stderr_tail = stderr_tail
        head = reason or f"instruments errored (exit code {exit_code})"
        super().__init__(f"{head}\n{stderr_tail}".rstrip())
        # Negative codes mean the backend died from a signal.
        self.exit_code = exit_code if exit_code and exit_code > 0 else 1


class ProfilingTimedOut(ProfilingFailed):
    def __init__(self, limit_ms: int, stderr_tail: str) -> None:
        super().__init__(
            None,
            stderr_tail,
            reason=f"time limit of {limit_ms}ms elapsed before a trace was written",
        )
        self.limit_ms = limit_ms


class ProfilingInterrupted(ProfilingFailed):
    def __init__(self, backend_exit_code: int | None, stderr_tail: str) -> None:
        super().__init__(backend_exit_code, stderr_tail, reason="interrupted before a trace was written")
        self.exit_code = 130


class OpenFailed(InstrumentsError):
    """Opening the finished trace failed; the trace itself is still valid."""
