"""
Translate a resolved session into the backend's command line.

Nothing here touches the filesystem or spawns processes, so both dialects can be
exercised without Instruments installed.

`xctrace` (Modern)::

    xcrun xctrace record --template "Time Profiler" \
                         --time-limit 5000ms \
                         --output path/to/file.trace \
                         --target-stdin /dev/ttys001 --target-stdout /dev/ttys001 \
                         --launch -- target/release/mybin arg1 arg2

`instruments` (Legacy)::

    instruments -t "Time Profiler" -D path/to/file.trace -l 5000 target/release/mybin arg1 arg2
"""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence

from .model import BackendDialect, Invocation, ResolvedArtifact, SessionPlan, TraceDestination


def _modern_args(
    template: str, destination: TraceDestination, time_limit_ms: int | None, tty: str | None
) -> list[str]:
    args = ["xctrace", "record", "--template", template]
    if time_limit_ms is not None:
        args += ["--time-limit", f"{time_limit_ms}ms"]
    args += ["--output", str(destination.path)]
    if tty:
        args += ["--target-stdin", tty, "--target-stdout", tty]
    args += ["--launch", "--"]
    return args


def _legacy_args(template: str, destination: TraceDestination, time_limit_ms: int | None) -> list[str]:
    args = ["-t", template, "-D", str(destination.path)]
    if time_limit_ms is not None:
        args += ["-l", str(time_limit_ms)]
    return args


def build_invocation(
    dialect: BackendDialect,
    artifact: ResolvedArtifact,
    template: str,
    destination: TraceDestination,
    time_limit_ms: int | None = None,
    extra_args: Sequence[str] = (),
    *,
    tty: str | None = None,
    legacy_time_limit_flag: bool = True,
    env: Mapping[str, str] | None = None,
) -> Invocation:
    """Return the record invocation for `dialect`.

    Program arguments follow the executable path: for `xctrace` after `--launch --`,
    for `instruments` the executable path itself ends the tool's own flags. If the
    legacy tool cannot bound recording time (`legacy_time_limit_flag=False`), the
    limit is returned as `watchdog_ms` for the session runner to enforce.
    """
    watchdog_ms: int | None = None
    if dialect is BackendDialect.MODERN:
        program = "xcrun"
        args = _modern_args(template, destination, time_limit_ms, tty)
    else:
        program = "instruments"
        native_limit = time_limit_ms if legacy_time_limit_flag else None
        if not legacy_time_limit_flag:
            watchdog_ms = time_limit_ms
        args = _legacy_args(template, destination, native_limit)

    args += [str(artifact.path), *extra_args]
    return Invocation(
        program=program,
        argv=tuple(args),
        cwd=artifact.cwd,
        env=env or {},
        watchdog_ms=watchdog_ms,
    )


def build_open_invocation(destination: TraceDestination, *, platform: str | None = None) -> Invocation:
    """Open the trace with the host's default handler (Instruments.app on macOS)."""
    plat = sys.platform if platform is None else platform
    program = "open" if plat == "darwin" else "xdg-open"
    return Invocation(program=program, argv=(str(destination.path),), cwd=destination.path.parent)


def build_plan(
    dialect: BackendDialect,
    artifact: ResolvedArtifact,
    template: str,
    destination: TraceDestination,
    time_limit_ms: int | None = None,
    extra_args: Sequence[str] = (),
    *,
    open_when_done: bool = False,
    tty: str | None = None,
    legacy_time_limit_flag: bool = True,
    platform: str | None = None,
) -> SessionPlan:
    record = build_invocation(
        dialect,
        artifact,
        template,
        destination,
        time_limit_ms,
        extra_args,
        tty=tty,
        legacy_time_limit_flag=legacy_time_limit_flag,
    )
    open_after = build_open_invocation(destination, platform=platform) if open_when_done else None
    return SessionPlan(record=record, destination=destination, open_after=open_after)
