from __future__ import annotations

import enum
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import attrs

TargetKind = Literal["bin", "example", "bench", "test"]
TemplatePolicy = Literal["auto", "prompt", "require"]
DefaultTargetPolicy = Literal["default-run", "sole-bin"]


class BackendDialect(str, enum.Enum):
    """Command-line generation of the Instruments backend."""

    LEGACY = "instruments"
    MODERN = "xctrace"


class SessionState(str, enum.Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    OPENING = "opening"
    DONE = "done"


def _sorted_features(features: Any) -> tuple[str, ...]:
    return tuple(sorted(set(features)))


def _env_pairs(env: Any) -> tuple[tuple[str, str], ...]:
    items = env.items() if isinstance(env, Mapping) else env
    return tuple(sorted((str(k), str(v)) for k, v in items))


@attrs.define(frozen=True, slots=True)
class ProfileTarget:
    """What cargo should build. `kind=None` defers to the default-target policy."""

    kind: TargetKind | None = None
    name: str | None = None
    package: str | None = None
    release: bool = False
    profile: str | None = None
    features: tuple[str, ...] = attrs.field(default=(), converter=_sorted_features)
    all_features: bool = False
    no_default_features: bool = False

    @property
    def cargo_profile(self) -> str:
        if self.profile is not None:
            return self.profile
        return "release" if self.release else "dev"

    def describe(self) -> str:
        if self.kind is None:
            return "default binary"
        if self.kind == "bin":
            return f"bin/{self.name}.rs"
        if self.kind == "example":
            return f"examples/{self.name}.rs"
        return f"{self.kind} {self.name}"


@attrs.define(frozen=True, slots=True)
class ResolvedArtifact:
    path: Path
    cwd: Path
    workspace_root: Path
    target_dir: Path

    @property
    def name(self) -> str:
        return self.path.stem

    def display_path(self) -> str:
        """Executable path relative to the workspace root when possible."""
        try:
            return str(self.path.relative_to(self.workspace_root))
        except ValueError:
            return str(self.path)


@attrs.define(frozen=True, slots=True)
class TemplateEntry:
    name: str
    alias: str | None = None
    custom: bool = False


@attrs.define(frozen=True, slots=True)
class TemplateCatalog:
    standard: tuple[str, ...] = ()
    custom: tuple[str, ...] = ()

    def names(self) -> list[str]:
        """Standard templates in backend order, then custom ones alphabetically."""
        return [*self.standard, *sorted(self.custom)]

    def is_empty(self) -> bool:
        return not self.standard and not self.custom


@attrs.define(frozen=True, slots=True)
class TraceDestination:
    path: Path
    explicit: bool = False


@attrs.define(frozen=True, slots=True)
class Invocation:
    program: str
    argv: tuple[str, ...]
    cwd: Path
    # Overlay on top of os.environ, as sorted (name, value) pairs.
    env: tuple[tuple[str, str], ...] = attrs.field(default=(), converter=_env_pairs)
    watchdog_ms: int | None = None

    @property
    def command(self) -> list[str]:
        return [self.program, *self.argv]


@attrs.define(frozen=True, slots=True)
class SessionPlan:
    record: Invocation
    destination: TraceDestination
    open_after: Invocation | None = None


@attrs.define(frozen=True, slots=True)
class SessionRequest:
    target: ProfileTarget = attrs.field(factory=ProfileTarget)
    template: str | None = None
    output: Path | None = None
    time_limit_ms: int | None = None
    open_when_done: bool = False
    target_args: tuple[str, ...] = ()
    list_templates: bool = False
    manifest_path: Path | None = None


@attrs.define(frozen=True, slots=True)
class SessionOutcome:
    state: SessionState
    destination: Path
    exit_code: int | None = None
    stderr_tail: str = ""
    timed_out: bool = False
    interrupted: bool = False
    open_error: str | None = None
    history: tuple[SessionState, ...] = ()

    @property
    def ok(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.DONE)
