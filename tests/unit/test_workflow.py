from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from cargo_instruments import workflow
from cargo_instruments.config import Settings
from cargo_instruments.errors import BackendUnavailable, BuildFailed, ProfilingFailed
from cargo_instruments.model import (
    BackendDialect,
    ProfileTarget,
    ResolvedArtifact,
    SessionOutcome,
    SessionPlan,
    SessionRequest,
    SessionState,
    TemplateCatalog,
)
from cargo_instruments.paths import TracePathGenerator

CATALOG = TemplateCatalog(standard=("Allocations", "Leaks", "Time Profiler"), custom=("Mine",))


class FakeDetector:
    def __init__(self, dialect: BackendDialect | None) -> None:
        self.dialect = dialect

    def detect(self) -> BackendDialect:
        if self.dialect is None:
            raise BackendUnavailable()
        return self.dialect


class FakeProvider:
    def __init__(self, artifact: ResolvedArtifact | None = None, error: Exception | None = None) -> None:
        self.artifact = artifact
        self.error = error
        self.calls: list[tuple[ProfileTarget, Path | None]] = []

    def build(self, target: ProfileTarget, manifest_path: Path | None = None) -> ResolvedArtifact:
        self.calls.append((target, manifest_path))
        if self.error is not None:
            raise self.error
        assert self.artifact is not None
        return self.artifact


class FakeRunner:
    def __init__(self, error: BaseException | None = None, timed_out: bool = False, interrupted: bool = False) -> None:
        self.error = error
        self.timed_out = timed_out
        self.interrupted = interrupted
        self.plans: list[SessionPlan] = []

    def run(self, plan: SessionPlan) -> SessionOutcome:
        self.plans.append(plan)
        if self.error is not None:
            raise self.error
        return SessionOutcome(
            state=SessionState.COMPLETED,
            destination=plan.destination.path,
            exit_code=0,
            timed_out=self.timed_out,
            interrupted=self.interrupted,
        )


@pytest.fixture
def artifact(tmp_path: Path) -> ResolvedArtifact:
    return ResolvedArtifact(
        path=tmp_path / "target" / "debug" / "mybin",
        cwd=tmp_path,
        workspace_root=tmp_path,
        target_dir=tmp_path / "target",
    )


@pytest.fixture(autouse=True)
def _fixed_catalog(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(workflow, "list_catalog", lambda dialect: CATALOG)


def _run(request: SessionRequest, **kwargs: object) -> int:
    kwargs.setdefault("settings", Settings())
    kwargs.setdefault("path_generator", TracePathGenerator(clock=lambda: datetime(2021, 5, 9, 12, 34, 56)))
    return workflow.run(request, **kwargs)  # type: ignore[arg-type]


def test_profiles_with_alias(artifact: ResolvedArtifact, capsys: pytest.CaptureFixture[str]) -> None:
    provider = FakeProvider(artifact)
    runner = FakeRunner()
    request = SessionRequest(
        target=ProfileTarget(kind="bin", name="mybin"), template="alloc", time_limit_ms=10000, target_args=("a",)
    )
    rc = _run(request, detector=FakeDetector(BackendDialect.LEGACY), build_provider=provider, runner=runner)
    assert rc == 0

    plan = runner.plans[0]
    expected = artifact.target_dir / "instruments" / "mybin_Allocations_2021-05-09T12-34-56.trace"
    assert plan.destination.path == expected
    assert plan.record.command == [
        "instruments",
        "-t",
        "Allocations",
        "-D",
        str(expected),
        "-l",
        "10000",
        str(artifact.path),
        "a",
    ]
    assert plan.open_after is None
    err = capsys.readouterr().err
    assert "Profiling target/debug/mybin with template 'Allocations'" in err
    assert str(expected) in err


def test_legacy_without_limit_flag_hands_limit_to_runner(artifact: ResolvedArtifact) -> None:
    runner = FakeRunner(timed_out=True)
    rc = _run(
        SessionRequest(template="Leaks", time_limit_ms=10000),
        settings=Settings(legacy_time_limit_flag=False),
        detector=FakeDetector(BackendDialect.LEGACY),
        build_provider=FakeProvider(artifact),
        runner=runner,
    )
    assert rc == 0
    assert runner.plans[0].record.watchdog_ms == 10000
    assert "-l" not in runner.plans[0].record.argv


def test_explicit_output_is_made_absolute(artifact: ResolvedArtifact, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = FakeRunner()
    request = SessionRequest(template="time", output=Path("out/run.trace"), open_when_done=True)
    rc = _run(request, detector=FakeDetector(BackendDialect.MODERN), build_provider=FakeProvider(artifact), runner=runner)
    assert rc == 0
    plan = runner.plans[0]
    assert plan.destination.path == tmp_path / "out" / "run.trace"
    assert plan.destination.explicit
    assert plan.record.program == "xcrun"
    assert plan.open_after is not None


def test_list_templates_skips_build(capsys: pytest.CaptureFixture[str]) -> None:
    provider = FakeProvider()
    rc = _run(SessionRequest(list_templates=True), detector=FakeDetector(BackendDialect.MODERN), build_provider=provider)
    assert rc == 0
    assert provider.calls == []
    out = capsys.readouterr().out
    assert out.startswith("Xcode Instruments templates:")
    assert "Mine" in out


def test_unknown_template_fails_before_build(capsys: pytest.CaptureFixture[str]) -> None:
    provider = FakeProvider()
    rc = _run(SessionRequest(template="Metal"), detector=FakeDetector(BackendDialect.MODERN), build_provider=provider)
    assert rc == 2
    assert provider.calls == []
    err = capsys.readouterr().err
    assert "Unknown template 'Metal'" in err
    assert "Time Profiler" in err


def test_missing_backend(capsys: pytest.CaptureFixture[str]) -> None:
    rc = _run(SessionRequest(template="time"), detector=FakeDetector(None), build_provider=FakeProvider())
    assert rc == 2
    assert "Xcode Instruments is not installed" in capsys.readouterr().err


def test_build_failure_surfaces_message(capsys: pytest.CaptureFixture[str]) -> None:
    provider = FakeProvider(error=BuildFailed("missing target bin/ghost.rs"))
    rc = _run(SessionRequest(template="time"), detector=FakeDetector(BackendDialect.MODERN), build_provider=provider)
    assert rc == 1
    assert "missing target bin/ghost.rs" in capsys.readouterr().err


def test_backend_failure_exit_code(artifact: ResolvedArtifact, capsys: pytest.CaptureFixture[str]) -> None:
    runner = FakeRunner(error=ProfilingFailed(3, "xctrace: boom\n"))
    rc = _run(
        SessionRequest(template="time"),
        detector=FakeDetector(BackendDialect.MODERN),
        build_provider=FakeProvider(artifact),
        runner=runner,
    )
    assert rc == 3
    assert "xctrace: boom" in capsys.readouterr().err


def test_interrupted_run_with_trace_succeeds(artifact: ResolvedArtifact, capsys: pytest.CaptureFixture[str]) -> None:
    rc = _run(
        SessionRequest(template="time"),
        detector=FakeDetector(BackendDialect.MODERN),
        build_provider=FakeProvider(artifact),
        runner=FakeRunner(interrupted=True),
    )
    assert rc == 0
    err = capsys.readouterr().err
    assert "Stopped on interrupt" in err
    assert "Trace file" in err


def test_interrupt_reports_without_traceback(artifact: ResolvedArtifact, capsys: pytest.CaptureFixture[str]) -> None:
    rc = _run(
        SessionRequest(template="time"),
        detector=FakeDetector(BackendDialect.MODERN),
        build_provider=FakeProvider(artifact),
        runner=FakeRunner(error=KeyboardInterrupt()),
    )
    assert rc == 130
    err = capsys.readouterr().err
    assert "error: interrupted" in err
    assert "Traceback" not in err
