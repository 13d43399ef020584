from __future__ import annotations

import logging
import os
import shlex
import sys
from collections.abc import Callable

from .backend import BackendDetector
from .cargo import CargoBuildProvider
from .command import build_plan
from .config import Settings, load_settings
from .errors import InstrumentsError
from .model import BackendDialect, SessionRequest
from .paths import TracePathGenerator, default_trace_dir
from .session import SessionRunner
from .templates import list_catalog, render_catalog, resolve_template

logger = logging.getLogger(__name__)


def current_tty() -> str | None:
    """Terminal device of stdin, handed to xctrace so the target keeps its terminal."""
    try:
        if not sys.stdin.isatty():
            return None
        return os.ttyname(sys.stdin.fileno())
    except (OSError, ValueError, AttributeError):
        return None


def _status(verb: str, detail: str) -> None:
    print(f"{verb:>12} {detail}", file=sys.stderr)


def run(
    request: SessionRequest,
    *,
    settings: Settings | None = None,
    detector: BackendDetector | None = None,
    build_provider: CargoBuildProvider | None = None,
    runner: SessionRunner | None = None,
    path_generator: TracePathGenerator | None = None,
    choose: Callable[[list[str]], str] | None = None,
) -> int:
    """Run one `cargo instruments` invocation. Returns the process exit code.

    Errors are printed to stderr; nothing is retried.
    """
    settings = load_settings() if settings is None else settings
    detector = BackendDetector(modern_min_os=settings.modern_min_os) if detector is None else detector
    if build_provider is None:
        build_provider = CargoBuildProvider(cargo=settings.cargo, default_target=settings.default_target)
    runner = SessionRunner(kill_grace_ms=settings.kill_grace_ms) if runner is None else runner
    path_generator = TracePathGenerator() if path_generator is None else path_generator

    try:
        dialect = detector.detect()
        catalog = list_catalog(dialect)
        if request.list_templates:
            print(render_catalog(catalog), end="")
            return 0

        # Resolve before building so a typo does not cost a compile.
        template = resolve_template(
            request.template,
            dialect,
            catalog,
            policy=settings.template_policy,
            default=settings.default_template,
            choose=choose,
        )
        artifact = build_provider.build(request.target, request.manifest_path)

        output = request.output.expanduser().absolute() if request.output is not None else None
        destination = path_generator.make_path(
            default_trace_dir(artifact.target_dir), artifact.name, template, output
        )
        plan = build_plan(
            dialect,
            artifact,
            template,
            destination,
            request.time_limit_ms,
            request.target_args,
            open_when_done=request.open_when_done,
            tty=current_tty() if dialect is BackendDialect.MODERN else None,
            legacy_time_limit_flag=settings.legacy_time_limit_flag,
        )

        _status("Profiling", f"{artifact.display_path()} with template '{template}'")
        logger.debug("running %s (cwd=%s)", shlex.join(plan.record.command), plan.record.cwd)
        outcome = runner.run(plan)
    except InstrumentsError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("error: interrupted", file=sys.stderr)
        return 130

    if outcome.timed_out:
        _status("Stopped", f"after the {request.time_limit_ms}ms time limit")
    elif outcome.interrupted:
        _status("Stopped", "on interrupt")
    _status("Trace file", str(outcome.destination))
    return 0
