from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from .errors import OutputDirUnwritable
from .model import TraceDestination

logger = logging.getLogger(__name__)

TRACE_SUFFIX = ".trace"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"


def default_trace_dir(target_dir: Path) -> Path:
    return target_dir / "instruments"


def trace_stem(artifact_name: str, template_name: str, when: datetime) -> str:
    return f"{artifact_name}_{template_name.replace(' ', '-')}_{when.strftime(TIMESTAMP_FORMAT)}"


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputDirUnwritable(path, e) from e


class TracePathGenerator:
    """Compute `.trace` destinations that never collide with an earlier one.

    Names are `{artifact}_{template}_{timestamp}.trace`. Two requests in the same
    second get `_1`, `_2`, ... suffixes; both paths already on disk and paths this
    generator handed out before are avoided.
    """

    def __init__(self, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._issued: set[Path] = set()

    def make_path(
        self,
        base_dir: Path,
        artifact_name: str,
        template_name: str,
        explicit_override: Path | None = None,
    ) -> TraceDestination:
        if explicit_override is not None:
            _ensure_dir(explicit_override.parent)
            return TraceDestination(path=explicit_override, explicit=True)

        _ensure_dir(base_dir)
        stem = trace_stem(artifact_name, template_name, self._clock())
        candidate = base_dir / f"{stem}{TRACE_SUFFIX}"
        n = 0
        while candidate in self._issued or candidate.exists():
            n += 1
            candidate = base_dir / f"{stem}_{n}{TRACE_SUFFIX}"
        if n:
            logger.debug("trace name collision, using %s", candidate.name)
        self._issued.add(candidate)
        return TraceDestination(path=candidate)
