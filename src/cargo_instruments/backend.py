from __future__ import annotations

import logging
import re
import shutil
import subprocess

from .errors import BackendUnavailable
from .model import BackendDialect

logger = logging.getLogger(__name__)

OsVersion = tuple[int, int, int]

_VERSION_RE = re.compile(r"^\d+(\.\d+){0,2}$")


def parse_os_version(raw: str) -> OsVersion:
    """Parse `11`, `11.1` or `11.2.3` into a 3-tuple; missing components are zero."""
    s = raw.strip()
    if not _VERSION_RE.fullmatch(s):
        raise ValueError(f"invalid version: {raw!r}")
    parts = [int(p) for p in s.split(".")]
    parts += [0] * (3 - len(parts))
    return parts[0], parts[1], parts[2]


def host_os_version() -> OsVersion | None:
    """Return the macOS product version, or None when it cannot be determined."""
    sw_vers = shutil.which("sw_vers")
    if sw_vers is None:
        return None
    try:
        out = subprocess.check_output([sw_vers, "-productVersion"], stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    try:
        return parse_os_version(out.decode(errors="replace"))
    except ValueError:
        logger.debug("unparseable sw_vers output: %r", out)
        return None


def _modern_present() -> bool:
    xcrun = shutil.which("xcrun")
    if xcrun is None:
        return False
    proc = subprocess.run(
        [xcrun, "--find", "xctrace"],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=False,
    )
    return proc.returncode == 0


def _legacy_present() -> bool:
    return shutil.which("instruments") is not None


class BackendDetector:
    """Decide once per session which Instruments dialect to speak.

    `xctrace` is probed first and wins when both backends are installed, unless
    the host is known to be older than `modern_min_os`. The first answer is
    cached; later calls do not probe again.
    """

    def __init__(self, *, modern_min_os: OsVersion = (10, 15, 0)) -> None:
        self.modern_min_os = modern_min_os
        self._dialect: BackendDialect | None = None

    def detect(self) -> BackendDialect:
        if self._dialect is None:
            self._dialect = self._probe()
            logger.debug("detected Instruments backend: %s", self._dialect.value)
        return self._dialect

    def _probe(self) -> BackendDialect:
        version = host_os_version()
        if (version is None or version >= self.modern_min_os) and _modern_present():
            return BackendDialect.MODERN
        if _legacy_present():
            return BackendDialect.LEGACY
        raise BackendUnavailable()
