from __future__ import annotations

import os
from collections.abc import Mapping
from typing import cast, get_args

import attrs

from .backend import parse_os_version
from .model import DefaultTargetPolicy, TemplatePolicy

DEFAULT_TEMPLATE = "Time Profiler"

ENV_MODERN_MIN_OS = "CARGO_INSTRUMENTS_MODERN_MIN_OS"
ENV_LEGACY_TIME_LIMIT_FLAG = "CARGO_INSTRUMENTS_LEGACY_TIME_LIMIT_FLAG"
ENV_TEMPLATE_POLICY = "CARGO_INSTRUMENTS_TEMPLATE_POLICY"
ENV_DEFAULT_TARGET = "CARGO_INSTRUMENTS_DEFAULT_TARGET"
ENV_KILL_GRACE_MS = "CARGO_INSTRUMENTS_KILL_GRACE_MS"
ENV_CARGO = "CARGO"


@attrs.define(frozen=True, slots=True)
class Settings:
    # First macOS release that ships `xctrace`; hosts below it only get the legacy probe.
    modern_min_os: tuple[int, int, int] = (10, 15, 0)
    legacy_time_limit_flag: bool = True
    template_policy: TemplatePolicy = "auto"
    default_template: str = DEFAULT_TEMPLATE
    default_target: DefaultTargetPolicy = "default-run"
    cargo: str = "cargo"
    kill_grace_ms: int = 2000


def _parse_bool(name: str, raw: str) -> bool:
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (1/0), got {raw!r}")


def _parse_choice(name: str, raw: str, choices: tuple[str, ...]) -> str:
    v = raw.strip()
    if v not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {raw!r}")
    return v


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from defaults plus `CARGO_INSTRUMENTS_*` environment overrides."""
    env = os.environ if environ is None else environ
    kwargs: dict[str, object] = {}

    raw = env.get(ENV_MODERN_MIN_OS)
    if raw:
        try:
            kwargs["modern_min_os"] = parse_os_version(raw)
        except ValueError as e:
            raise ValueError(f"{ENV_MODERN_MIN_OS}: {e}") from e

    raw = env.get(ENV_LEGACY_TIME_LIMIT_FLAG)
    if raw:
        kwargs["legacy_time_limit_flag"] = _parse_bool(ENV_LEGACY_TIME_LIMIT_FLAG, raw)

    raw = env.get(ENV_TEMPLATE_POLICY)
    if raw:
        kwargs["template_policy"] = cast(
            TemplatePolicy, _parse_choice(ENV_TEMPLATE_POLICY, raw, get_args(TemplatePolicy))
        )

    raw = env.get(ENV_DEFAULT_TARGET)
    if raw:
        kwargs["default_target"] = cast(
            DefaultTargetPolicy, _parse_choice(ENV_DEFAULT_TARGET, raw, get_args(DefaultTargetPolicy))
        )

    raw = env.get(ENV_KILL_GRACE_MS)
    if raw:
        try:
            grace = int(raw)
        except ValueError:
            raise ValueError(f"{ENV_KILL_GRACE_MS} must be an integer, got {raw!r}") from None
        if grace < 0:
            raise ValueError(f"{ENV_KILL_GRACE_MS} must be >= 0, got {grace}")
        kwargs["kill_grace_ms"] = grace

    raw = env.get(ENV_CARGO)
    if raw:
        kwargs["cargo"] = raw

    return Settings(**kwargs)  # type: ignore[arg-type]
