from __future__ import annotations

import pytest

from cargo_instruments.config import Settings, load_settings


def test_defaults() -> None:
    s = load_settings({})
    assert s == Settings()
    assert s.modern_min_os == (10, 15, 0)
    assert s.legacy_time_limit_flag
    assert s.template_policy == "auto"
    assert s.default_template == "Time Profiler"


def test_environment_overrides() -> None:
    s = load_settings(
        {
            "CARGO_INSTRUMENTS_MODERN_MIN_OS": "11.0",
            "CARGO_INSTRUMENTS_LEGACY_TIME_LIMIT_FLAG": "0",
            "CARGO_INSTRUMENTS_TEMPLATE_POLICY": "require",
            "CARGO_INSTRUMENTS_DEFAULT_TARGET": "sole-bin",
            "CARGO_INSTRUMENTS_KILL_GRACE_MS": "250",
            "CARGO": "/opt/cargo/bin/cargo",
        }
    )
    assert s.modern_min_os == (11, 0, 0)
    assert not s.legacy_time_limit_flag
    assert s.template_policy == "require"
    assert s.default_target == "sole-bin"
    assert s.kill_grace_ms == 250
    assert s.cargo == "/opt/cargo/bin/cargo"


@pytest.mark.parametrize(
    "name,value",
    [
        ("CARGO_INSTRUMENTS_MODERN_MIN_OS", "ten"),
        ("CARGO_INSTRUMENTS_LEGACY_TIME_LIMIT_FLAG", "maybe"),
        ("CARGO_INSTRUMENTS_TEMPLATE_POLICY", "guess"),
        ("CARGO_INSTRUMENTS_DEFAULT_TARGET", "main"),
        ("CARGO_INSTRUMENTS_KILL_GRACE_MS", "-1"),
    ],
)
def test_invalid_values_name_the_variable(name: str, value: str) -> None:
    with pytest.raises(ValueError, match=name):
        load_settings({name: value})
