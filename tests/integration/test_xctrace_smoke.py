from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from cargo_instruments.__main__ import main
from cargo_instruments.session import trace_produced


def _has_instruments() -> bool:
    if sys.platform != "darwin":
        return False
    if shutil.which("instruments") is not None:
        return True
    if shutil.which("xcrun") is None:
        return False
    try:
        subprocess.check_output(["xcrun", "--find", "xctrace"], stderr=subprocess.STDOUT)
    except Exception:
        return False
    return True


def _write_crate(root: Path) -> Path:
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(
        '[package]\nname = "spin"\nversion = "0.1.0"\nedition = "2021"\n'
    )
    (root / "src" / "main.rs").write_text(
        "fn main() {\n"
        "    let mut x: u64 = 0;\n"
        "    for i in 0..200_000_000u64 { x = x.wrapping_add(i * i); }\n"
        '    println!("{}", x);\n'
        "}\n"
    )
    return root / "Cargo.toml"


@pytest.mark.integration
def test_time_profile_smoke(tmp_path: Path) -> None:
    if not _has_instruments():
        pytest.skip("requires Xcode Instruments")
    if shutil.which("cargo") is None:
        pytest.skip("requires cargo")

    manifest = _write_crate(tmp_path / "spin")
    out = tmp_path / "spin.trace"
    rc = main(["instruments", "-t", "time", "--release", "--manifest-path", str(manifest), "-o", str(out), "--time-limit", "2000"])
    assert rc == 0
    assert trace_produced(out)


@pytest.mark.integration
def test_list_templates_smoke(capsys: pytest.CaptureFixture[str]) -> None:
    if not _has_instruments():
        pytest.skip("requires Xcode Instruments")

    assert main(["instruments", "--list-templates"]) == 0
    out = capsys.readouterr().out
    assert "Time Profiler" in out
