from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path

from cargo_instruments.__main__ import main as cargo_instruments_main


def _abs_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manual smoke: profile one binary of a cargo project.")
    parser.add_argument("--manifest-path", type=_abs_path, required=True)
    parser.add_argument("--bin", default=None, help="Binary to profile (default: the package's main binary).")
    parser.add_argument("--template", default="time")
    parser.add_argument("--time-limit", default="5000", help="Milliseconds.")
    parser.add_argument("--out", type=_abs_path, default=None, help="Trace destination.")
    ns = parser.parse_args(argv)

    if sys.platform != "darwin" or shutil.which("xcrun") is None:
        print("Xcode command line tools not found; skipping profiling smoke.")
        return 0

    args = ["instruments", "-v", "-t", ns.template, "--manifest-path", str(ns.manifest_path), "--time-limit", ns.time_limit]
    if ns.bin is not None:
        args += ["--bin", ns.bin]
    if ns.out is not None:
        args += ["-o", str(ns.out)]
    return cargo_instruments_main(args)


if __name__ == "__main__":
    raise SystemExit(main())
