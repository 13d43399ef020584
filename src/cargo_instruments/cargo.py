"""
Cargo build provider.

Reads the workspace layout with `cargo metadata`, checks that the requested
target exists, builds it with `cargo build --message-format=json-render-diagnostics`
and returns the path of the single executable it produced. Cargo's own
diagnostics stream to the user's terminal; only the JSON messages on stdout are
consumed here.
"""

from __future__ import annotations

import json
import logging
import shlex
import shutil
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import attrs
from jsonschema import Draft202012Validator, ValidationError

from .errors import BuildFailed
from .model import DefaultTargetPolicy, ProfileTarget, ResolvedArtifact

logger = logging.getLogger(__name__)

# Only the fields read below are constrained.
METADATA_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["packages", "workspace_root", "target_directory"],
    "properties": {
        "workspace_root": {"type": "string"},
        "target_directory": {"type": "string"},
        "packages": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "manifest_path", "targets"],
                "properties": {
                    "name": {"type": "string"},
                    "manifest_path": {"type": "string"},
                    "default_run": {"type": ["string", "null"]},
                    "targets": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["name", "kind"],
                            "properties": {
                                "name": {"type": "string"},
                                "kind": {"type": "array", "items": {"type": "string"}},
                            },
                        },
                    },
                },
            },
        },
    },
}


@attrs.define(frozen=True, slots=True)
class CargoTarget:
    name: str
    kinds: tuple[str, ...]


@attrs.define(frozen=True, slots=True)
class PackageInfo:
    name: str
    manifest_path: Path
    targets: tuple[CargoTarget, ...] = ()
    default_run: str | None = None

    def targets_of(self, kind: str) -> list[str]:
        return [t.name for t in self.targets if kind in t.kinds]


@attrs.define(frozen=True, slots=True)
class WorkspaceInfo:
    root: Path
    target_dir: Path
    packages: tuple[PackageInfo, ...] = ()

    def root_package(self) -> PackageInfo | None:
        for p in self.packages:
            if p.manifest_path.parent == self.root:
                return p
        return None


def parse_metadata(data: dict[str, Any]) -> WorkspaceInfo:
    try:
        Draft202012Validator(METADATA_SCHEMA).validate(data)
    except ValidationError as e:
        raise BuildFailed(f"unexpected `cargo metadata` output: {e.message}") from e

    packages = tuple(
        PackageInfo(
            name=p["name"],
            manifest_path=Path(p["manifest_path"]),
            targets=tuple(CargoTarget(name=t["name"], kinds=tuple(t["kind"])) for t in p["targets"]),
            default_run=p.get("default_run"),
        )
        for p in data["packages"]
    )
    return WorkspaceInfo(
        root=Path(data["workspace_root"]),
        target_dir=Path(data["target_directory"]),
        packages=packages,
    )


def parse_build_messages(lines: Iterable[str]) -> list[tuple[Path, Path | None]]:
    """Return (executable, manifest_dir) for every executable artifact cargo reported."""
    out: list[tuple[Path, Path | None]] = []
    for ln in lines:
        ln = ln.strip()
        if not ln.startswith("{"):
            continue
        try:
            msg = json.loads(ln)
        except json.JSONDecodeError:
            continue
        if msg.get("reason") != "compiler-artifact" or not msg.get("executable"):
            continue
        if "custom-build" in (msg.get("target") or {}).get("kind", []):
            continue
        manifest = msg.get("manifest_path")
        out.append((Path(msg["executable"]), Path(manifest).parent if manifest else None))
    return out


def cargo_build_args(target: ProfileTarget, *, manifest_path: Path | None = None) -> list[str]:
    """Arguments after `cargo` for building exactly `target` (kind and name must be set)."""
    args = ["build", "--message-format=json-render-diagnostics"]
    if manifest_path is not None:
        args += ["--manifest-path", str(manifest_path)]
    if target.package:
        args += ["--package", target.package]
    if target.kind is not None and target.name:
        args += [f"--{target.kind}", target.name]
    if target.profile is not None:
        args += ["--profile", target.profile]
    elif target.release:
        args.append("--release")
    if target.features:
        args += ["--features", ",".join(target.features)]
    if target.all_features:
        args.append("--all-features")
    if target.no_default_features:
        args.append("--no-default-features")
    return args


class CargoBuildProvider:
    def __init__(self, *, cargo: str = "cargo", default_target: DefaultTargetPolicy = "default-run") -> None:
        self.cargo = cargo
        self.default_target = default_target

    def _cargo_exe(self) -> str:
        exe = shutil.which(self.cargo)
        if exe is None:
            raise BuildFailed(f"{self.cargo} not found on PATH")
        return exe

    def workspace(self, manifest_path: Path | None = None) -> WorkspaceInfo:
        cmd = [self._cargo_exe(), "metadata", "--format-version", "1", "--no-deps"]
        if manifest_path is not None:
            cmd += ["--manifest-path", str(manifest_path)]
        logger.debug("running %s", shlex.join(cmd))
        proc = subprocess.run(cmd, capture_output=True, check=False)
        if proc.returncode != 0:
            raise BuildFailed(proc.stderr.decode(errors="replace").strip() or f"cargo metadata exited {proc.returncode}")
        try:
            data = json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise BuildFailed(f"unexpected `cargo metadata` output: {e}") from e
        return parse_metadata(data)

    def _candidate_packages(self, target: ProfileTarget, ws: WorkspaceInfo) -> list[PackageInfo]:
        if target.package is None:
            return list(ws.packages)
        pkgs = [p for p in ws.packages if p.name == target.package]
        if not pkgs:
            raise BuildFailed(f"package `{target.package}` not found in workspace {ws.root}")
        return pkgs

    def _default_bin(self, pkg: PackageInfo) -> str:
        bins = pkg.targets_of("bin")
        if self.default_target == "default-run" and pkg.default_run:
            return pkg.default_run
        if len(bins) == 1:
            return bins[0]
        if not bins:
            raise BuildFailed(f"missing target: package `{pkg.name}` has no binaries")
        raise BuildFailed(
            f"package `{pkg.name}` has multiple binaries ({', '.join(sorted(bins))}); choose one with --bin"
        )

    def select_target(self, target: ProfileTarget, ws: WorkspaceInfo) -> ProfileTarget:
        """Validate `target` against the workspace and pin its package (and name)."""
        pkgs = self._candidate_packages(target, ws)

        if target.kind is None:
            if target.package is not None:
                pkg = pkgs[0]
            else:
                root = ws.root_package()
                if root is not None:
                    pkg = root
                elif len(pkgs) == 1:
                    pkg = pkgs[0]
                else:
                    raise BuildFailed("workspace has several packages; choose one with --package")
            return attrs.evolve(target, kind="bin", name=self._default_bin(pkg), package=pkg.name)

        matches = [p for p in pkgs if target.name in p.targets_of(target.kind)]
        if not matches:
            raise BuildFailed(f"missing target {target.describe()}")
        if len(matches) > 1:
            names = ", ".join(sorted(p.name for p in matches))
            raise BuildFailed(f"{target.describe()} exists in several packages ({names}); choose one with --package")
        return attrs.evolve(target, package=matches[0].name)

    def build(self, target: ProfileTarget, manifest_path: Path | None = None) -> ResolvedArtifact:
        ws = self.workspace(manifest_path)
        selected = self.select_target(target, ws)

        cmd = [self._cargo_exe(), *cargo_build_args(selected, manifest_path=manifest_path)]
        logger.debug("running %s", shlex.join(cmd))
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, check=False)
        if proc.returncode != 0:
            raise BuildFailed(f"cargo build failed (exit code {proc.returncode}): {shlex.join(cmd)}")

        built = parse_build_messages(proc.stdout.decode(errors="replace").splitlines())
        if not built:
            raise BuildFailed("no targets found")
        if len(built) > 1:
            raise BuildFailed(f"unexpectedly built multiple targets: {[str(p) for p, _ in built]}")

        exe, manifest_dir = built[0]
        if manifest_dir is None:
            pkg = next(p for p in ws.packages if p.name == selected.package)
            manifest_dir = pkg.manifest_path.parent
        return ResolvedArtifact(path=exe, cwd=manifest_dir, workspace_root=ws.root, target_dir=ws.target_dir)
