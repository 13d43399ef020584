from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import cast

import attrs

from . import workflow
from .config import load_settings
from .model import ProfileTarget, SessionRequest, TargetKind, TemplatePolicy


def _positive_int(raw: str) -> int:
    try:
        v = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from None
    if v <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number of milliseconds, got {v}")
    return v


def split_features(raw: str | None) -> tuple[str, ...]:
    """`"svg im"` or `"svg,im"` -> `("im", "svg")`."""
    if not raw:
        return ()
    return tuple(sorted({f for f in re.split(r"[\s,]+", raw) if f}))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cargo instruments",
        description="Profile a binary with Xcode Instruments. By default, builds and profiles your main binary.",
        epilog="EXAMPLE:\n    cargo instruments -t time    Profile main binary with the (recommended) Time Profiler.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-l", "--list-templates", action="store_true", help="List available templates.")
    parser.add_argument(
        "-t",
        "--template",
        dest="template",
        metavar="TEMPLATE",
        default=None,
        help="Instruments template to run (full name or time/alloc/io/sys). See --list-templates.",
    )
    parser.add_argument(
        "--template-policy",
        choices=["auto", "prompt", "require"],
        default=None,
        help="What to do without --template: use Time Profiler, prompt, or fail (default: auto).",
    )
    parser.add_argument("-p", "--package", metavar="NAME", default=None, help="Package containing the target.")

    target = parser.add_mutually_exclusive_group()
    target.add_argument("--bin", metavar="NAME", default=None, help="Binary to run.")
    target.add_argument("--example", metavar="NAME", default=None, help="Example binary to run.")
    target.add_argument("--bench", metavar="NAME", default=None, help="Benchmark target to run.")
    target.add_argument("--test", metavar="NAME", default=None, help="Test target to run.")

    profile = parser.add_mutually_exclusive_group()
    profile.add_argument("--release", action="store_true", help="Pass --release to cargo.")
    profile.add_argument("--profile", metavar="NAME", default=None, help="Pass --profile NAME to cargo.")

    parser.add_argument("--features", metavar="FEATURES", default=None, help="Space or comma separated features.")
    parser.add_argument("--all-features", action="store_true", help="Activate all features.")
    parser.add_argument("--no-default-features", action="store_true", help="Do not activate default features.")
    parser.add_argument("--manifest-path", type=Path, metavar="PATH", default=None, help="Path to Cargo.toml.")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        metavar="PATH",
        default=None,
        help="Write the .trace here (default: target/instruments/{name}_{template}_{date}.trace).",
    )
    parser.add_argument(
        "--time-limit",
        type=_positive_int,
        metavar="MILLIS",
        default=None,
        help="Stop recording after this many milliseconds.",
    )
    parser.add_argument(
        "--open",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Open the trace in Instruments when profiling finishes.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log backend and cargo commands.")
    parser.add_argument("target_args", nargs="*", metavar="ARGS", help="Arguments for the profiled program.")
    return parser


def _split_passthrough(argv: list[str]) -> tuple[list[str], list[str]]:
    if "--" in argv:
        i = argv.index("--")
        return argv[:i], argv[i + 1 :]
    return argv, []


def _target_from_ns(ns: argparse.Namespace) -> ProfileTarget:
    kind: TargetKind | None = None
    name: str | None = None
    for k in ("bin", "example", "bench", "test"):
        v = getattr(ns, k)
        if v is not None:
            kind, name = cast(TargetKind, k), v
            break
    return ProfileTarget(
        kind=kind,
        name=name,
        package=ns.package,
        release=ns.release,
        profile=ns.profile,
        features=split_features(ns.features),
        all_features=ns.all_features,
        no_default_features=ns.no_default_features,
    )


def parse_request(argv: list[str]) -> tuple[SessionRequest, argparse.Namespace]:
    # cargo runs `cargo-instruments instruments ...`
    if argv and argv[0] == "instruments":
        argv = argv[1:]
    own, passthrough = _split_passthrough(argv)
    ns = build_parser().parse_args(own)
    request = SessionRequest(
        target=_target_from_ns(ns),
        template=ns.template,
        output=ns.output,
        time_limit_ms=ns.time_limit,
        open_when_done=ns.open,
        target_args=(*ns.target_args, *passthrough),
        list_templates=ns.list_templates,
        manifest_path=ns.manifest_path,
    )
    return request, ns


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint. Returns process exit code."""
    request, ns = parse_request(sys.argv[1:] if argv is None else list(argv))
    logging.basicConfig(
        level=logging.DEBUG if ns.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings()
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    if ns.template_policy is not None:
        settings = attrs.evolve(settings, template_policy=cast(TemplatePolicy, ns.template_policy))

    return workflow.run(request, settings=settings)


if __name__ == "__main__":
    raise SystemExit(main())
