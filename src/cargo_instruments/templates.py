"""
Instruments template catalog and name resolution.

The catalog comes from the detected backend:

- `xcrun xctrace list templates` prints `== Standard Templates ==` followed by
  one name per line, a blank line, then `== Custom Templates ==` and the user's
  templates. Older releases print it on stderr, newer ones on stdout.
- `instruments -s templates` prints `Known Templates:` followed by quoted names;
  user templates are listed as quoted `~/Library/.../<Name>.tracetemplate` paths.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Callable
from pathlib import PurePosixPath

from .config import DEFAULT_TEMPLATE
from .errors import BackendUnavailable, UnknownTemplate
from .model import BackendDialect, TemplateCatalog, TemplateEntry, TemplatePolicy

logger = logging.getLogger(__name__)

ALIASES: dict[str, str] = {
    "time": "Time Profiler",
    "alloc": "Allocations",
    "io": "File Activity",
    "sys": "System Trace",
}
ABBREVIATIONS: dict[str, str] = {v: k for k, v in ALIASES.items()}

_XCTRACE_BUILTINS: tuple[str, ...] = (
    "Activity Monitor",
    "Allocations",
    "Animation Hitches",
    "App Launch",
    "Core Data",
    "Counters",
    "Energy Log",
    "File Activity",
    "Game Performance",
    "Leaks",
    "Logging",
    "Metal System Trace",
    "Network",
    "SceneKit",
    "SwiftUI",
    "System Trace",
    "Time Profiler",
    "Zombies",
)

# Used when the backend lists nothing, so aliases and the default template still resolve.
BUILTIN_TEMPLATES: dict[BackendDialect, tuple[str, ...]] = {
    BackendDialect.MODERN: _XCTRACE_BUILTINS,
    BackendDialect.LEGACY: tuple(sorted((*_XCTRACE_BUILTINS, "Blank"))),
}

_CUSTOM_PREFIX = "~/Library/"


def parse_xctrace_templates(text: str) -> TemplateCatalog:
    lines = [ln.strip() for ln in text.splitlines()]
    standard: list[str] = []
    custom: list[str] = []
    section: list[str] | None = None
    for ln in lines:
        if ln.startswith("=="):
            section = custom if "custom" in ln.lower() else standard
            continue
        if not ln or section is None:
            continue
        section.append(ln)
    return TemplateCatalog(standard=tuple(standard), custom=tuple(custom))


def parse_instruments_templates(text: str) -> TemplateCatalog:
    standard: list[str] = []
    custom: list[str] = []
    for ln in text.splitlines()[1:]:
        name = ln.strip().strip('"')
        if not name:
            continue
        if name.startswith(_CUSTOM_PREFIX):
            custom.append(PurePosixPath(name).stem)
        else:
            standard.append(name)
    return TemplateCatalog(standard=tuple(standard), custom=tuple(custom))


def list_catalog(dialect: BackendDialect) -> TemplateCatalog:
    """Ask the backend for its templates."""
    if dialect is BackendDialect.MODERN:
        cmd = ["xcrun", "xctrace", "list", "templates"]
    else:
        cmd = ["instruments", "-s", "templates"]
    try:
        proc = subprocess.run(cmd, capture_output=True, check=False)
    except OSError as e:
        raise BackendUnavailable(f"Could not list templates ({e}). Please check your Xcode Instruments installation.") from e
    if proc.returncode != 0:
        raise BackendUnavailable("Could not list templates. Please check your Xcode Instruments installation.")

    if dialect is BackendDialect.MODERN:
        out = proc.stdout or proc.stderr
        catalog = parse_xctrace_templates(out.decode(errors="replace"))
    else:
        catalog = parse_instruments_templates(proc.stdout.decode(errors="replace"))

    if catalog.is_empty():
        logger.warning("%s listed no templates; falling back to the built-in list", cmd[0])
    return with_builtin_fallback(catalog, dialect)


def with_builtin_fallback(catalog: TemplateCatalog, dialect: BackendDialect) -> TemplateCatalog:
    if catalog.is_empty():
        return TemplateCatalog(standard=BUILTIN_TEMPLATES[dialect])
    return catalog


def catalog_entries(catalog: TemplateCatalog) -> list[TemplateEntry]:
    entries = [TemplateEntry(name=n, alias=ABBREVIATIONS.get(n)) for n in catalog.standard]
    entries += [TemplateEntry(name=n, custom=True) for n in sorted(catalog.custom)]
    return entries


def _match(name: str, catalog: TemplateCatalog) -> str | None:
    wanted = name.casefold()
    for candidate in catalog.names():
        if candidate.casefold() == wanted:
            return candidate
    return None


def _prompt_choice(names: list[str]) -> str:
    print("Available templates:", file=sys.stderr)
    for i, name in enumerate(names, start=1):
        print(f"  {i:>2}) {name}", file=sys.stderr)
    answer = input("Template (number or name): ").strip()
    if answer.isdigit() and 1 <= int(answer) <= len(names):
        return names[int(answer) - 1]
    return answer


def resolve_template(
    requested: str | None,
    dialect: BackendDialect,
    catalog: TemplateCatalog | None = None,
    *,
    policy: TemplatePolicy = "auto",
    default: str = DEFAULT_TEMPLATE,
    choose: Callable[[list[str]], str] | None = None,
) -> str:
    """Return the canonical template name, verified present in the catalog.

    Aliases (`time`, `alloc`, `io`, `sys`) match exactly; full names match
    case-insensitively. When nothing is requested the policy decides: `auto`
    uses `default`, `prompt` asks via `choose`, `require` fails.
    """
    if catalog is None:
        catalog = list_catalog(dialect)
    catalog = with_builtin_fallback(catalog, dialect)
    names = catalog.names()

    if not requested:
        if policy == "require":
            raise UnknownTemplate("", names)
        if policy == "prompt":
            try:
                requested = (choose or _prompt_choice)(names)
            except EOFError:
                raise UnknownTemplate("", names) from None
            if not requested:
                raise UnknownTemplate("", names)
        else:
            requested = default

    canonical = _match(ALIASES.get(requested, requested), catalog)
    if canonical is None:
        raise UnknownTemplate(requested, names)
    return canonical


def render_catalog(catalog: TemplateCatalog) -> str:
    """Render the catalog as the `--list-templates` table."""
    names = catalog.names()
    width = max((len(n) for n in names), default=8) + 2
    out: list[str] = ["Xcode Instruments templates:", ""]
    out.append(f"{'built-in':<{width}}abbrev")
    out.append("-" * (width + 6))
    for entry in catalog_entries(catalog):
        if entry.custom:
            continue
        out.append(f"{entry.name:<{width}}({entry.alias})" if entry.alias else entry.name)
    out.append("")
    out.append("custom")
    out.append("-" * (width + 6))
    out.extend(sorted(catalog.custom))
    return "\n".join(out) + "\n"
