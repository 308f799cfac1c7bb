"""Yarn v1 lockfile parser and offline-mirror fixup."""

from __future__ import annotations

import re
from pathlib import Path

from hermetica.core.errors import LockfileError
from hermetica.core.fingerprint import to_sri
from hermetica.core.models import LockEntry, Lockfile, mirror_name_from_url

_FIELD_RE = re.compile(r'^(?P<key>"[^"]+"|\S+)\s+(?P<value>.+)$')
_RESOLVED_RE = re.compile(r'^(?P<indent>\s+)resolved\s+"?(?P<url>[^"#\s]+)(?P<frag>#[^"\s]*)?"?\s*$')
_SHA1_HEX_RE = re.compile(r"^[0-9a-f]{40}$")


def read_lockfile(path: str | Path) -> Lockfile:
    lock_path = Path(path)
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise LockfileError(
            f"Lockfile does not exist: {lock_path}",
            context={"path": str(lock_path)},
        ) from exc
    lockfile = parse_lockfile(raw)
    lockfile.path = lock_path
    return lockfile


def parse_lockfile(raw: str) -> Lockfile:
    """Parse Yarn v1 lockfile text into ordered entries.

    Raises LockfileError on malformed blocks, entries without an integrity
    hash, duplicate (name, version) pairs, or dependency ranges that no block
    resolves.
    """
    entries: list[LockEntry] = []
    seen: dict[tuple[str, str], int] = {}
    for lineno, header, body in _blocks(raw):
        specifiers = _parse_header(header, lineno)
        fields, dependencies = _parse_body(body)
        names = {_spec_name(s) for s in specifiers}
        if len(names) != 1:
            raise LockfileError(
                f"Block at line {lineno} mixes package names: {sorted(names)}",
                context={"line": lineno},
            )
        name = names.pop()
        version = fields.get("version")
        resolved = fields.get("resolved", "")
        if not version:
            raise LockfileError(f"Block for {name} at line {lineno} has no version.", context={"line": lineno})
        if not resolved:
            raise LockfileError(f"Block for {name} at line {lineno} has no resolved URL.", context={"line": lineno})
        integrity = fields.get("integrity") or _integrity_from_fragment(resolved)
        if not integrity:
            raise LockfileError(
                f"{name}@{version} has no integrity hash.",
                context={"line": lineno, "resolved": resolved},
            )
        key = (name, version)
        if key in seen:
            raise LockfileError(
                f"{name}@{version} appears more than once (lines {seen[key]} and {lineno}).",
                context={"line": lineno},
            )
        seen[key] = lineno
        entries.append(LockEntry(
            name=name,
            version=version,
            resolved=resolved,
            integrity=integrity.split()[0],
            specifiers=tuple(specifiers),
            dependencies=tuple(dependencies),
        ))

    _check_closure(entries)
    return Lockfile(entries=entries, raw=raw)


def fixup_lockfile(raw: str) -> str:
    """Point every ``resolved`` URL at its offline-mirror file name.

    The ``#hash`` fragment is preserved so yarn still checks it.
    """
    out: list[str] = []
    for line in raw.splitlines(keepends=True):
        m = _RESOLVED_RE.match(line.rstrip("\n"))
        if m is None:
            out.append(line)
            continue
        mirror = mirror_name_from_url(m.group("url"))
        newline = "\n" if line.endswith("\n") else ""
        out.append(f'{m.group("indent")}resolved "{mirror}{m.group("frag") or ""}"{newline}')
    return "".join(out)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _blocks(raw: str):
    """Yield (lineno, header, body_lines) for each top-level block."""
    header: str | None = None
    header_line = 0
    body: list[tuple[int, str]] = []
    for lineno, line in enumerate(raw.splitlines(), start=1):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        if not line[0].isspace():
            if header is not None:
                yield header_line, header, body
            if not line.rstrip().endswith(":"):
                raise LockfileError(f"Malformed lockfile header at line {lineno}: {line!r}", context={"line": lineno})
            header, header_line, body = line.rstrip()[:-1], lineno, []
        else:
            if header is None:
                raise LockfileError(f"Indented line outside a block at line {lineno}.", context={"line": lineno})
            body.append((lineno, line))
    if header is not None:
        yield header_line, header, body


def _parse_header(header: str, lineno: int) -> list[str]:
    specifiers = [_unquote(part.strip()) for part in header.split(",")]
    if not all(specifiers) or not all("@" in s[1:] for s in specifiers):
        raise LockfileError(f"Malformed specifier list at line {lineno}: {header!r}", context={"line": lineno})
    return specifiers


def _parse_body(body: list[tuple[int, str]]) -> tuple[dict[str, str], list[tuple[str, str]]]:
    fields: dict[str, str] = {}
    dependencies: list[tuple[str, str]] = []
    section: str | None = None
    for lineno, line in body:
        indent = len(line) - len(line.lstrip(" "))
        text = line.strip()
        if indent <= 2:
            if text.endswith(":"):
                section = text[:-1]
                continue
            section = None
            m = _FIELD_RE.match(text)
            if m is None:
                raise LockfileError(f"Malformed field at line {lineno}: {text!r}", context={"line": lineno})
            fields[_unquote(m.group("key"))] = _unquote(m.group("value"))
        elif section in ("dependencies", "optionalDependencies"):
            m = _FIELD_RE.match(text)
            if m is None:
                raise LockfileError(f"Malformed dependency at line {lineno}: {text!r}", context={"line": lineno})
            dependencies.append((_unquote(m.group("key")), _unquote(m.group("value"))))
    return fields, dependencies


def _check_closure(entries: list[LockEntry]) -> None:
    known = {spec for entry in entries for spec in entry.specifiers}
    for entry in entries:
        for dep_name, dep_range in entry.dependencies:
            if f"{dep_name}@{dep_range}" not in known:
                raise LockfileError(
                    f"{entry.key} depends on {dep_name}@{dep_range}, which no lockfile entry resolves.",
                    context={"package": entry.key, "dependency": f"{dep_name}@{dep_range}"},
                )


def _spec_name(specifier: str) -> str:
    """Package name of a specifier; ``alias@npm:real@range`` names ``real``."""
    at = specifier.find("@", 1)
    if at < 0:
        return specifier
    rest = specifier[at + 1:]
    if rest.startswith("npm:"):
        return _spec_name(rest[len("npm:"):])
    return specifier[:at]


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _integrity_from_fragment(resolved: str) -> str:
    _, _, fragment = resolved.partition("#")
    if _SHA1_HEX_RE.match(fragment):
        return to_sri("sha1", bytes.fromhex(fragment))
    return ""

