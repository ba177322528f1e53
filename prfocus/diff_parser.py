"""Unified diff parsing into numbered hunks."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from prfocus.models import DiffHunk, DiffLine, DiffLineType

_HUNK_HEADER_RE = re.compile(r"@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


def parse_patch(patch_text: str | None) -> list[DiffHunk]:
    """Parse a unified diff into hunks with old/new line numbers.

    Best effort by design: text before the first hunk header, and any line
    inside a hunk that is not an add, remove or context line (for example
    ``\\ No newline at end of file``), is skipped rather than reported.
    """
    if not patch_text:
        return []

    lines = patch_text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    hunks: list[DiffHunk] = []
    current: DiffHunk | None = None
    old_number = 0
    new_number = 0

    for line in lines:
        if line.startswith("@@"):
            match = _HUNK_HEADER_RE.match(line)
            if not match:
                continue
            if current is not None:
                hunks.append(current)
            old_start = int(match.group(1))
            new_start = int(match.group(3))
            current = DiffHunk(
                old_start=old_start,
                old_lines=int(match.group(2)) if match.group(2) is not None else 1,
                new_start=new_start,
                new_lines=int(match.group(4)) if match.group(4) is not None else 1,
            )
            old_number = old_start
            new_number = new_start
            continue

        if current is None:
            continue

        if line.startswith("-"):
            current.lines.append(DiffLine(type=DiffLineType.REMOVE, old_number=old_number, content=line[1:]))
            old_number += 1
        elif line.startswith("+"):
            current.lines.append(DiffLine(type=DiffLineType.ADD, new_number=new_number, content=line[1:]))
            new_number += 1
        elif line.startswith(" "):
            current.lines.append(
                DiffLine(type=DiffLineType.CONTEXT, old_number=old_number, new_number=new_number, content=line[1:])
            )
            old_number += 1
            new_number += 1

    if current is not None:
        hunks.append(current)
    return hunks


def ensure_hunk_header(fragment: str) -> str:
    """Prefix a fragment that has no conforming hunk header with ``@@ -1,N +1,N @@``.

    Model-produced hunks often drop the header or write a malformed one
    such as ``@@ class Foo @@``, which is dropped. N is the larger of the
    added and removed line counts, so the synthesized span always covers
    every marked line.
    """
    lines = fragment.split("\n")
    if any(_HUNK_HEADER_RE.match(line) for line in lines):
        return fragment

    body = [line for line in lines if not line.startswith("@@")]
    added = 0
    removed = 0
    for line in body:
        if line.startswith("+"):
            added += 1
        elif line.startswith("-"):
            removed += 1
    span = max(added, removed, 1)
    return "\n".join([f"@@ -1,{span} +1,{span} @@", *body])


def _file_field(file: Any, name: str) -> Any:
    if isinstance(file, dict):
        return file.get(name)
    return getattr(file, name, None)


def parse_files(files: Iterable[Any]) -> list[tuple[str, list[DiffHunk]]]:
    """Parse each changed file's ``patch``; files without one (binary, too large) get no hunks."""
    parsed: list[tuple[str, list[DiffHunk]]] = []
    for file in files:
        filename = str(_file_field(file, "filename") or "")
        parsed.append((filename, parse_patch(_file_field(file, "patch"))))
    return parsed
