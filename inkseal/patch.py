# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Unified diff computation and application, in process.

compute_diff() produces `diff -u` style text via difflib. apply_patch()
applies such text forward or in reverse (the equivalent of `patch` and
`patch -R`). Hunks are located at their recorded line first; if the
context there does not match, nearby positions are searched for an exact
match before giving up with ReconstructionError. No fuzz: context lines
must match exactly.
"""

import difflib
import logging
import re
from dataclasses import dataclass, field

from .errors import ReconstructionError

logger = logging.getLogger(__name__)

NO_NEWLINE_MARKER = "\\ No newline at end of file"

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_FILE_HEADERS = ("--- ", "+++ ", "diff ", "index ", "Index: ", "===")


# =============================================================================
# Compute
# =============================================================================

def split_lines(text: str) -> list[str]:
    """
    Split text into lines on "\\n" only, keeping the line endings.

    Form feeds, U+2028 and the other characters str.splitlines() treats as
    line breaks stay inside their line, as they do for `diff` and `patch`.
    """
    lines = text.split("\n")
    out = [line + "\n" for line in lines[:-1]]
    if lines[-1]:
        out.append(lines[-1])
    return out


def compute_diff(old: str, new: str, old_label: str = "a", new_label: str = "b") -> str:
    """
    Unified diff (3 lines of context) turning old into new.

    Returns:
        Diff text ending in a newline, or "" when old == new
    """
    if old == new:
        return ""

    out = []
    for line in difflib.unified_diff(
        split_lines(old),
        split_lines(new),
        fromfile=old_label,
        tofile=new_label,
    ):
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER + "\n")
    return "".join(out)


# =============================================================================
# Parse
# =============================================================================

@dataclass
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    # (tag, text) with tag in " ", "-", "+"; text keeps its line ending
    lines: list = field(default_factory=list)

    @property
    def old_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag != "+"]

    @property
    def new_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag != "-"]

    def reversed(self) -> "Hunk":
        flipped = {" ": " ", "-": "+", "+": "-"}
        return Hunk(
            old_start=self.new_start,
            old_count=self.new_count,
            new_start=self.old_start,
            new_count=self.old_count,
            lines=[(flipped[tag], text) for tag, text in self.lines],
        )


def parse_hunks(diff: str) -> list[Hunk]:
    """
    Parse the hunks of a single-file unified diff.

    File headers (---, +++, diff, index) are skipped. An empty line inside a
    hunk is read as an empty context line, since some tools strip the
    leading space.

    Raises:
        ReconstructionError: On a malformed hunk header, a line count that
            disagrees with the header, or stray text outside hunks
    """
    lines = diff.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    hunks: list[Hunk] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if not line.startswith("@@"):
            if line == "" or line.startswith(_FILE_HEADERS):
                i += 1
                continue
            raise ReconstructionError(f"unexpected line outside hunk: {line[:60]!r}")

        m = _HUNK_HEADER.match(line)
        if not m:
            raise ReconstructionError(f"malformed hunk header: {line!r}")
        hunk = Hunk(
            old_start=int(m.group(1)),
            old_count=int(m.group(2)) if m.group(2) is not None else 1,
            new_start=int(m.group(3)),
            new_count=int(m.group(4)) if m.group(4) is not None else 1,
        )
        i += 1

        old_left, new_left = hunk.old_count, hunk.new_count
        while old_left > 0 or new_left > 0:
            if i >= len(lines):
                raise ReconstructionError(
                    f"hunk @@ -{hunk.old_start} +{hunk.new_start} @@ is truncated"
                )
            body = lines[i]
            if body.startswith("\\"):
                _strip_last_newline(hunk)
                i += 1
                continue
            tag, text = (body[0], body[1:]) if body else (" ", "")
            if tag not in " -+":
                raise ReconstructionError(f"invalid hunk line: {body[:60]!r}")
            if tag != "+":
                old_left -= 1
            if tag != "-":
                new_left -= 1
            if old_left < 0 or new_left < 0:
                raise ReconstructionError(
                    f"hunk @@ -{hunk.old_start} +{hunk.new_start} @@ has more lines than its header declares"
                )
            hunk.lines.append((tag, text + "\n"))
            i += 1

        # A trailing marker applies to the last line of the hunk
        while i < len(lines) and lines[i].startswith("\\"):
            _strip_last_newline(hunk)
            i += 1

        hunks.append(hunk)
    return hunks


def _strip_last_newline(hunk: Hunk) -> None:
    if not hunk.lines:
        raise ReconstructionError("no-newline marker before any hunk line")
    tag, text = hunk.lines[-1]
    hunk.lines[-1] = (tag, text[:-1] if text.endswith("\n") else text)


# =============================================================================
# Apply
# =============================================================================

def apply_patch(content: str, diff: str, reverse: bool = False) -> str:
    """
    Apply a unified diff to content.

    Args:
        content: Text the diff's old side (new side when reverse) describes
        diff: Unified diff text; "" is a no-op
        reverse: Undo the diff instead of applying it

    Returns:
        Patched text

    Raises:
        ReconstructionError: If the diff is malformed or a hunk's context
            cannot be found
    """
    if not diff.strip():
        return content

    hunks = parse_hunks(diff)
    if reverse:
        hunks = [h.reversed() for h in hunks]

    src = split_lines(content)
    out: list[str] = []
    pos = 0
    drift = 0

    for hunk in hunks:
        old = hunk.old_lines
        # old_start names the line before an insertion when the old side is empty
        expected = (hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1) + drift
        index = _locate(src, old, expected, pos)
        if index is None:
            raise ReconstructionError(
                f"hunk @@ -{hunk.old_start},{hunk.old_count} +{hunk.new_start},{hunk.new_count} @@ "
                f"does not apply"
            )
        if index != expected:
            logger.debug(f"Hunk at line {hunk.old_start} applied with offset {index - expected}")
        drift += index - expected

        out.extend(src[pos:index])
        out.extend(hunk.new_lines)
        pos = index + len(old)

    out.extend(src[pos:])
    return "".join(out)


def _locate(src: list[str], old: list[str], expected: int, lower: int) -> int | None:
    """Nearest index >= lower where old matches src exactly, searching outward from expected."""
    upper = len(src) - len(old)
    if upper < lower:
        return None
    if not old:
        return min(max(expected, lower), len(src))

    def matches(i: int) -> bool:
        return src[i:i + len(old)] == old

    expected = min(max(expected, lower), upper)
    if matches(expected):
        return expected
    for distance in range(1, max(expected - lower, upper - expected) + 1):
        for candidate in (expected - distance, expected + distance):
            if lower <= candidate <= upper and matches(candidate):
                return candidate
    return None
