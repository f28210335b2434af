# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Published document model: YAML-style frontmatter plus a Markdown body.

Layout written by the publisher::

    ---
    title: Hello
    published: 2025-01-15T10:30:00Z
    generator: inkseal/0.1.0
    current-version: sha256:<hex>
    version-history:
      - sha256:<hex> (2025-01-15T10:30:00Z)
    signature: <base64 SSH SIGNATURE body>
    ---

    <canonical body>

The signature covers canonicalize(document without its signature line).
The current-version hash covers the canonical body only.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .crypto import canonicalize

FRONTMATTER_DELIMITER = "---"
UNTITLED = "Untitled"

_QUOTE_PREFIXES = ("*", "&", "!", "|", ">", "@", "`", "#")


def escape_yaml_string(value: str) -> str:
    """Quote a scalar only when plain YAML would misread it."""
    needs_quoting = (
        value.startswith(" ")
        or value.endswith(" ")
        or ": " in value
        or value.endswith(":")
        or "\n" in value
        or '"' in value
        or value.startswith(_QUOTE_PREFIXES)
    )
    if needs_quoting:
        return '"' + value.replace('"', '\\"') + '"'
    return value


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"')
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1].replace("''", "'")
    return value


# =============================================================================
# Frontmatter
# =============================================================================

@dataclass
class Frontmatter:
    """Typed view of the frontmatter fields inkseal reads and writes."""
    title: str = ""
    published: str = ""
    type: str = ""
    updated: str = ""
    generator: str = ""
    current_version: str = ""
    version_history: List[str] = field(default_factory=list)
    in_reply_to: str = ""
    in_reply_to_version: str = ""
    signature: str = ""

    @property
    def is_comment(self) -> bool:
        return self.type == "comment" or bool(self.in_reply_to)

    def render(self, include_signature: bool = True) -> str:
        """Frontmatter block including both delimiter lines, no trailing newline."""
        lines = [FRONTMATTER_DELIMITER, f"title: {escape_yaml_string(self.title)}"]
        if self.type:
            lines.append(f"type: {self.type}")
        lines.append(f"published: {self.published}")
        if self.updated:
            lines.append(f"updated: {self.updated}")
        if self.generator:
            lines.append(f"generator: {self.generator}")
        lines.append(f"current-version: {self.current_version}")
        lines.append("version-history:")
        lines.extend(f"  - {entry}" for entry in self.version_history)
        if self.in_reply_to:
            lines.append("in-reply-to:")
            lines.append(f"  url: {self.in_reply_to}")
            if self.in_reply_to_version:
                lines.append(f"  version: {self.in_reply_to_version}")
        if include_signature and self.signature:
            lines.append(f"signature: {self.signature}")
        lines.append(FRONTMATTER_DELIMITER)
        return "\n".join(lines)

    @classmethod
    def parse(cls, block: str) -> "Frontmatter":
        """
        Parse the lines between the two delimiters.

        Unknown keys are ignored. Nested blocks (version-history,
        in-reply-to) are read from their indented lines.
        """
        fm = cls()
        section = None
        for line in block.split("\n"):
            if not line.strip():
                continue
            if line.startswith((" ", "\t")):
                item = line.strip()
                if section == "version-history" and item.startswith("- "):
                    fm.version_history.append(item[2:].strip())
                elif section == "in-reply-to":
                    key, _, value = item.partition(":")
                    if key == "url":
                        fm.in_reply_to = _unquote(value.strip())
                    elif key == "version":
                        fm.in_reply_to_version = _unquote(value.strip())
                continue

            key, sep, value = line.partition(":")
            if not sep:
                section = None
                continue
            key = key.strip()
            value = _unquote(value.strip())
            section = key
            if key == "title":
                fm.title = value
            elif key == "type":
                fm.type = value
            elif key == "published":
                fm.published = value
            elif key == "updated":
                fm.updated = value
            elif key == "generator":
                fm.generator = value
            elif key == "current-version":
                fm.current_version = value
            elif key == "signature":
                fm.signature = value
            elif key == "in-reply-to" and value:
                # Flat form: "in-reply-to: <url>"
                fm.in_reply_to = value
        return fm

    def history_hashes(self) -> List[str]:
        """Hashes from version-history, without the "(timestamp)" suffix."""
        return [entry.split(" ", 1)[0] for entry in self.version_history]


# =============================================================================
# Document helpers
# =============================================================================

def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def has_frontmatter(text: str) -> bool:
    return _normalize_newlines(text).lstrip().startswith(FRONTMATTER_DELIMITER + "\n")


def split_document(text: str) -> Tuple[Optional[Frontmatter], str]:
    """
    Split a document into its frontmatter and raw body.

    Returns:
        (Frontmatter, body) or (None, text) when there is no frontmatter or
        its closing delimiter is missing
    """
    normalized = _normalize_newlines(text)
    stripped = normalized.lstrip(" \t\n")
    if not stripped.startswith(FRONTMATTER_DELIMITER + "\n"):
        return None, normalized

    lines = stripped.split("\n")
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIMITER:
            fm = Frontmatter.parse("\n".join(lines[1:i]))
            return fm, "\n".join(lines[i + 1:])
    return None, normalized


def extract_body(text: str) -> str:
    """Canonical body of a document (frontmatter removed)."""
    _, body = split_document(text)
    return canonicalize(body)


def render_document(frontmatter: Frontmatter, body: str, include_signature: bool = True) -> str:
    """Frontmatter, one blank line, then the canonical body."""
    return frontmatter.render(include_signature=include_signature) + "\n\n" + canonicalize(body)


_SIGNATURE_LINE = re.compile(r"^signature:.*$")


def signable_content(text: str) -> str:
    """
    The exact text a document's signature covers.

    Removes the signature line from the frontmatter and canonicalizes the
    remainder. For a document written by the publisher this equals
    canonicalize(render_document(fm, body, include_signature=False)).
    """
    normalized = _normalize_newlines(text)
    if not has_frontmatter(normalized):
        return canonicalize(normalized)

    out = []
    delimiters = 0
    for line in normalized.split("\n"):
        if delimiters < 2 and line.strip() == FRONTMATTER_DELIMITER:
            delimiters += 1
        elif delimiters == 1 and _SIGNATURE_LINE.match(line):
            continue
        out.append(line)
    return canonicalize("\n".join(out))


def extract_title(markdown: str) -> str:
    """First "# " heading, else the first non-empty line (truncated to 60 chars)."""
    for line in _normalize_newlines(markdown).split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed.startswith("# "):
            return trimmed[2:].strip()
        return trimmed[:60]
    return UNTITLED
