# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Per-file version history: text codec, storage and reconstruction.

Every published file has a history log at
<dir of file>/<versions_dir>/<file name>::

    # VERSION_FILE_FORMAT=1.0
    # CANONICAL_FILE=posts/20250115/hello.md
    # CURRENT_HASH=sha256:<hex>

    [VERSION sha256:<hex>]
    TIMESTAMP=2025-01-15T10:30:00Z
    PARENT=none
    FULL_CONTENT_START
    <canonical body>
    FULL_CONTENT_END

    [VERSION sha256:<hex>]
    TIMESTAMP=2025-01-16T08:00:00Z
    PARENT=sha256:<hex>
    DIFF_START
    <unified diff against the parent>
    DIFF_END

The log is append-only. Appending rewrites the CURRENT_HASH header line and
adds one block; existing blocks are carried over byte for byte. Writes go
to a temp file that is then renamed over the log.

Concurrency: HistoryStore does not lock. Callers must serialize writes to
the same file (one writer per site).

Usage:
    store = HistoryStore(SiteConfig(root="./site"))
    await store.init_history("posts/hello.md", h0, "Hello\\n")
    await store.append_version("posts/hello.md", h1, "Hello\\nWorld\\n")
    body = await store.reconstruct("posts/hello.md", h0)
"""

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import List, Optional

import aiofiles

from .config import SiteConfig
from .crypto import content_hash
from .document import extract_body
from .errors import HistoryFormatError, ReconstructionError, VersionNotFound
from .patch import apply_patch, compute_diff
from .types import (
    ROOT_PARENT,
    VERSION_FILE_FORMAT,
    HistoryFile,
    VersionEntry,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

HEADER_FORMAT = "# VERSION_FILE_FORMAT="
HEADER_CANONICAL_FILE = "# CANONICAL_FILE="
HEADER_CURRENT_HASH = "# CURRENT_HASH="
VERSION_PREFIX = "[VERSION "
FULL_CONTENT_START = "FULL_CONTENT_START"
FULL_CONTENT_END = "FULL_CONTENT_END"
DIFF_START = "DIFF_START"
DIFF_END = "DIFF_END"


# =============================================================================
# Text codec
# =============================================================================

def format_header(canonical_file: str, current_hash: str, format_version: str = VERSION_FILE_FORMAT) -> str:
    return (
        f"{HEADER_FORMAT}{format_version}\n"
        f"{HEADER_CANONICAL_FILE}{canonical_file}\n"
        f"{HEADER_CURRENT_HASH}{current_hash}\n"
        "\n"
    )


def format_entry(entry: VersionEntry) -> str:
    """One [VERSION] block followed by its blank separator line."""
    if entry.is_root:
        start, end, body = FULL_CONTENT_START, FULL_CONTENT_END, entry.full_content or ""
    else:
        start, end, body = DIFF_START, DIFF_END, entry.diff or ""
    if body and not body.endswith("\n"):
        body += "\n"
    return (
        f"{VERSION_PREFIX}{entry.hash}]\n"
        f"TIMESTAMP={entry.timestamp}\n"
        f"PARENT={entry.parent}\n"
        f"{start}\n"
        f"{body}{end}\n"
        "\n"
    )


def format_history(history: HistoryFile) -> str:
    parts = [format_header(history.canonical_file, history.current_hash, history.format_version)]
    parts.extend(format_entry(entry) for entry in history.entries)
    return "".join(parts)


def parse_history(text: str) -> HistoryFile:
    """
    Parse history log text.

    Header lines are only recognized before the first [VERSION] marker.
    Inside a FULL_CONTENT or DIFF block only the matching END line closes
    the block, so bodies may contain any other text.

    Raises:
        HistoryFormatError: If CURRENT_HASH is missing, a block is not
            closed, or an entry has no PARENT line
    """
    format_version = VERSION_FILE_FORMAT
    canonical_file = ""
    current_hash: Optional[str] = None
    entries: List[VersionEntry] = []

    entry: Optional[VersionEntry] = None
    block_end: Optional[str] = None
    block_lines: List[str] = []
    has_parent = False

    def finish_entry() -> None:
        if entry is None:
            return
        if not has_parent:
            raise HistoryFormatError(f"version {entry.hash} has no PARENT line")
        entries.append(entry)

    for lineno, line in enumerate(text.split("\n"), start=1):
        if block_end is not None:
            if line == block_end:
                body = "\n".join(block_lines) + "\n" if block_lines else ""
                if block_end == FULL_CONTENT_END:
                    entry.full_content = body
                else:
                    entry.diff = body
                block_end = None
            else:
                block_lines.append(line)
            continue

        if line.startswith(VERSION_PREFIX) and line.endswith("]"):
            finish_entry()
            entry = VersionEntry(hash=line[len(VERSION_PREFIX):-1], timestamp="")
            has_parent = False
            continue

        if entry is None:
            if line.startswith(HEADER_FORMAT):
                format_version = line[len(HEADER_FORMAT):]
            elif line.startswith(HEADER_CANONICAL_FILE):
                canonical_file = line[len(HEADER_CANONICAL_FILE):]
            elif line.startswith(HEADER_CURRENT_HASH):
                current_hash = line[len(HEADER_CURRENT_HASH):]
            continue

        if line.startswith("TIMESTAMP="):
            entry.timestamp = line[len("TIMESTAMP="):]
        elif line.startswith("PARENT="):
            entry.parent = line[len("PARENT="):]
            has_parent = True
        elif line == FULL_CONTENT_START:
            block_end, block_lines = FULL_CONTENT_END, []
        elif line == DIFF_START:
            block_end, block_lines = DIFF_END, []
        elif line.strip():
            logger.debug(f"Ignoring unexpected history line {lineno}: {line[:60]!r}")

    if block_end is not None:
        raise HistoryFormatError(f"version {entry.hash}: missing {block_end}")
    finish_entry()

    if current_hash is None:
        raise HistoryFormatError("missing CURRENT_HASH header")

    return HistoryFile(
        canonical_file=canonical_file,
        current_hash=current_hash,
        entries=entries,
        format_version=format_version,
    )


def replace_current_hash(text: str, new_hash: str) -> str:
    """Rewrite the CURRENT_HASH header line, leaving every other byte alone."""
    lines = text.split("\n")
    for i, line in enumerate(lines):
        if line.startswith(VERSION_PREFIX):
            break
        if line.startswith(HEADER_CURRENT_HASH):
            lines[i] = HEADER_CURRENT_HASH + new_hash
            return "\n".join(lines)
    raise HistoryFormatError("missing CURRENT_HASH header")


# =============================================================================
# Reconstruction
# =============================================================================

def reconstruct_backward(history: HistoryFile, live_body: str, target_hash: str) -> str:
    """
    Walk from the head toward the root, undoing each diff.

    Requires live_body (the canonical body of the file on disk) to hash to
    history.current_hash.

    Raises:
        ReconstructionError: If the live body is out of sync, a diff does not
            apply, or the result does not hash to target_hash
        VersionNotFound: If the walk reaches the root or a missing entry
            without meeting target_hash
    """
    live_hash = content_hash(live_body)
    if live_hash != history.current_hash:
        raise ReconstructionError(
            f"live content hash {live_hash} does not match CURRENT_HASH {history.current_hash}"
        )

    content = live_body
    current = history.current_hash
    visited = set()
    while current != target_hash:
        if current in visited:
            raise ReconstructionError(f"parent cycle at {current}")
        visited.add(current)

        entry = history.get(current)
        if entry is None:
            raise VersionNotFound(target_hash, f"version {current} missing while walking back")
        if entry.is_root:
            raise VersionNotFound(target_hash, "reached base without finding target")
        content = apply_patch(content, entry.diff or "", reverse=True)
        current = entry.parent

    if content_hash(content) != target_hash:
        raise ReconstructionError(f"backward reconstruction of {target_hash} produced different content")
    return content


def reconstruct_forward(history: HistoryFile, target_hash: str) -> str:
    """
    Replay diffs from the root along the shortest parent -> child path.

    Raises:
        VersionNotFound: If there is no root or no path to target_hash
        ReconstructionError: If a diff does not apply or the result does not
            hash to target_hash
    """
    root = history.root()
    if root is None:
        raise VersionNotFound(target_hash, "no base version found")
    content = root.full_content or ""
    if root.hash == target_hash:
        return content

    path = history.path_between(root.hash, target_hash)
    if path is None:
        raise VersionNotFound(target_hash, f"no path from base to {target_hash}")

    for step in path[1:]:
        content = apply_patch(content, history.get(step).diff or "")

    if content_hash(content) != target_hash:
        raise ReconstructionError(f"forward reconstruction of {target_hash} produced different content")
    return content


def reconstruct_content(history: HistoryFile, target_hash: str, live_body: Optional[str] = None) -> str:
    """
    Canonical body of target_hash.

    The root entry is returned directly. Otherwise the backward strategy is
    tried when live_body is given, and forward replay is the fallback.

    Raises:
        VersionNotFound: If target_hash is unknown or unreachable
        ReconstructionError: If forward replay hits a diff that does not
            apply or yields content that does not hash to target_hash
    """
    entry = history.get(target_hash)
    if entry is None:
        raise VersionNotFound(target_hash)
    if entry.is_root:
        return entry.full_content or ""

    if live_body is not None:
        try:
            return reconstruct_backward(history, live_body, target_hash)
        except (ReconstructionError, VersionNotFound) as e:
            logger.debug(f"Backward reconstruction of {target_hash} failed ({e}); replaying forward")

    return reconstruct_forward(history, target_hash)


# =============================================================================
# Storage
# =============================================================================

async def write_text_atomic(path: Path, text: str, mode: int = 0o644) -> None:
    """Write text to a temp file beside path, then rename it over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    temp_file = Path(tmp_name)
    try:
        async with aiofiles.open(temp_file, "w", encoding="utf-8", newline="") as f:
            await f.write(text)
            await f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_file, mode)
        # Atomic replace (sync, but file handles are closed)
        temp_file.replace(path)
    except BaseException:
        temp_file.unlink(missing_ok=True)
        raise


class HistoryStore:
    """
    Reads and writes history logs under a site root.

    All paths given to the public methods are relative to config.root and
    name the published file, not the log.
    """

    def __init__(self, config: SiteConfig | None = None):
        self.config = config or SiteConfig()
        self.root = Path(self.config.root)

    def document_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    def history_path(self, relative_path: str) -> Path:
        rel = PurePosixPath(relative_path)
        return self.root / rel.parent / self.config.versions_dir / rel.name

    def exists(self, relative_path: str) -> bool:
        return self.history_path(relative_path).exists()

    async def _read_text(self, path: Path) -> str:
        async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
            return await f.read()

    async def load(self, relative_path: str) -> HistoryFile:
        """
        Parse the history log of a published file.

        Raises:
            FileNotFoundError: If no log exists
            HistoryFormatError: If the log does not parse
        """
        return parse_history(await self._read_text(self.history_path(relative_path)))

    async def init_history(
        self,
        relative_path: str,
        content_hash_value: str,
        canonical_body: str,
        timestamp: str | None = None,
    ) -> HistoryFile:
        """
        Create the log with a single root entry holding the full body.

        Raises:
            FileExistsError: If the file already has a history log
        """
        path = self.history_path(relative_path)
        if path.exists():
            raise FileExistsError(f"History already exists: {path}")

        history = HistoryFile(canonical_file=relative_path, current_hash=content_hash_value)
        history.add_entry(VersionEntry(
            hash=content_hash_value,
            timestamp=timestamp or utc_timestamp(),
            parent=ROOT_PARENT,
            full_content=canonical_body,
        ))
        await write_text_atomic(path, format_history(history))
        logger.info(f"History created: {path} ({content_hash_value})")
        return history

    async def append_version(
        self,
        relative_path: str,
        new_hash: str,
        new_canonical_body: str,
        timestamp: str | None = None,
    ) -> VersionEntry:
        """
        Append a revision whose parent is the current head.

        The diff is computed against the head's reconstructed body. An
        unchanged body still produces an entry (with an empty diff).

        Raises:
            FileNotFoundError: If the file has no history log yet
            VersionNotFound / ReconstructionError: If the head body cannot be
                reconstructed
        """
        path = self.history_path(relative_path)
        raw = await self._read_text(path)
        history = parse_history(raw)
        previous_hash = history.current_hash

        previous_body = reconstruct_content(
            history, previous_hash, await self._read_live_body(relative_path)
        )
        name = PurePosixPath(relative_path).name
        diff = compute_diff(previous_body, new_canonical_body, f"a/{name}", f"b/{name}")

        entry = VersionEntry(
            hash=new_hash,
            timestamp=timestamp or utc_timestamp(),
            parent=previous_hash,
            diff=diff,
        )
        if not history.add_entry(entry):
            logger.warning(f"Duplicate version hash appended to {path}: {new_hash}")

        text = replace_current_hash(raw, new_hash)
        if text and not text.endswith("\n"):
            text += "\n"
        await write_text_atomic(path, text + format_entry(entry))
        logger.info(f"Version appended: {path} {previous_hash} -> {new_hash}")
        return entry

    async def _read_live_body(self, relative_path: str) -> str | None:
        path = self.document_path(relative_path)
        try:
            return extract_body(await self._read_text(path))
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Live file {path} unavailable for backward reconstruction: {e}")
            return None

    async def reconstruct(self, relative_path: str, target_hash: str) -> str:
        """
        Canonical body of a past revision.

        Raises:
            FileNotFoundError: If the file has no history log
            VersionNotFound: If target_hash is unknown or unreachable
            ReconstructionError: If a diff does not apply or the result does not
                hash to target_hash
        """
        history = await self.load(relative_path)
        return reconstruct_content(history, target_hash, await self._read_live_body(relative_path))
