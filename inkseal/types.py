# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Core data types for inkseal.

Data model:
- VersionEntry: one revision in a history log (full content for the root, a diff otherwise)
- HistoryFile: the parsed per-file log, with a hash index and parent -> children map
- VerifyResult: outcome of a signature or hash check

Verification outcomes are three-state on purpose: a signature can be valid,
invalid (parsed, did not match), or unverifiable (missing key or signature,
or a container that does not parse).
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class VerifyStatus(str, Enum):
    """Signature verification status."""
    VALID = "valid"                  # Signature checks out against the key
    INVALID = "invalid"              # Parsed, but cryptographic check failed
    UNVERIFIABLE = "unverifiable"    # Missing key/signature or malformed container


class HashStatus(str, Enum):
    """Content hash check status."""
    VALID = "valid"
    MISMATCH = "mismatch"
    UNKNOWN = "unknown"              # No hash recorded


# =============================================================================
# Format Version
# =============================================================================

# Version history:
#   1.0 - Header comments, [VERSION] blocks with FULL_CONTENT / DIFF bodies
VERSION_FILE_FORMAT = "1.0"

# PARENT value of the root entry
ROOT_PARENT = "none"


# =============================================================================
# VersionEntry
# =============================================================================

@dataclass
class VersionEntry:
    """
    A single revision in a history log.

    Attributes:
        hash: Content hash of the revision's canonical body
        timestamp: UTC timestamp, "%Y-%m-%dT%H:%M:%SZ"
        parent: Hash of the previous revision, or "none" for the root
        full_content: Canonical body (root entry only)
        diff: Unified diff against the parent (non-root entries only)
    """
    hash: str
    timestamp: str
    parent: str = ROOT_PARENT
    full_content: Optional[str] = None
    diff: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent == ROOT_PARENT


# =============================================================================
# HistoryFile
# =============================================================================

@dataclass
class HistoryFile:
    """
    Parsed history log for one content file.

    The hash index and the children map are built once at construction and
    kept current by add_entry(). When two entries share a hash the first
    one in file order wins.
    """
    canonical_file: str
    current_hash: str
    entries: List[VersionEntry] = field(default_factory=list)
    format_version: str = VERSION_FILE_FORMAT
    _by_hash: Dict[str, VersionEntry] = field(default_factory=dict, init=False, repr=False)
    _children: Dict[str, List[str]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for entry in self.entries:
            self._index(entry)

    def _index(self, entry: VersionEntry) -> bool:
        """Index an entry; returns False if its hash was already present."""
        if entry.hash in self._by_hash:
            return False
        self._by_hash[entry.hash] = entry
        if not entry.is_root:
            self._children.setdefault(entry.parent, []).append(entry.hash)
        return True

    def add_entry(self, entry: VersionEntry) -> bool:
        """
        Append an entry and update the indexes.

        Returns:
            False if an entry with the same hash already existed
        """
        self.entries.append(entry)
        return self._index(entry)

    def get(self, content_hash: str) -> Optional[VersionEntry]:
        return self._by_hash.get(content_hash)

    def __contains__(self, content_hash: str) -> bool:
        return content_hash in self._by_hash

    def __len__(self) -> int:
        return len(self.entries)

    def root(self) -> Optional[VersionEntry]:
        """First entry with parent "none"."""
        for entry in self.entries:
            if entry.is_root:
                return entry
        return None

    def roots(self) -> List[VersionEntry]:
        return [e for e in self.entries if e.is_root]

    def children(self, content_hash: str) -> List[str]:
        return list(self._children.get(content_hash, []))

    def head(self) -> Optional[VersionEntry]:
        return self.get(self.current_hash)

    def ancestry(self, content_hash: str) -> List[str]:
        """
        Hashes from content_hash back to the root (inclusive), following parents.

        Stops early on a missing parent or a cycle.
        """
        chain: List[str] = []
        seen = set()
        current = content_hash
        while current != ROOT_PARENT and current not in seen:
            entry = self.get(current)
            if entry is None:
                break
            chain.append(current)
            seen.add(current)
            current = entry.parent
        return chain

    def path_between(self, start: str, target: str) -> Optional[List[str]]:
        """
        Shortest path of hashes from start to target over parent -> child edges.

        Breadth-first over the children map; returns None if target is not
        reachable. The path includes both endpoints.
        """
        if start not in self._by_hash:
            return None
        if start == target:
            return [start]

        previous: Dict[str, str] = {}
        visited = {start}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for child in self._children.get(node, []):
                if child in visited:
                    continue
                visited.add(child)
                previous[child] = node
                if child == target:
                    path = [target]
                    while path[-1] != start:
                        path.append(previous[path[-1]])
                    path.reverse()
                    return path
                queue.append(child)
        return None


# =============================================================================
# VerifyResult
# =============================================================================

@dataclass
class VerifyResult:
    """
    Result of a signature verification.

    Attributes:
        status: VALID, INVALID or UNVERIFIABLE
        message: Human-readable explanation
        checked_at: Timestamp of verification
        details: Additional verification details
    """
    status: VerifyStatus
    message: str
    checked_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return self.status == VerifyStatus.VALID

    @classmethod
    def success(cls, details: Optional[Dict] = None) -> "VerifyResult":
        return cls(
            status=VerifyStatus.VALID,
            message="Signature valid",
            details=details or {},
        )

    @classmethod
    def invalid(cls, message: str = "Signature does not match", details: Optional[Dict] = None) -> "VerifyResult":
        return cls(status=VerifyStatus.INVALID, message=message, details=details or {})

    @classmethod
    def unverifiable(cls, message: str, details: Optional[Dict] = None) -> "VerifyResult":
        return cls(status=VerifyStatus.UNVERIFIABLE, message=message, details=details or {})


# =============================================================================
# Helper functions
# =============================================================================

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_timestamp(when: Optional[datetime] = None) -> str:
    """UTC timestamp in the history/frontmatter format."""
    when = when or datetime.now(timezone.utc)
    return when.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
