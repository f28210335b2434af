# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Verification module for inkseal.

Three things can be checked:
1. verify_signature() - SSHSIG signature over the signable content
   Result: valid / invalid / unverifiable (never collapsed)

2. verify_hash() - current-version against the canonical body
   Result: valid / mismatch / unknown

3. verify_history() - structural and content audit of a history log

Usage:
    from inkseal.verify import verify_document, verify_history

    result = verify_document(text, public_key_line)
    if result.signature.valid and result.hash_status == HashStatus.VALID:
        print("Authentic and intact")

    audit = verify_history(await HistoryStore(config).load("posts/hello.md"))
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from .crypto import VerifyingKey, canonicalize, content_hash, verify_content
from .document import split_document, signable_content
from .errors import ReconstructionError, VerificationError, VersionNotFound
from .history import reconstruct_forward
from .types import HashStatus, HistoryFile, VerifyResult, VerifyStatus

logger = logging.getLogger(__name__)

TAMPERED_MESSAGE = "SIGNATURE DOES NOT MATCH - content may have been tampered with"


def verify_signature(
    content: str | bytes,
    public_key: VerifyingKey | str | None,
    signature: str | None,
) -> VerifyResult:
    """
    Check a signature over already-canonical content.

    Args:
        content: Exactly the bytes that were signed
        public_key: VerifyingKey or "ssh-ed25519 ..." line; None if unknown
        signature: PEM block or bare base64 body; None if absent

    Returns:
        VerifyResult: VALID, INVALID (parsed but did not match), or
        UNVERIFIABLE (no key, no signature, or unparseable input)
    """
    if not public_key:
        return VerifyResult.unverifiable("No public key available for the author")
    if not signature:
        return VerifyResult.unverifiable("Content has no signature")

    try:
        valid = verify_content(content, public_key, signature)
    except VerificationError as e:
        logger.debug(f"Signature could not be parsed: {e}")
        return VerifyResult.unverifiable(f"Malformed signature or key: {e}")

    if not valid:
        return VerifyResult.invalid(TAMPERED_MESSAGE)

    details: dict[str, Any] = {}
    if isinstance(public_key, VerifyingKey):
        details["fingerprint"] = public_key.fingerprint()
    return VerifyResult.success(details=details)


def verify_hash(body: str, current_version: str | None) -> HashStatus:
    """
    Compare a document body against its recorded current-version.

    The canonical body is tried first. Content published by older tooling
    hashed the body as-is, so the raw body is accepted as a fallback.
    """
    if not current_version:
        return HashStatus.UNKNOWN

    if content_hash(canonicalize(body)) == current_version:
        return HashStatus.VALID

    expected = current_version.removeprefix("sha256:")
    if hashlib.sha256(body.removeprefix("\n").encode("utf-8")).hexdigest() == expected:
        logger.debug("Hash matched the raw (non-canonical) body")
        return HashStatus.VALID

    return HashStatus.MISMATCH


# =============================================================================
# Documents
# =============================================================================

@dataclass
class ContentVerification:
    """Verification report for one document."""
    source: str
    type: str
    title: str
    published: str
    current_version: str
    signature: VerifyResult
    hash_status: HashStatus
    generator: str = ""
    in_reply_to: str = ""
    author: str = ""
    issues: list[str] = field(default_factory=list)
    body: str = ""

    @property
    def valid(self) -> bool:
        return self.signature.valid and self.hash_status == HashStatus.VALID

    def to_dict(self) -> dict[str, Any]:
        result = {
            "source": self.source,
            "type": self.type,
            "title": self.title,
            "published": self.published,
            "current_version": self.current_version,
            "signature": {
                "status": self.signature.status.value,
                "message": self.signature.message,
            },
            "hash": {"status": self.hash_status.value},
        }
        if self.generator:
            result["generator"] = self.generator
        if self.in_reply_to:
            result["in_reply_to"] = self.in_reply_to
        if self.author:
            result["author"] = self.author
        if self.issues:
            result["validation_issues"] = list(self.issues)
        return result


def verify_document(
    text: str,
    public_key: VerifyingKey | str | None,
    source: str = "",
    author: str = "",
) -> ContentVerification:
    """
    Verify a published document's signature and content hash.

    Raises:
        ValueError: If the text has no frontmatter
    """
    frontmatter, body = split_document(text)
    if frontmatter is None:
        raise ValueError("content has no frontmatter (not a signed document)")

    content_type = "comment" if frontmatter.is_comment else "post"
    signature = verify_signature(signable_content(text), public_key, frontmatter.signature or None)
    hash_status = verify_hash(body, frontmatter.current_version)

    issues = []
    if not frontmatter.title:
        issues.append("missing_title")
    if not frontmatter.published:
        issues.append("missing_published")
    if not frontmatter.current_version:
        issues.append("missing_current_version")
    if not frontmatter.signature:
        issues.append("missing_signature")
    if content_type == "comment" and not frontmatter.in_reply_to:
        issues.append("missing_in_reply_to")

    return ContentVerification(
        source=source,
        type=content_type,
        title=frontmatter.title,
        published=frontmatter.published,
        current_version=frontmatter.current_version,
        signature=signature,
        hash_status=hash_status,
        generator=frontmatter.generator,
        in_reply_to=frontmatter.in_reply_to,
        author=author,
        issues=issues,
        body=canonicalize(body),
    )


# =============================================================================
# History audit
# =============================================================================

def verify_history(history: HistoryFile) -> VerifyResult:
    """
    Audit a history log.

    Checks:
    1. Exactly one root entry
    2. CURRENT_HASH names an entry
    3. Every non-root entry's parent exists
    4. Every entry reconstructs (forward) to content with its recorded hash

    Duplicate hashes are reported in details but are not errors.

    Returns:
        VerifyResult (VALID or INVALID) with per-entry errors in details
    """
    errors: list[dict[str, Any]] = []

    roots = history.roots()
    if not roots:
        errors.append({"error": "No base version (PARENT=none)"})
    elif len(roots) > 1:
        errors.append({
            "error": f"Multiple base versions: {len(roots)}",
            "hashes": [r.hash for r in roots],
        })

    if history.current_hash not in history:
        errors.append({
            "hash": history.current_hash,
            "error": "CURRENT_HASH is not a recorded version",
        })

    seen: set[str] = set()
    duplicates: list[str] = []
    for entry in history.entries:
        if entry.hash in seen:
            duplicates.append(entry.hash)
            logger.warning(f"Duplicate version hash in history: {entry.hash}")
            continue
        seen.add(entry.hash)

        if not entry.is_root and entry.parent not in history:
            errors.append({"hash": entry.hash, "error": f"Parent {entry.parent} not found"})
            continue

        try:
            content = reconstruct_forward(history, entry.hash)
        except (VersionNotFound, ReconstructionError) as e:
            errors.append({"hash": entry.hash, "error": f"Cannot reconstruct: {e}"})
            continue

        computed = content_hash(content)
        if computed != entry.hash:
            errors.append({
                "hash": entry.hash,
                "error": "Hash mismatch",
                "computed": computed,
            })

    details: dict[str, Any] = {
        "canonical_file": history.canonical_file,
        "count": len(history.entries),
        "current_hash": history.current_hash,
    }
    if duplicates:
        details["duplicates"] = duplicates

    if errors:
        details["errors"] = errors
        return VerifyResult.invalid(
            f"History verification failed: {len(errors)} error(s)",
            details=details,
        )
    return VerifyResult(
        status=VerifyStatus.VALID,
        message=f"History intact: {len(history.entries)} version(s)",
        details=details,
    )
