# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""Tests for document, signature and history verification."""

import hashlib

import pytest

from inkseal.crypto import SigningKey, content_hash, sign_content
from inkseal.document import Frontmatter, render_document, signable_content
from inkseal.history import format_history
from inkseal.patch import compute_diff
from inkseal.sshformat import signature_to_base64
from inkseal.types import HashStatus, HistoryFile, VerifyStatus, VersionEntry
from inkseal.verify import (
    TAMPERED_MESSAGE,
    verify_document,
    verify_hash,
    verify_history,
    verify_signature,
)


@pytest.fixture
def signing_key():
    """Generate a fresh signing key for tests."""
    return SigningKey.generate(comment="test-key")


def make_document(signing_key, body="# Hello\n\nWorld\n", **fields):
    """Signed document text, built the way the publisher builds it."""
    frontmatter = Frontmatter(
        title=fields.pop("title", "Hello"),
        published="2025-01-15T10:30:00Z",
        current_version=content_hash(body),
        version_history=[f"{content_hash(body)} (2025-01-15T10:30:00Z)"],
        **fields,
    )
    unsigned = render_document(frontmatter, body, include_signature=False)
    frontmatter.signature = signature_to_base64(sign_content(signable_content(unsigned), signing_key))
    return render_document(frontmatter, body)


# =============================================================================
# Signatures (three-state)
# =============================================================================


def test_verify_signature_valid(signing_key):
    signature = sign_content("hello\n", signing_key)
    result = verify_signature("hello\n", signing_key.public_key(), signature)

    assert result.status == VerifyStatus.VALID
    assert result.valid
    assert result.details["fingerprint"] == signing_key.public_key().fingerprint()


def test_verify_signature_invalid(signing_key):
    signature = sign_content("hello\n", signing_key)
    result = verify_signature("goodbye\n", signing_key.public_key(), signature)

    assert result.status == VerifyStatus.INVALID
    assert result.message == TAMPERED_MESSAGE


def test_verify_signature_without_key(signing_key):
    result = verify_signature("hello\n", None, sign_content("hello\n", signing_key))
    assert result.status == VerifyStatus.UNVERIFIABLE


def test_verify_signature_without_signature(signing_key):
    result = verify_signature("hello\n", signing_key.public_key(), None)
    assert result.status == VerifyStatus.UNVERIFIABLE


def test_verify_signature_malformed_is_unverifiable(signing_key):
    """A container that doesn't parse is not reported as tampering."""
    result = verify_signature("hello\n", signing_key.public_key(), "bm90IGEgc2lnbmF0dXJl")
    assert result.status == VerifyStatus.UNVERIFIABLE


# =============================================================================
# Hashes
# =============================================================================


def test_verify_hash_states():
    body = "# Hello\n"
    assert verify_hash(body, content_hash(body)) == HashStatus.VALID
    assert verify_hash("\n\n# Hello  \n\n", content_hash(body)) == HashStatus.VALID
    assert verify_hash("# Changed\n", content_hash(body)) == HashStatus.MISMATCH
    assert verify_hash(body, "") == HashStatus.UNKNOWN


def test_verify_hash_accepts_raw_body():
    """Bodies hashed without canonicalization still match."""
    raw = "\nHello   \n\n"
    legacy = "sha256:" + hashlib.sha256(b"Hello   \n\n").hexdigest()
    assert verify_hash(raw, legacy) == HashStatus.VALID


# =============================================================================
# Documents
# =============================================================================


def test_verify_document_valid(signing_key):
    text = make_document(signing_key)
    report = verify_document(text, signing_key.public_key(), source="posts/hello.md")

    assert report.valid
    assert report.type == "post"
    assert report.title == "Hello"
    assert report.body == "# Hello\n\nWorld\n"
    assert report.issues == []
    assert report.to_dict()["signature"]["status"] == "valid"


def test_verify_document_accepts_public_key_line(signing_key):
    text = make_document(signing_key)
    line = signing_key.public_key().to_openssh("alice@example.com")
    assert verify_document(text, line).signature.valid


def test_tampered_body_is_detected(signing_key):
    text = make_document(signing_key).replace("World", "Mallory")
    report = verify_document(text, signing_key.public_key())

    assert report.signature.status == VerifyStatus.INVALID
    assert report.hash_status == HashStatus.MISMATCH
    assert not report.valid


def test_tampered_frontmatter_is_detected(signing_key):
    text = make_document(signing_key).replace("title: Hello", "title: Goodbye")
    report = verify_document(text, signing_key.public_key())

    assert report.signature.status == VerifyStatus.INVALID
    assert report.hash_status == HashStatus.VALID


def test_whitespace_noise_does_not_break_signature(signing_key):
    """Trailing spaces and CRLF line endings canonicalize away."""
    text = make_document(signing_key).replace("\n", "\r\n").replace("World", "World   ")
    assert verify_document(text, signing_key.public_key()).valid


def test_unsigned_document(signing_key):
    text = render_document(Frontmatter(title="T", published="p", current_version=content_hash("x\n")), "x\n")
    report = verify_document(text, signing_key.public_key())

    assert report.signature.status == VerifyStatus.UNVERIFIABLE
    assert "missing_signature" in report.issues


def test_comment_without_reply_target(signing_key):
    text = make_document(signing_key, type="comment")
    report = verify_document(text, signing_key.public_key())

    assert report.type == "comment"
    assert "missing_in_reply_to" in report.issues


def test_document_without_frontmatter():
    with pytest.raises(ValueError):
        verify_document("# Just markdown\n", None)


# =============================================================================
# History audit
# =============================================================================


def linear_history(versions):
    hashes = [content_hash(v) for v in versions]
    history = HistoryFile(canonical_file="doc.md", current_hash=hashes[-1])
    history.add_entry(VersionEntry(hash=hashes[0], timestamp="t0", full_content=versions[0]))
    for i in range(1, len(versions)):
        history.add_entry(VersionEntry(
            hash=hashes[i], timestamp=f"t{i}", parent=hashes[i - 1],
            diff=compute_diff(versions[i - 1], versions[i]),
        ))
    return history


def test_verify_history_intact():
    result = verify_history(linear_history(["a\n", "a\nb\n", "a\nb\nc\n"]))
    assert result.valid
    assert result.message == "History intact: 3 version(s)"
    assert result.details["count"] == 3


def test_verify_history_detects_modified_base():
    history = linear_history(["a\n", "a\nb\n"])
    history.entries[0].full_content = "A\n"

    result = verify_history(history)
    assert result.status == VerifyStatus.INVALID
    assert result.details["errors"]


def test_verify_history_detects_missing_parent():
    history = linear_history(["a\n", "a\nb\n"])
    orphan = VersionEntry(hash=content_hash("z\n"), timestamp="t", parent="sha256:" + "f" * 64, diff="")
    history.add_entry(orphan)

    result = verify_history(history)
    assert not result.valid
    assert any("not found" in e["error"] for e in result.details["errors"])


def test_verify_history_unknown_current_hash():
    history = linear_history(["a\n"])
    history.current_hash = "sha256:" + "0" * 64
    assert not verify_history(history).valid


def test_verify_history_reports_duplicates():
    versions = ["a\n", "a\nb\n", "a\n"]
    history = linear_history(versions)
    result = verify_history(history)

    assert result.valid
    assert result.details["duplicates"] == [content_hash("a\n")]


def test_verify_history_parsed_from_text():
    from inkseal.history import parse_history

    history = parse_history(format_history(linear_history(["x\n", "x\ny\n"])))
    assert verify_history(history).valid
