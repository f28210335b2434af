# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""Tests for publishing and republishing documents."""

import pytest

from inkseal.config import SiteConfig
from inkseal.crypto import SigningKey, canonicalize, content_hash
from inkseal.document import render_document, split_document
from inkseal.history import HistoryStore
from inkseal.publish import Publisher
from inkseal.types import HashStatus, VerifyStatus
from inkseal.verify import verify_document, verify_history


@pytest.fixture
def signing_key():
    """Generate a fresh signing key for tests."""
    return SigningKey.generate(comment="test-key")


@pytest.fixture
def site_config(tmp_path):
    """Site rooted in a temp directory."""
    return SiteConfig(root=str(tmp_path), generator="inkseal/test")


@pytest.fixture
def publisher(site_config, signing_key):
    return Publisher(site_config, signing_key)


# =============================================================================
# Publish
# =============================================================================


@pytest.mark.asyncio
async def test_publish_writes_signed_document(publisher, signing_key, tmp_path):
    result = await publisher.publish("# Hello\n\nFirst post.  \r\n\n", "posts/hello.md", "2025-01-15T10:30:00Z")

    body = "# Hello\n\nFirst post.\n"
    assert result.title == "Hello"
    assert result.version == content_hash(body)
    assert result.timestamp == "2025-01-15T10:30:00Z"

    text = (tmp_path / "posts" / "hello.md").read_text()
    frontmatter, raw_body = split_document(text)
    assert canonicalize(raw_body) == body
    assert frontmatter.title == "Hello"
    assert frontmatter.published == "2025-01-15T10:30:00Z"
    assert frontmatter.generator == "inkseal/test"
    assert frontmatter.current_version == result.version
    assert frontmatter.version_history == [f"{result.version} (2025-01-15T10:30:00Z)"]

    report = verify_document(text, signing_key.public_key())
    assert report.signature.status == VerifyStatus.VALID
    assert report.hash_status == HashStatus.VALID
    assert report.issues == []


@pytest.mark.asyncio
async def test_publish_document_layout(publisher, tmp_path):
    """Frontmatter, one blank line, then the canonical body."""
    result = await publisher.publish("Just text", "note.md", "2025-01-15T10:30:00Z")
    text = (tmp_path / "note.md").read_text()

    frontmatter, _ = split_document(text)
    assert text == render_document(frontmatter, "Just text\n")
    assert text.endswith("---\n\nJust text\n")
    assert f"signature: {frontmatter.signature}\n" in text
    assert result.title == "Just text"


@pytest.mark.asyncio
async def test_publish_records_history(publisher, site_config):
    result = await publisher.publish("# Hello\n", "posts/hello.md")

    store = HistoryStore(site_config)
    history = await store.load("posts/hello.md")
    assert history.current_hash == result.version
    assert history.entries[0].full_content == "# Hello\n"


@pytest.mark.asyncio
async def test_publish_drops_source_frontmatter(publisher, tmp_path):
    await publisher.publish("---\ntitle: Draft\nsignature: forged\n---\n\n# Real\n", "a.md")
    frontmatter, body = split_document((tmp_path / "a.md").read_text())
    assert frontmatter.title == "Real"
    assert frontmatter.signature != "forged"
    assert canonicalize(body) == "# Real\n"


@pytest.mark.asyncio
async def test_publish_refuses_to_overwrite(publisher):
    await publisher.publish("# One\n", "a.md")
    with pytest.raises(FileExistsError):
        await publisher.publish("# Two\n", "a.md")


@pytest.mark.asyncio
async def test_publish_comment(publisher, signing_key, tmp_path):
    await publisher.publish(
        "Nice post!",
        "comments/reply.md",
        in_reply_to="https://bob.example/posts/hello.md",
        in_reply_to_version="sha256:" + "0" * 64,
    )
    text = (tmp_path / "comments" / "reply.md").read_text()
    frontmatter, _ = split_document(text)

    assert frontmatter.type == "comment"
    assert frontmatter.in_reply_to == "https://bob.example/posts/hello.md"
    assert frontmatter.in_reply_to_version == "sha256:" + "0" * 64

    report = verify_document(text, signing_key.public_key())
    assert report.type == "comment"
    assert report.signature.valid


# =============================================================================
# Republish
# =============================================================================


@pytest.mark.asyncio
async def test_republish_updates_document_and_history(publisher, signing_key, site_config, tmp_path):
    first = await publisher.publish("# Hello\n\nv1\n", "posts/hello.md", "2025-01-15T10:30:00Z")
    second = await publisher.republish("posts/hello.md", "# Hello\n\nv2\n", "2025-01-16T08:00:00Z")

    assert second.previous_version == first.version
    assert second.version == content_hash("# Hello\n\nv2\n")

    text = (tmp_path / "posts" / "hello.md").read_text()
    frontmatter, _ = split_document(text)
    assert frontmatter.published == "2025-01-15T10:30:00Z"
    assert frontmatter.updated == "2025-01-16T08:00:00Z"
    assert frontmatter.history_hashes() == [first.version, second.version]
    assert verify_document(text, signing_key.public_key()).valid

    store = HistoryStore(site_config)
    assert await store.reconstruct("posts/hello.md", first.version) == "# Hello\n\nv1\n"
    assert verify_history(await store.load("posts/hello.md")).valid


@pytest.mark.asyncio
async def test_republish_keeps_reply_metadata(publisher, tmp_path):
    await publisher.publish("Reply", "c.md", in_reply_to="https://bob.example/p.md")
    await publisher.republish("c.md", "Reply, edited")

    frontmatter, _ = split_document((tmp_path / "c.md").read_text())
    assert frontmatter.type == "comment"
    assert frontmatter.in_reply_to == "https://bob.example/p.md"


@pytest.mark.asyncio
async def test_republish_missing_document(publisher):
    with pytest.raises(FileNotFoundError):
        await publisher.republish("missing.md", "# Hi\n")


@pytest.mark.asyncio
async def test_republish_requires_frontmatter(publisher, tmp_path):
    (tmp_path / "plain.md").write_text("# Plain\n")
    with pytest.raises(ValueError):
        await publisher.republish("plain.md", "# Plain v2\n")


@pytest.mark.asyncio
async def test_republish_without_history_starts_one(publisher, site_config, tmp_path):
    await publisher.publish("# Hello\n", "a.md")
    HistoryStore(site_config).history_path("a.md").unlink()

    result = await publisher.republish("a.md", "# Hello again\n")
    history = await HistoryStore(site_config).load("a.md")
    assert len(history) == 1
    assert history.entries[0].hash == result.version
