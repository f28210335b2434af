# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""Tests for history logs and version reconstruction."""

import os

import pytest

from inkseal.config import SiteConfig
from inkseal.crypto import content_hash
from inkseal.errors import HistoryFormatError, ReconstructionError, VersionNotFound
from inkseal.history import (
    HistoryStore,
    format_history,
    parse_history,
    reconstruct_backward,
    reconstruct_content,
    reconstruct_forward,
    replace_current_hash,
)
from inkseal.patch import compute_diff
from inkseal.types import HistoryFile, VersionEntry

V0 = "Hello\n"
V1 = "Hello\nWorld\n"
H0 = content_hash(V0)
H1 = content_hash(V1)


@pytest.fixture
def site_config(tmp_path):
    """Site rooted in a temp directory."""
    return SiteConfig(root=str(tmp_path))


@pytest.fixture
def store(site_config):
    return HistoryStore(site_config)


def build_history(versions, canonical_file="posts/doc.md"):
    """Linear HistoryFile over a list of canonical bodies."""
    hashes = [content_hash(v) for v in versions]
    history = HistoryFile(canonical_file=canonical_file, current_hash=hashes[-1])
    history.add_entry(VersionEntry(hash=hashes[0], timestamp="2025-01-01T00:00:00Z", full_content=versions[0]))
    for i in range(1, len(versions)):
        history.add_entry(VersionEntry(
            hash=hashes[i],
            timestamp=f"2025-01-0{i + 1}T00:00:00Z",
            parent=hashes[i - 1],
            diff=compute_diff(versions[i - 1], versions[i]),
        ))
    return history, hashes


# =============================================================================
# Store
# =============================================================================


@pytest.mark.asyncio
async def test_two_version_scenario_file_layout(store, tmp_path):
    """The on-disk log has the exact documented layout."""
    await store.init_history("posts/hello.md", H0, V0, "2025-01-15T10:30:00Z")
    await store.append_version("posts/hello.md", H1, V1, "2025-01-16T08:00:00Z")

    text = (tmp_path / "posts" / ".versions" / "hello.md").read_text()
    assert text == (
        "# VERSION_FILE_FORMAT=1.0\n"
        "# CANONICAL_FILE=posts/hello.md\n"
        f"# CURRENT_HASH={H1}\n"
        "\n"
        f"[VERSION {H0}]\n"
        "TIMESTAMP=2025-01-15T10:30:00Z\n"
        "PARENT=none\n"
        "FULL_CONTENT_START\n"
        "Hello\n"
        "FULL_CONTENT_END\n"
        "\n"
        f"[VERSION {H1}]\n"
        "TIMESTAMP=2025-01-16T08:00:00Z\n"
        f"PARENT={H0}\n"
        "DIFF_START\n"
        "--- a/hello.md\n"
        "+++ b/hello.md\n"
        "@@ -1 +1,2 @@\n"
        " Hello\n"
        "+World\n"
        "DIFF_END\n"
        "\n"
    )


@pytest.mark.asyncio
async def test_reconstruct_both_versions(store):
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)

    assert await store.reconstruct("hello.md", H0) == V0
    assert await store.reconstruct("hello.md", H1) == V1


@pytest.mark.asyncio
async def test_reconstruct_backward_with_live_file(store, tmp_path):
    """With the live file in sync, old versions come from undoing diffs."""
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)
    (tmp_path / "hello.md").write_text("---\ntitle: Hello\n---\n\n" + V1)

    history = await store.load("hello.md")
    assert reconstruct_backward(history, V1, H0) == V0
    assert await store.reconstruct("hello.md", H0) == V0


@pytest.mark.asyncio
async def test_desynced_live_file_falls_back_to_forward(store, tmp_path):
    """A live file that no longer matches CURRENT_HASH doesn't break reconstruction."""
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)
    (tmp_path / "hello.md").write_text("Edited by hand\n")

    assert await store.reconstruct("hello.md", H0) == V0


@pytest.mark.asyncio
async def test_init_history_twice_fails(store):
    await store.init_history("hello.md", H0, V0)
    with pytest.raises(FileExistsError):
        await store.init_history("hello.md", H0, V0)


@pytest.mark.asyncio
async def test_append_without_history_fails(store):
    with pytest.raises(FileNotFoundError):
        await store.append_version("missing.md", H1, V1)


@pytest.mark.asyncio
async def test_log_is_synced_before_rename(store, tmp_path, monkeypatch):
    """The temp file reaches the disk before it replaces the log."""
    real_fsync = os.fsync
    synced = []

    def recording_fsync(fd):
        synced.append(fd)
        real_fsync(fd)

    monkeypatch.setattr("inkseal.history.os.fsync", recording_fsync)
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)

    assert len(synced) == 2
    assert (tmp_path / ".versions" / "hello.md").exists()
    assert not list((tmp_path / ".versions").glob("*.tmp"))


@pytest.mark.asyncio
async def test_tampered_diff_is_not_returned(store, tmp_path):
    """Replayed content that doesn't hash to the requested version is an error."""
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)
    log = tmp_path / ".versions" / "hello.md"
    log.write_text(log.read_text().replace("+World", "+Wxrld"))

    with pytest.raises(ReconstructionError):
        await store.reconstruct("hello.md", H1)
    with pytest.raises(ReconstructionError):
        reconstruct_forward(await store.load("hello.md"), H1)
    assert await store.reconstruct("hello.md", H0) == V0


@pytest.mark.asyncio
async def test_append_back_to_earlier_body_keeps_first_entry(store):
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)
    entry = await store.append_version("hello.md", content_hash(V0), V0)
    assert entry.parent == H1

    history = await store.load("hello.md")
    assert len(history) == 3
    assert history.current_hash == H0
    # The duplicate hash resolves to the first entry
    assert history.get(H0).is_root


@pytest.mark.asyncio
async def test_many_appends_preserve_every_version(store):
    versions = ["# Title\n", "# Title\n\nBody\n", "# Title\n\nBody edited\n", "# New title\n\nBody edited\n"]
    await store.init_history("doc.md", content_hash(versions[0]), versions[0])
    for body in versions[1:]:
        await store.append_version("doc.md", content_hash(body), body)

    for body in versions:
        assert await store.reconstruct("doc.md", content_hash(body)) == body


@pytest.mark.asyncio
async def test_reconstruct_unknown_hash(store):
    await store.init_history("hello.md", H0, V0)
    with pytest.raises(VersionNotFound):
        await store.reconstruct("hello.md", content_hash("never\n"))


def test_history_path_layout(store, tmp_path):
    assert store.history_path("posts/2025/hello.md") == tmp_path / "posts" / "2025" / ".versions" / "hello.md"
    assert store.history_path("top.md") == tmp_path / ".versions" / "top.md"


# =============================================================================
# Codec
# =============================================================================


def test_format_parse_round_trip():
    history, hashes = build_history([V0, V1, "Hello\nWorld\n!\n"])
    parsed = parse_history(format_history(history))

    assert parsed.canonical_file == "posts/doc.md"
    assert parsed.current_hash == hashes[-1]
    assert [e.hash for e in parsed.entries] == hashes
    assert parsed.entries[0].full_content == V0
    assert parsed.entries[1].diff == history.entries[1].diff


def test_block_body_may_contain_markers():
    """Only the matching END line closes a block."""
    body = "[VERSION sha256:fake]\nPARENT=none\nDIFF_END\n# CURRENT_HASH=nope\n"
    history = HistoryFile(canonical_file="x.md", current_hash=content_hash(body))
    history.add_entry(VersionEntry(hash=content_hash(body), timestamp="t", full_content=body))

    parsed = parse_history(format_history(history))
    assert len(parsed.entries) == 1
    assert parsed.entries[0].full_content == body
    assert parsed.current_hash == content_hash(body)


def test_header_lines_after_first_version_are_ignored():
    history, _ = build_history([V0])
    text = format_history(history) + "# CURRENT_HASH=sha256:other\n"
    assert parse_history(text).current_hash == H0


def test_parse_missing_current_hash():
    with pytest.raises(HistoryFormatError):
        parse_history("# VERSION_FILE_FORMAT=1.0\n\n")


def test_parse_unclosed_block():
    text = f"# CURRENT_HASH={H0}\n\n[VERSION {H0}]\nPARENT=none\nFULL_CONTENT_START\nHello\n"
    with pytest.raises(HistoryFormatError):
        parse_history(text)


def test_parse_entry_without_parent():
    text = f"# CURRENT_HASH={H0}\n\n[VERSION {H0}]\nFULL_CONTENT_START\nHello\nFULL_CONTENT_END\n"
    with pytest.raises(HistoryFormatError):
        parse_history(text)


def test_replace_current_hash_touches_only_header():
    history, _ = build_history([V0, V1])
    text = format_history(history)
    updated = replace_current_hash(text, "sha256:new")
    assert updated.replace("sha256:new", H1, 1) == text


# =============================================================================
# Reconstruction strategies
# =============================================================================


def test_strategies_agree_on_linear_history():
    versions = ["a\n", "a\nb\n", "a\nB\n", "x\na\nB\n", "x\na\nB\ny\n"]
    history, hashes = build_history(versions)

    for body, h in zip(versions, hashes):
        assert reconstruct_forward(history, h) == body
        assert reconstruct_backward(history, versions[-1], h) == body
        assert reconstruct_content(history, h, versions[-1]) == body


def test_backward_rejects_desynced_live_body():
    history, hashes = build_history([V0, V1])
    with pytest.raises(ReconstructionError):
        reconstruct_backward(history, "something else\n", hashes[0])


def test_backward_cannot_reach_sibling_branch():
    """Backward walks parents only; forward BFS reaches any branch."""
    base, left, right = "base\n", "base\nleft\n", "base\nright\n"
    h_base, h_left, h_right = content_hash(base), content_hash(left), content_hash(right)
    history = HistoryFile(canonical_file="x.md", current_hash=h_left)
    history.add_entry(VersionEntry(hash=h_base, timestamp="t0", full_content=base))
    history.add_entry(VersionEntry(hash=h_right, timestamp="t1", parent=h_base, diff=compute_diff(base, right)))
    history.add_entry(VersionEntry(hash=h_left, timestamp="t2", parent=h_base, diff=compute_diff(base, left)))

    with pytest.raises(VersionNotFound):
        reconstruct_backward(history, left, h_right)
    assert reconstruct_forward(history, h_right) == right
    assert reconstruct_content(history, h_right, left) == right


def test_forward_without_root():
    history = HistoryFile(canonical_file="x.md", current_hash=H1)
    history.add_entry(VersionEntry(hash=H1, timestamp="t", parent=H0, diff=compute_diff(V0, V1)))
    with pytest.raises(VersionNotFound):
        reconstruct_forward(history, H1)


def test_root_returned_without_replay():
    history, hashes = build_history([V0, V1])
    assert reconstruct_content(history, hashes[0]) == V0


def test_path_between_and_ancestry():
    versions = ["1\n", "1\n2\n", "1\n2\n3\n"]
    history, hashes = build_history(versions)
    assert history.path_between(hashes[0], hashes[2]) == hashes
    assert history.path_between(hashes[2], hashes[0]) is None
    assert history.ancestry(hashes[2]) == list(reversed(hashes))
    assert history.children(hashes[0]) == [hashes[1]]


@pytest.mark.asyncio
async def test_append_identical_body_records_empty_diff(store):
    await store.init_history("hello.md", H0, V0)
    await store.append_version("hello.md", H1, V1)
    entry = await store.append_version("hello.md", H1, V1)
    assert entry.diff == ""
    assert await store.reconstruct("hello.md", H1) == V1
