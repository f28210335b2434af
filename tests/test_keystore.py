# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""Tests for on-disk key storage and rotation."""

import os
import stat

import pytest

from inkseal.config import SiteConfig
from inkseal.crypto import sign_content, verify_content
from inkseal.keystore import KeyStore


@pytest.fixture
def store(tmp_path):
    return KeyStore(SiteConfig(root=str(tmp_path), key_comment="alice@example.com"))


def test_generate_writes_both_files(store):
    key = store.generate()

    assert store.exists()
    assert stat.S_IMODE(os.stat(store.private_key_path).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(store.private_key_path.parent).st_mode) == 0o700

    line = store.public_key_path.read_text()
    assert line.startswith("ssh-ed25519 ")
    assert line.endswith(" alice@example.com\n")
    assert store.load_public().to_bytes() == key.public_key().to_bytes()


def test_generate_refuses_to_overwrite(store):
    store.generate()
    with pytest.raises(FileExistsError):
        store.generate()


def test_generate_overwrite(store):
    first = store.generate()
    second = store.generate(overwrite=True)
    assert first.seed_bytes() != second.seed_bytes()


def test_load_round_trip(store):
    key = store.generate()
    loaded = store.load()
    signature = sign_content("hello\n", loaded)
    assert verify_content("hello\n", key.public_key(), signature)


def test_load_missing_key(store):
    with pytest.raises(FileNotFoundError):
        store.load()


def test_rotate_backs_up_old_key(store):
    old = store.generate()
    result = store.rotate()

    assert result.backed_up
    assert result.old_fingerprint == old.public_key().fingerprint()
    assert result.fingerprint != result.old_fingerprint
    assert result.backup_path.exists()
    assert store.private_key_path.with_name("id_ed25519.pub.old").exists()
    assert store.load().public_key().fingerprint() == result.fingerprint


def test_rotate_delete_old(store):
    store.generate()
    result = store.rotate(delete_old=True)

    assert not result.backed_up
    assert result.backup_path is None
    assert not store.private_key_path.with_name("id_ed25519.old").exists()
    assert store.exists()


def test_rotate_without_existing_key(store):
    result = store.rotate()
    assert result.old_fingerprint is None
    assert not result.backed_up
    assert store.exists()
