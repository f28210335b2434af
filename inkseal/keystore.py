# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
On-disk storage of the site's Ed25519 key pair.

Files (under <root>/<keys_dir>):
- id_ed25519       OpenSSH private key, mode 0600
- id_ed25519.pub   "ssh-ed25519 <base64> <comment>"

Both are OpenSSH formats, so `ssh-keygen -Y sign -f id_ed25519 -n file`
works on the same key.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .config import SiteConfig
from .crypto import SigningKey, VerifyingKey, write_file_atomic

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".old"


@dataclass
class RotationResult:
    """Outcome of a key rotation."""
    public_key: str
    fingerprint: str
    old_fingerprint: str | None
    backed_up: bool
    backup_path: Path | None = None


class KeyStore:
    """
    Manages the key pair at config.private_key_path / config.public_key_path.

    Usage:
        store = KeyStore(SiteConfig(root="./site"))
        if not store.exists():
            store.generate()
        key = store.load()
    """

    def __init__(self, config: SiteConfig | None = None):
        self.config = config or SiteConfig()

    @property
    def private_key_path(self) -> Path:
        return self.config.private_key_path

    @property
    def public_key_path(self) -> Path:
        return self.config.public_key_path

    def exists(self) -> bool:
        return self.private_key_path.exists()

    def generate(self, overwrite: bool = False) -> SigningKey:
        """
        Generate and save a new key pair.

        Raises:
            FileExistsError: If a private key exists and overwrite is False
        """
        if self.exists() and not overwrite:
            raise FileExistsError(f"Key already exists: {self.private_key_path}")

        key = SigningKey.generate(comment=self.config.key_comment)
        self._save(key)
        logger.info(f"Generated key {key.public_key().fingerprint()} at {self.private_key_path}")
        return key

    def _save(self, key: SigningKey) -> None:
        self.private_key_path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self.private_key_path.parent, 0o700)
        key.save_to_file(self.private_key_path)
        write_file_atomic(
            self.public_key_path,
            key.public_key().to_openssh(self.config.key_comment).encode("utf-8"),
            mode=0o644,
        )

    def load(self) -> SigningKey:
        """
        Load the private key.

        Raises:
            FileNotFoundError: If no key has been generated
            MalformedKey: If the file is not an unencrypted Ed25519 OpenSSH key
        """
        return SigningKey.from_file(self.private_key_path, comment=self.config.key_comment)

    def load_public(self) -> VerifyingKey:
        """Load the public key line."""
        return VerifyingKey.from_file(self.public_key_path)

    def rotate(self, delete_old: bool = False) -> RotationResult:
        """
        Replace the key pair with a fresh one.

        The old pair is renamed to *.old unless delete_old is set. Content
        signed with the old key must be republished to carry the new
        signature.
        """
        old_fingerprint = None
        backup_path = None
        if self.exists():
            try:
                old_fingerprint = self.load().public_key().fingerprint()
            except ValueError as e:
                logger.warning(f"Existing key at {self.private_key_path} is unreadable: {e}")

            if delete_old:
                self.private_key_path.unlink()
                self.public_key_path.unlink(missing_ok=True)
                logger.info("Old key deleted")
            else:
                backup_path = self.private_key_path.with_name(self.private_key_path.name + BACKUP_SUFFIX)
                self.private_key_path.replace(backup_path)
                if self.public_key_path.exists():
                    self.public_key_path.replace(
                        self.public_key_path.with_name(self.public_key_path.name + BACKUP_SUFFIX)
                    )
                logger.info(f"Old key backed up to {backup_path}")

        key = self.generate(overwrite=True)
        verifying = key.public_key()
        return RotationResult(
            public_key=verifying.to_openssh(self.config.key_comment).strip(),
            fingerprint=verifying.fingerprint(),
            old_fingerprint=old_fingerprint,
            backed_up=backup_path is not None,
            backup_path=backup_path,
        )
