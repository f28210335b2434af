# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Cryptographic primitives for inkseal.

Provides:
- Canonicalization (the single byte form every hash and signature uses)
- Content addressing (SHA-256, rendered as "sha256:<hex>")
- Ed25519 signing and verification with OpenSSH key files
- SSHSIG signatures compatible with `ssh-keygen -Y sign/verify -n file`

Security model:
- The signature covers the SSHSIG signing blob built from the canonical
  content, never the raw content. The blob embeds SHA-512(content); the
  SHA-256 content hash is only used for addressing.
- A signature that parses but does not match is reported as False.
  VerificationError is reserved for containers that cannot be parsed.
"""

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from . import sshformat
from .errors import MalformedKey, SigningError, VerificationError

logger = logging.getLogger(__name__)

HASH_PREFIX = "sha256:"


# =============================================================================
# Canonicalization
# =============================================================================

def canonicalize(text: str | bytes) -> str:
    """
    Normalize text into its canonical form.

    Rules (applied in this order):
    - CRLF and lone CR become LF
    - Each line is right-trimmed of spaces, tabs and CR
    - Leading and trailing blank lines are dropped
    - Non-empty output ends with exactly one "\\n"; empty input stays empty

    The function is total and idempotent: canonicalize(canonicalize(x)) == canonicalize(x).

    Example:
        >>> canonicalize("\\n\\nHello  \\r\\nWorld\\t\\n\\n\\n")
        'Hello\\nWorld\\n'
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8")

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip(" \t\r") for line in text.split("\n")]

    start = 0
    while start < len(lines) and lines[start] == "":
        start += 1
    end = len(lines)
    while end > start and lines[end - 1] == "":
        end -= 1

    if start == end:
        return ""
    return "\n".join(lines[start:end]) + "\n"


def canonical_bytes(text: str | bytes) -> bytes:
    """UTF-8 bytes of the canonical form."""
    return canonicalize(text).encode("utf-8")


# =============================================================================
# Content addressing
# =============================================================================

def content_hash(canonical: str | bytes) -> str:
    """
    Content identifier of already-canonical content.

    The caller canonicalizes first; this function hashes exactly the bytes
    it is given.

    Returns:
        "sha256:" followed by 64 lowercase hex characters
    """
    if isinstance(canonical, str):
        canonical = canonical.encode("utf-8")
    return HASH_PREFIX + hashlib.sha256(canonical).hexdigest()


def hash_text(text: str | bytes) -> str:
    """Canonicalize then hash."""
    return content_hash(canonical_bytes(text))


def parse_content_hash(value: str) -> str:
    """
    Validate a content identifier and return its hex digest.

    Raises:
        ValueError: If the prefix is missing or the digest is not 64 hex chars
    """
    if not value.startswith(HASH_PREFIX):
        raise ValueError(f"content hash must start with {HASH_PREFIX!r}: {value!r}")
    digest = value[len(HASH_PREFIX):]
    if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
        raise ValueError(f"content hash digest must be 64 lowercase hex chars: {value!r}")
    return digest


# =============================================================================
# Ed25519 keys
# =============================================================================

@dataclass
class SigningKey:
    """Ed25519 signing key (private key) with OpenSSH import/export."""
    _private_key: Ed25519PrivateKey
    comment: str = ""
    created_at: str = ""

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    @classmethod
    def generate(cls, comment: str = "") -> "SigningKey":
        """Generate a new key from the system CSPRNG."""
        return cls(_private_key=Ed25519PrivateKey.generate(), comment=comment)

    @classmethod
    def from_seed_bytes(cls, seed: bytes, comment: str = "") -> "SigningKey":
        """
        Load a signing key from a 32-byte Ed25519 seed.

        Raises:
            MalformedKey: If seed is not exactly 32 bytes
        """
        if len(seed) != 32:
            raise MalformedKey(f"Ed25519 seed must be exactly 32 bytes, got {len(seed)}")
        return cls(_private_key=Ed25519PrivateKey.from_private_bytes(seed), comment=comment)

    @classmethod
    def from_private_bytes(cls, private_key: bytes, comment: str = "") -> "SigningKey":
        """
        Load from the 64-byte OpenSSH form (seed followed by public key).

        Raises:
            MalformedKey: If the length is wrong or the public half does not
                belong to the seed
        """
        if len(private_key) != sshformat.ED25519_PRIVATE_KEY_SIZE:
            raise MalformedKey(
                f"Ed25519 private key must be {sshformat.ED25519_PRIVATE_KEY_SIZE} bytes, "
                f"got {len(private_key)}"
            )
        key = cls.from_seed_bytes(private_key[:32], comment=comment)
        if key.public_key().to_bytes() != private_key[32:]:
            raise MalformedKey("public key half does not match seed")
        return key

    @classmethod
    def from_openssh(cls, pem_data: str | bytes, comment: str = "") -> "SigningKey":
        """
        Load from an "OPENSSH PRIVATE KEY" PEM block.

        Raises:
            MalformedKey: If the container does not parse
        """
        return cls.from_private_bytes(sshformat.decode_private_key(pem_data), comment=comment)

    @classmethod
    def from_file(cls, path: str | Path, comment: str = "") -> "SigningKey":
        """
        Load from an OpenSSH private key file.

        Raises:
            FileNotFoundError: If file doesn't exist
            MalformedKey: If the file is not an unencrypted Ed25519 OpenSSH key
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        return cls.from_openssh(path.read_bytes(), comment=comment)

    def seed_bytes(self) -> bytes:
        """Raw 32-byte seed."""
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def private_bytes(self) -> bytes:
        """64-byte seed||public form stored in OpenSSH containers."""
        return self.seed_bytes() + self.public_key().to_bytes()

    def to_openssh(self, check: bytes | None = None) -> str:
        """Export as an "OPENSSH PRIVATE KEY" PEM (empty inner comment)."""
        return sshformat.encode_private_key(self.private_bytes(), check=check)

    def save_to_file(self, path: str | Path) -> Path:
        """
        Write the OpenSSH PEM atomically with mode 0600.

        Returns:
            Path to saved file
        """
        return write_file_atomic(path, self.to_openssh().encode("ascii"), mode=0o600)

    def sign(self, data: bytes) -> bytes:
        """Raw 64-byte Ed25519 signature over data."""
        return self._private_key.sign(data)

    def public_key(self) -> "VerifyingKey":
        """Get the corresponding public key."""
        return VerifyingKey(_public_key=self._private_key.public_key(), comment=self.comment)


@dataclass
class VerifyingKey:
    """Ed25519 verifying key (public key)."""
    _public_key: Ed25519PublicKey
    comment: str = ""

    @classmethod
    def from_bytes(cls, public_bytes: bytes, comment: str = "") -> "VerifyingKey":
        """
        Load from a raw 32-byte public key.

        Raises:
            MalformedKey: If the key is not 32 bytes
        """
        if len(public_bytes) != sshformat.ED25519_PUBLIC_KEY_SIZE:
            raise MalformedKey(
                f"Ed25519 public key must be {sshformat.ED25519_PUBLIC_KEY_SIZE} bytes, "
                f"got {len(public_bytes)}"
            )
        return cls(_public_key=Ed25519PublicKey.from_public_bytes(public_bytes), comment=comment)

    @classmethod
    def from_openssh(cls, line: str | bytes) -> "VerifyingKey":
        """Load from an "ssh-ed25519 <base64> [comment]" line."""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        raw = sshformat.decode_public_key(line)
        return cls.from_bytes(raw, comment=sshformat.public_key_comment(line.strip()))

    @classmethod
    def from_file(cls, path: str | Path) -> "VerifyingKey":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        return cls.from_openssh(path.read_text(encoding="utf-8"))

    def to_bytes(self) -> bytes:
        """Export public key as raw bytes (32 bytes)."""
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def to_openssh(self, comment: str | None = None) -> str:
        """One-line OpenSSH form, newline-terminated."""
        return sshformat.encode_public_key(
            self.to_bytes(), comment=self.comment if comment is None else comment
        )

    def fingerprint(self) -> str:
        return sshformat.fingerprint(self.to_bytes())

    def verify(self, signature: bytes, data: bytes) -> bool:
        """
        Check a raw Ed25519 signature.

        Returns:
            True if signature is valid, False otherwise
        """
        try:
            self._public_key.verify(signature, data)
            return True
        except InvalidSignature:
            return False


def generate_keypair(comment: str = "") -> tuple[str, str]:
    """
    Generate a fresh key pair in OpenSSH text form.

    Returns:
        Tuple of (private_key_pem, public_key_line)
    """
    key = SigningKey.generate(comment=comment)
    return key.to_openssh(), key.public_key().to_openssh(comment)


# =============================================================================
# Sign / verify
# =============================================================================

def _as_bytes(content: str | bytes) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


def sign_content(content: str | bytes, private_key: "SigningKey | str | bytes") -> str:
    """
    Sign already-canonical content and return an "SSH SIGNATURE" PEM.

    Args:
        content: Canonical content (the caller canonicalizes)
        private_key: SigningKey, or OpenSSH private key PEM

    Raises:
        SigningError: If the private key cannot be decoded
    """
    if not isinstance(private_key, SigningKey):
        try:
            private_key = SigningKey.from_openssh(private_key)
        except MalformedKey as e:
            raise SigningError(f"failed to decode private key: {e}") from e

    blob = sshformat.build_signing_blob(_as_bytes(content))
    raw_signature = private_key.sign(blob)
    return sshformat.encode_signature(private_key.public_key().to_bytes(), raw_signature)


def verify_content(
    content: str | bytes,
    public_key: "VerifyingKey | str | bytes",
    signature: str | bytes,
) -> bool:
    """
    Verify an SSHSIG signature over already-canonical content.

    The key used is the one supplied by the caller; the key embedded in the
    signature container must match it.

    Args:
        content: Canonical content
        public_key: VerifyingKey or "ssh-ed25519 ..." line
        signature: PEM block or its bare base64 body

    Returns:
        True if valid; False on a cryptographic mismatch, a different
        embedded key, or a namespace other than "file"

    Raises:
        VerificationError: If the signature or public key cannot be parsed
    """
    if not isinstance(public_key, VerifyingKey):
        try:
            public_key = VerifyingKey.from_openssh(public_key)
        except MalformedKey as e:
            raise VerificationError(f"invalid public key: {e}") from e

    parsed = sshformat.decode_signature(signature)

    if parsed.namespace != sshformat.SIG_NAMESPACE:
        logger.debug(f"Signature namespace {parsed.namespace!r} is not {sshformat.SIG_NAMESPACE!r}")
        return False
    if parsed.public_key != public_key.to_bytes():
        logger.debug("Signature was made by a different key")
        return False

    blob = sshformat.build_signing_blob(_as_bytes(content))
    return public_key.verify(parsed.signature, blob)


# =============================================================================
# File helpers
# =============================================================================

def write_file_atomic(path: str | Path, data: bytes, mode: int | None = None) -> Path:
    """
    Write data to a temp file in the same directory, then rename over path.

    Parent directories are created as needed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    temp_file = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_file, mode)
        temp_file.replace(path)
    except BaseException:
        temp_file.unlink(missing_ok=True)
        raise
    return path
