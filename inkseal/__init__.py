# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
inkseal - Signed, content-addressed publishing with version history

Features:
- Text canonicalization + SHA-256 content addressing
- Ed25519 signing with OpenSSH keys and SSHSIG signatures
  (interoperable with `ssh-keygen -Y sign/verify -n file`)
- Append-only history files storing a full base version plus diffs
- Reconstruction of any past version (backward from the live file, or
  forward from the base)
- Verification of local and remote documents

Usage:
    from inkseal import SiteConfig, KeyStore, Publisher, HistoryStore

    config = SiteConfig(root="./site")
    key = KeyStore(config).generate()

    publisher = Publisher(config, key)
    result = await publisher.publish("# Hello\\n\\nFirst post.\\n", "posts/hello.md")
    await publisher.republish("posts/hello.md", "# Hello\\n\\nEdited.\\n")

    # Any past version, byte-for-byte
    old = await HistoryStore(config).reconstruct("posts/hello.md", result.version)

Usage (low level):
    from inkseal import canonicalize, content_hash, sign_content, verify_content

    body = canonicalize(text)
    version = content_hash(body)
    signature = sign_content(body, private_key_pem)
    assert verify_content(body, public_key_line, signature)
"""

__version__ = "0.1.0"

# Config / errors
from .config import SiteConfig

# Crypto
from .crypto import (
    SigningKey,
    VerifyingKey,
    canonical_bytes,
    canonicalize,
    content_hash,
    generate_keypair,
    hash_text,
    parse_content_hash,
    sign_content,
    verify_content,
)

# Documents
from .document import (
    Frontmatter,
    extract_body,
    extract_title,
    has_frontmatter,
    render_document,
    signable_content,
    split_document,
)
from .errors import (
    HistoryFormatError,
    InkSealError,
    MalformedKey,
    ReconstructionError,
    RemoteError,
    SigningError,
    VerificationError,
    VersionNotFound,
    WireFormatError,
)

# History
from .history import (
    HistoryStore,
    format_history,
    parse_history,
    reconstruct_backward,
    reconstruct_content,
    reconstruct_forward,
)
from .keystore import KeyStore, RotationResult
from .patch import apply_patch, compute_diff
from .publish import Publisher, PublishResult

# Remote
from .remote import RemoteClient, WellKnown, verify_remote_content

# SSH formats
from .sshformat import (
    ParsedSignature,
    build_signing_blob,
    decode_private_key,
    decode_public_key,
    decode_signature,
    encode_private_key,
    encode_public_key,
    encode_signature,
    fingerprint,
)
from .types import (
    VERSION_FILE_FORMAT,
    HashStatus,
    HistoryFile,
    VerifyResult,
    VerifyStatus,
    VersionEntry,
    utc_timestamp,
)

# Verification
from .verify import (
    ContentVerification,
    verify_document,
    verify_hash,
    verify_history,
    verify_signature,
)

__all__ = [
    "__version__",
    # Config
    "SiteConfig",
    # Errors
    "InkSealError",
    "WireFormatError",
    "MalformedKey",
    "SigningError",
    "VerificationError",
    "VersionNotFound",
    "HistoryFormatError",
    "ReconstructionError",
    "RemoteError",
    # Crypto
    "SigningKey",
    "VerifyingKey",
    "canonicalize",
    "canonical_bytes",
    "content_hash",
    "hash_text",
    "parse_content_hash",
    "generate_keypair",
    "sign_content",
    "verify_content",
    # SSH formats
    "ParsedSignature",
    "build_signing_blob",
    "encode_private_key",
    "decode_private_key",
    "encode_public_key",
    "decode_public_key",
    "encode_signature",
    "decode_signature",
    "fingerprint",
    # Types
    "VERSION_FILE_FORMAT",
    "VersionEntry",
    "HistoryFile",
    "VerifyResult",
    "VerifyStatus",
    "HashStatus",
    "utc_timestamp",
    # Diffs
    "compute_diff",
    "apply_patch",
    # History
    "HistoryStore",
    "parse_history",
    "format_history",
    "reconstruct_backward",
    "reconstruct_forward",
    "reconstruct_content",
    # Documents
    "Frontmatter",
    "split_document",
    "has_frontmatter",
    "extract_body",
    "extract_title",
    "render_document",
    "signable_content",
    # Keys / publishing
    "KeyStore",
    "RotationResult",
    "Publisher",
    "PublishResult",
    # Verification
    "ContentVerification",
    "verify_signature",
    "verify_hash",
    "verify_document",
    "verify_history",
    # Remote
    "RemoteClient",
    "WellKnown",
    "verify_remote_content",
]
