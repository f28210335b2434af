# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
OpenSSH-compatible binary formats.

Provides:
- SSH wire encoding (uint32 big-endian, length-prefixed strings)
- PEM armor
- Ed25519 private key container ("OPENSSH PRIVATE KEY", cipher/kdf "none")
- Ed25519 public key line ("ssh-ed25519 <base64> <comment>")
- SSHSIG signing blob and "SSH SIGNATURE" container

Everything here is format only: no key storage policy, no signing. The
layouts match what `ssh-keygen -Y sign -n file` writes and what
`ssh-keygen -Y verify` reads, so signatures produced by inkseal can be
checked with stock OpenSSH tooling:

    ssh-keygen -Y verify -f allowed_signers -I author -n file -s post.sig < post.md
"""

import base64
import binascii
import hashlib
import secrets
import struct
from dataclasses import dataclass

from .errors import MalformedKey, VerificationError, WireFormatError

SSH_ED25519 = "ssh-ed25519"
ED25519_PUBLIC_KEY_SIZE = 32
# OpenSSH stores the 32-byte seed followed by the 32-byte public key
ED25519_PRIVATE_KEY_SIZE = 64
ED25519_SIGNATURE_SIZE = 64

AUTH_MAGIC = b"openssh-key-v1\x00"
PRIVATE_KEY_PEM_TYPE = "OPENSSH PRIVATE KEY"
CIPHER_NONE = "none"
KDF_NONE = "none"
# Block size used for padding the private section when cipher is "none"
PRIVATE_BLOCK_SIZE = 8

SSHSIG_MAGIC = b"SSHSIG"
SSHSIG_VERSION = 1
SIGNATURE_PEM_TYPE = "SSH SIGNATURE"
SIG_NAMESPACE = "file"
SIG_HASH_ALGORITHM = "sha512"

PEM_LINE_LENGTH = 64


# =============================================================================
# Wire format
# =============================================================================

class WireWriter:
    """Accumulates SSH wire-format fields."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def write_raw(self, data: bytes) -> "WireWriter":
        self._buf += data
        return self

    def write_uint32(self, value: int) -> "WireWriter":
        self._buf += struct.pack(">I", value)
        return self

    def write_string(self, data: bytes | str) -> "WireWriter":
        """Write a 4-byte big-endian length followed by the bytes."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.write_uint32(len(data))
        self._buf += data
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)


class WireReader:
    """
    Reads SSH wire-format fields from a buffer.

    Every read checks the remaining length first; an overrun raises
    WireFormatError instead of silently returning a short slice.
    """

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read_raw(self, n: int) -> bytes:
        if n < 0 or self.remaining < n:
            raise WireFormatError(
                f"buffer too short: need {n} bytes at offset {self._pos}, have {self.remaining}"
            )
        chunk = bytes(self._data[self._pos:self._pos + n])
        self._pos += n
        return chunk

    def read_uint32(self) -> int:
        (value,) = struct.unpack(">I", self.read_raw(4))
        return value

    def read_string(self) -> bytes:
        length = self.read_uint32()
        if self.remaining < length:
            raise WireFormatError(
                f"length field {length} overruns buffer ({self.remaining} bytes left)"
            )
        return self.read_raw(length)

    def read_text(self) -> str:
        raw = self.read_string()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WireFormatError(f"string field is not valid UTF-8: {e}") from e

    def rest(self) -> bytes:
        return self.read_raw(self.remaining)


# =============================================================================
# PEM armor
# =============================================================================

def pem_encode(label: str, data: bytes) -> str:
    """Wrap bytes in a PEM block with 64-column base64 lines."""
    body = base64.b64encode(data).decode("ascii")
    lines = [f"-----BEGIN {label}-----"]
    lines.extend(body[i:i + PEM_LINE_LENGTH] for i in range(0, len(body), PEM_LINE_LENGTH))
    lines.append(f"-----END {label}-----")
    return "\n".join(lines) + "\n"


def pem_decode(text: str | bytes, expected_label: str) -> bytes:
    """
    Extract the payload of the first PEM block in `text`.

    Raises:
        WireFormatError: If no PEM block is found, the label differs from
            expected_label, or the body is not valid base64
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("ascii")
        except UnicodeDecodeError as e:
            raise WireFormatError("PEM data is not ASCII") from e

    lines = [line.strip() for line in text.strip().splitlines()]
    begin = next((i for i, line in enumerate(lines) if line.startswith("-----BEGIN ")), None)
    if begin is None or not lines[begin].endswith("-----"):
        raise WireFormatError("failed to decode PEM block")

    label = lines[begin][len("-----BEGIN "):-len("-----")]
    end_marker = f"-----END {label}-----"
    try:
        end = lines.index(end_marker, begin + 1)
    except ValueError as e:
        raise WireFormatError(f"PEM block {label!r} has no END line") from e

    if label != expected_label:
        raise WireFormatError(f"unexpected PEM type: {label} (expected {expected_label})")

    body = "".join(lines[begin + 1:end])
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise WireFormatError(f"invalid base64 in PEM block: {e}") from e


# =============================================================================
# Key codec
# =============================================================================

def encode_public_key_blob(public_key: bytes) -> bytes:
    """Wire-encoded key type followed by the raw 32-byte public key."""
    return WireWriter().write_string(SSH_ED25519).write_string(public_key).getvalue()


def decode_public_key_blob(blob: bytes) -> bytes:
    """
    Parse a public key blob and return the raw 32-byte key.

    Raises:
        WireFormatError: If the blob is truncated, not ssh-ed25519, or the key
            has the wrong size
    """
    reader = WireReader(blob)
    key_type = reader.read_text()
    if key_type != SSH_ED25519:
        raise WireFormatError(f"unsupported key type: {key_type}")
    public_key = reader.read_string()
    if len(public_key) != ED25519_PUBLIC_KEY_SIZE:
        raise WireFormatError(
            f"invalid public key size: {len(public_key)} (expected {ED25519_PUBLIC_KEY_SIZE})"
        )
    return public_key


def encode_private_key(
    private_key: bytes,
    comment: str = "",
    check: bytes | None = None,
) -> str:
    """
    Encode a 64-byte Ed25519 private key (seed || public) as an OpenSSH PEM.

    Layout (cipher and kdf "none", one key):
        "openssh-key-v1\\0"
        string cipher, string kdf, string kdfoptions, uint32 nkeys=1
        string public_key_blob
        string private_section:
            uint32 check, uint32 check   (same random value twice)
            string "ssh-ed25519", string public, string seed||public
            string comment
            padding 1, 2, 3, ... up to a multiple of 8

    Args:
        private_key: 64 bytes, seed followed by public key
        comment: Key comment stored inside the container
        check: 4-byte check value; random if not given

    Returns:
        PEM text ending in a newline
    """
    if len(private_key) != ED25519_PRIVATE_KEY_SIZE:
        raise MalformedKey(
            f"Ed25519 private key must be {ED25519_PRIVATE_KEY_SIZE} bytes, got {len(private_key)}"
        )
    if check is None:
        check = secrets.token_bytes(4)
    if len(check) != 4:
        raise ValueError("check value must be 4 bytes")

    public_key = private_key[32:]
    public_blob = encode_public_key_blob(public_key)

    section = WireWriter()
    section.write_raw(check).write_raw(check)
    section.write_string(SSH_ED25519)
    section.write_string(public_key)
    section.write_string(private_key)
    section.write_string(comment)
    pad = 1
    while len(section) % PRIVATE_BLOCK_SIZE != 0:
        section.write_raw(bytes([pad]))
        pad += 1

    blob = WireWriter()
    blob.write_raw(AUTH_MAGIC)
    blob.write_string(CIPHER_NONE)
    blob.write_string(KDF_NONE)
    blob.write_string(b"")
    blob.write_uint32(1)
    blob.write_string(public_blob)
    blob.write_string(section.getvalue())

    return pem_encode(PRIVATE_KEY_PEM_TYPE, blob.getvalue())


def decode_private_key(pem_data: str | bytes) -> bytes:
    """
    Decode an OpenSSH PEM private key and return the 64-byte seed||public.

    Raises:
        MalformedKey: If the PEM type is wrong, the auth magic is missing,
            the key is encrypted, a length field overruns the buffer, the
            check values differ, or the private key is not 64 bytes
    """
    try:
        data = pem_decode(pem_data, PRIVATE_KEY_PEM_TYPE)
        if not data.startswith(AUTH_MAGIC):
            raise WireFormatError("invalid openssh key format: missing auth magic")

        reader = WireReader(data)
        reader.read_raw(len(AUTH_MAGIC))
        cipher = reader.read_text()
        kdf = reader.read_text()
        reader.read_string()  # kdf options
        if cipher != CIPHER_NONE or kdf != KDF_NONE:
            raise WireFormatError(f"encrypted keys are not supported (cipher={cipher}, kdf={kdf})")

        nkeys = reader.read_uint32()
        if nkeys != 1:
            raise WireFormatError(f"expected exactly one key, found {nkeys}")
        reader.read_string()  # public key blob, repeated in the private section

        section = WireReader(reader.read_string())
        check1 = section.read_raw(4)
        check2 = section.read_raw(4)
        if check1 != check2:
            raise WireFormatError("check values do not match")

        key_type = section.read_text()
        if key_type != SSH_ED25519:
            raise WireFormatError(f"unsupported key type: {key_type}")
        public_key = section.read_string()
        private_key = section.read_string()
    except WireFormatError as e:
        raise MalformedKey(str(e)) from e

    if len(private_key) != ED25519_PRIVATE_KEY_SIZE:
        raise MalformedKey(
            f"invalid private key size: {len(private_key)} (expected {ED25519_PRIVATE_KEY_SIZE})"
        )
    if private_key[32:] != public_key:
        raise MalformedKey("embedded public key does not match private key")
    return private_key


def encode_public_key(public_key: bytes, comment: str = "") -> str:
    """Encode a raw 32-byte key as an authorized_keys style line (with trailing newline)."""
    if len(public_key) != ED25519_PUBLIC_KEY_SIZE:
        raise MalformedKey(
            f"Ed25519 public key must be {ED25519_PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
        )
    encoded = base64.b64encode(encode_public_key_blob(public_key)).decode("ascii")
    line = f"{SSH_ED25519} {encoded}"
    if comment:
        line += f" {comment}"
    return line + "\n"


def decode_public_key(line: str | bytes) -> bytes:
    """
    Decode "ssh-ed25519 <base64> [comment]" into the raw 32-byte key.

    Raises:
        MalformedKey: If the type token isn't ssh-ed25519, the base64 is
            invalid, or the decoded key isn't 32 bytes
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    parts = line.split()
    if len(parts) < 2 or parts[0] != SSH_ED25519:
        raise MalformedKey("invalid public key format: expected 'ssh-ed25519 <base64> [comment]'")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedKey(f"failed to decode public key: {e}") from e
    try:
        return decode_public_key_blob(blob)
    except WireFormatError as e:
        raise MalformedKey(str(e)) from e


def public_key_comment(line: str) -> str:
    """Return the comment part of a public key line, or an empty string."""
    parts = line.split(None, 2)
    return parts[2].strip() if len(parts) == 3 else ""


def fingerprint(public_key: bytes) -> str:
    """SHA256 fingerprint as printed by `ssh-keygen -l` (unpadded base64)."""
    digest = hashlib.sha256(encode_public_key_blob(public_key)).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


# =============================================================================
# Signature codec
# =============================================================================

@dataclass(frozen=True)
class ParsedSignature:
    """Fields of an SSH SIGNATURE container."""
    public_key: bytes
    namespace: str
    hash_algorithm: str
    signature: bytes


def build_signing_blob(content: bytes, namespace: str = SIG_NAMESPACE) -> bytes:
    """
    Build the byte sequence that is actually signed.

    "SSHSIG" || string namespace || string reserved("") ||
    string "sha512" || string SHA512(content)

    The magic is literal; everything else is length-prefixed.
    """
    digest = hashlib.sha512(content).digest()
    return (
        WireWriter()
        .write_raw(SSHSIG_MAGIC)
        .write_string(namespace)
        .write_string(b"")
        .write_string(SIG_HASH_ALGORITHM)
        .write_string(digest)
        .getvalue()
    )


def encode_signature(
    public_key: bytes,
    raw_signature: bytes,
    namespace: str = SIG_NAMESPACE,
) -> str:
    """Wrap a raw 64-byte Ed25519 signature in an "SSH SIGNATURE" PEM block."""
    if len(raw_signature) != ED25519_SIGNATURE_SIZE:
        raise ValueError(
            f"Ed25519 signature must be {ED25519_SIGNATURE_SIZE} bytes, got {len(raw_signature)}"
        )
    sig_blob = (
        WireWriter()
        .write_string(SSH_ED25519)
        .write_string(raw_signature)
        .getvalue()
    )
    blob = (
        WireWriter()
        .write_raw(SSHSIG_MAGIC)
        .write_uint32(SSHSIG_VERSION)
        .write_string(encode_public_key_blob(public_key))
        .write_string(namespace)
        .write_string(b"")
        .write_string(SIG_HASH_ALGORITHM)
        .write_string(sig_blob)
        .getvalue()
    )
    return pem_encode(SIGNATURE_PEM_TYPE, blob)


def decode_signature(signature: str | bytes) -> ParsedSignature:
    """
    Parse an SSH SIGNATURE container.

    Accepts either the full PEM block or the bare base64 body as stored in
    document frontmatter.

    Raises:
        VerificationError: On bad PEM, wrong PEM type, bad magic, unsupported
            version or hash algorithm, truncated wire fields, or a key or
            signature type other than ssh-ed25519
    """
    if isinstance(signature, bytes):
        signature = signature.decode("ascii", errors="replace")
    if "-----BEGIN" not in signature:
        signature = signature_from_base64(signature)

    try:
        data = pem_decode(signature, SIGNATURE_PEM_TYPE)
        reader = WireReader(data)
        if reader.read_raw(len(SSHSIG_MAGIC)) != SSHSIG_MAGIC:
            raise WireFormatError("invalid signature magic")
        version = reader.read_uint32()
        if version != SSHSIG_VERSION:
            raise WireFormatError(f"unsupported signature version: {version}")
        public_key = decode_public_key_blob(reader.read_string())
        namespace = reader.read_text()
        reader.read_string()  # reserved
        hash_algorithm = reader.read_text()
        if hash_algorithm != SIG_HASH_ALGORITHM:
            raise WireFormatError(f"unsupported hash algorithm: {hash_algorithm}")

        sig_reader = WireReader(reader.read_string())
        sig_type = sig_reader.read_text()
        if sig_type != SSH_ED25519:
            raise WireFormatError(f"unsupported signature type: {sig_type}")
        raw_signature = sig_reader.read_string()
    except WireFormatError as e:
        raise VerificationError(f"malformed signature: {e}") from e

    if len(raw_signature) != ED25519_SIGNATURE_SIZE:
        raise VerificationError(
            f"malformed signature: raw signature is {len(raw_signature)} bytes "
            f"(expected {ED25519_SIGNATURE_SIZE})"
        )
    return ParsedSignature(
        public_key=public_key,
        namespace=namespace,
        hash_algorithm=hash_algorithm,
        signature=raw_signature,
    )


def signature_to_base64(signature_pem: str) -> str:
    """Single-line base64 body of a signature PEM (the frontmatter form)."""
    lines = [line.strip() for line in signature_pem.splitlines()]
    return "".join(line for line in lines if line and not line.startswith("-----"))


def signature_from_base64(body: str) -> str:
    """Re-wrap a bare base64 signature body into a PEM block."""
    compact = "".join(body.split())
    lines = [compact[i:i + PEM_LINE_LENGTH] for i in range(0, len(compact), PEM_LINE_LENGTH)]
    return "\n".join(
        [f"-----BEGIN {SIGNATURE_PEM_TYPE}-----", *lines, f"-----END {SIGNATURE_PEM_TYPE}-----"]
    ) + "\n"
