# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Exception taxonomy for inkseal.

None of these are retried internally. A cryptographic mismatch is NOT an
error: verification returns False for a signature that parses but does not
match, and raises VerificationError only when the container cannot be parsed.
"""


class InkSealError(Exception):
    """Base class for all inkseal errors."""
    pass


class WireFormatError(ValueError):
    """Raised by the SSH wire reader when a field is truncated or malformed."""
    pass


class MalformedKey(InkSealError, ValueError):
    """Key bytes don't parse (wrong PEM type, truncated wire fields, wrong key size)."""
    pass


class SigningError(InkSealError):
    """Signing failed, typically because the private key could not be decoded."""
    pass


class VerificationError(InkSealError):
    """Signature container (or the key used to check it) is malformed."""
    pass


class VersionNotFound(InkSealError, LookupError):
    """Requested hash is not reachable in the version history."""

    def __init__(self, target_hash: str, message: str | None = None):
        self.target_hash = target_hash
        super().__init__(message or f"version {target_hash} not found in history")


class HistoryFormatError(InkSealError, ValueError):
    """History file text does not follow the VERSION_FILE_FORMAT layout."""
    pass


class ReconstructionError(InkSealError):
    """A diff could not be applied (structural corruption or context mismatch)."""
    pass


class RemoteError(InkSealError):
    """Fetching remote content or the author's .well-known file failed."""

    def __init__(self, message: str, url: str | None = None, status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(message)
