# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Site configuration.

A SiteConfig is an explicit value handed to every component that touches
disk or network (Publisher, HistoryStore, KeyStore, RemoteClient). Nothing
in inkseal reads configuration from module-level globals, so several sites
can be served from one process.
"""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_VERSIONS_DIR = ".versions"
DEFAULT_KEYS_DIR = ".inkseal/keys"
DEFAULT_KEY_COMMENT = "inkseal-local"


def _default_generator() -> str:
    from . import __version__
    return f"inkseal/{__version__}"


@dataclass
class SiteConfig:
    """Per-site configuration."""
    root: str = "."
    # History files live in <dir of content file>/<versions_dir>/<basename>
    versions_dir: str = DEFAULT_VERSIONS_DIR
    keys_dir: str = DEFAULT_KEYS_DIR
    private_key_file: str = "id_ed25519"
    public_key_file: str = "id_ed25519.pub"
    key_comment: str = DEFAULT_KEY_COMMENT
    generator: str = ""
    # Remote fetches (verify-url)
    timeout_ms: int = 30000

    def __post_init__(self) -> None:
        if not self.generator:
            self.generator = _default_generator()

    @property
    def root_path(self) -> Path:
        return Path(self.root)

    @property
    def private_key_path(self) -> Path:
        return self.root_path / self.keys_dir / self.private_key_file

    @property
    def public_key_path(self) -> Path:
        return self.root_path / self.keys_dir / self.public_key_file

    @classmethod
    def from_env(cls, prefix: str = "INKSEAL_", **overrides) -> "SiteConfig":
        """
        Build a config from environment variables.

        Recognized variables (with the default prefix):
        - INKSEAL_ROOT: site root directory
        - INKSEAL_VERSIONS_DIR: name of the per-directory history folder
        - INKSEAL_KEYS_DIR: key directory, relative to the root
        - INKSEAL_KEY_COMMENT: comment written after the public key
        - INKSEAL_TIMEOUT_MS: HTTP timeout for remote verification

        Keyword overrides win over the environment.

        Raises:
            ValueError: If INKSEAL_TIMEOUT_MS is not an integer
        """
        values: dict = {}
        mapping = {
            "ROOT": "root",
            "VERSIONS_DIR": "versions_dir",
            "KEYS_DIR": "keys_dir",
            "KEY_COMMENT": "key_comment",
        }
        for suffix, field_name in mapping.items():
            value = os.environ.get(prefix + suffix)
            if value:
                values[field_name] = value

        timeout = os.environ.get(prefix + "TIMEOUT_MS")
        if timeout:
            try:
                values["timeout_ms"] = int(timeout)
            except ValueError as e:
                raise ValueError(
                    f"{prefix}TIMEOUT_MS must be an integer number of milliseconds, got {timeout!r}"
                ) from e

        values.update(overrides)
        return cls(**values)
