# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Publishing: canonicalize -> hash -> sign -> record history -> write document.

Usage:
    key = KeyStore(config).load()
    publisher = Publisher(config, key)

    result = await publisher.publish("# Hello\\n\\nFirst post.\\n", "posts/hello.md")
    result = await publisher.republish("posts/hello.md", "# Hello\\n\\nEdited.\\n")

Ordering: the signature is produced in memory first, then the history log
is written, then the document replaces the old one. A failure before the
document write leaves the published file untouched.
"""

import logging
from dataclasses import dataclass

import aiofiles

from .config import SiteConfig
from .crypto import SigningKey, canonicalize, content_hash, sign_content
from .document import (
    Frontmatter,
    extract_body,
    extract_title,
    render_document,
    split_document,
)
from .history import HistoryStore, write_text_atomic
from .sshformat import signature_to_base64
from .types import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    """Outcome of a publish or republish."""
    path: str
    title: str
    version: str
    signature: str
    timestamp: str
    previous_version: str | None = None

    def to_dict(self) -> dict:
        result = {
            "path": self.path,
            "title": self.title,
            "version": self.version,
            "signature": self.signature,
            "timestamp": self.timestamp,
        }
        if self.previous_version:
            result["previous_version"] = self.previous_version
        return result


class Publisher:
    """
    Signs documents and keeps their history logs.

    Args:
        config: Site configuration (root, versions dir, generator string)
        signing_key: Author's Ed25519 key
    """

    def __init__(self, config: SiteConfig, signing_key: SigningKey):
        self.config = config
        self.signing_key = signing_key
        self.history = HistoryStore(config)

    def _sign(self, frontmatter: Frontmatter, body: str) -> str:
        """Sign the unsigned document and store the base64 body on frontmatter."""
        unsigned = render_document(frontmatter, body, include_signature=False)
        signature = sign_content(canonicalize(unsigned), self.signing_key)
        frontmatter.signature = signature_to_base64(signature)
        return signature

    async def publish(
        self,
        markdown: str,
        relative_path: str,
        timestamp: str | None = None,
        in_reply_to: str = "",
        in_reply_to_version: str = "",
    ) -> PublishResult:
        """
        Publish new content at relative_path.

        Any frontmatter in markdown is dropped; the body is canonicalized.
        Passing in_reply_to marks the document as a comment.

        Raises:
            FileExistsError: If a document or history already exists at the path
        """
        doc_path = self.history.document_path(relative_path)
        if doc_path.exists():
            raise FileExistsError(f"Document already exists: {doc_path}")

        body = extract_body(markdown)
        version = content_hash(body)
        timestamp = timestamp or utc_timestamp()
        title = extract_title(body)

        frontmatter = Frontmatter(
            title=title,
            type="comment" if in_reply_to else "",
            published=timestamp,
            generator=self.config.generator,
            current_version=version,
            version_history=[f"{version} ({timestamp})"],
            in_reply_to=in_reply_to,
            in_reply_to_version=in_reply_to_version,
        )
        signature = self._sign(frontmatter, body)

        await self.history.init_history(relative_path, version, body, timestamp)
        await write_text_atomic(doc_path, render_document(frontmatter, body))

        logger.info(f"Published {relative_path} ({version})")
        return PublishResult(
            path=relative_path,
            title=title,
            version=version,
            signature=signature,
            timestamp=timestamp,
        )

    async def republish(
        self,
        relative_path: str,
        markdown: str,
        timestamp: str | None = None,
    ) -> PublishResult:
        """
        Publish a new revision of an existing document.

        Keeps the original published timestamp, sets updated, extends
        version-history and appends a history entry.

        Raises:
            FileNotFoundError: If the document does not exist
            ValueError: If the existing document has no frontmatter
        """
        doc_path = self.history.document_path(relative_path)
        async with aiofiles.open(doc_path, "r", encoding="utf-8", newline="") as f:
            existing = await f.read()

        old, _ = split_document(existing)
        if old is None:
            raise ValueError(f"{relative_path} is not a published document (no frontmatter)")

        body = extract_body(markdown)
        version = content_hash(body)
        timestamp = timestamp or utc_timestamp()
        title = extract_title(body)
        previous_version = old.current_version or None

        frontmatter = Frontmatter(
            title=title,
            type=old.type,
            published=old.published or timestamp,
            updated=timestamp,
            generator=self.config.generator,
            current_version=version,
            version_history=old.version_history + [f"{version} ({timestamp})"],
            in_reply_to=old.in_reply_to,
            in_reply_to_version=old.in_reply_to_version,
        )
        signature = self._sign(frontmatter, body)

        if self.history.exists(relative_path):
            await self.history.append_version(relative_path, version, body, timestamp)
        else:
            logger.warning(f"No history for {relative_path}; starting a new one at {version}")
            await self.history.init_history(relative_path, version, body, timestamp)
        await write_text_atomic(doc_path, render_document(frontmatter, body))

        logger.info(f"Republished {relative_path} ({previous_version} -> {version})")
        return PublishResult(
            path=relative_path,
            title=title,
            version=version,
            signature=signature,
            timestamp=timestamp,
            previous_version=previous_version,
        )

