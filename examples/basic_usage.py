#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Basic inkseal Usage Example

Demonstrates:
- Generating the site key
- Publishing and republishing a post
- Verifying the published document
- Reconstructing an earlier version from the history log
- Auditing the history log
"""

import asyncio
import logging
import tempfile

from inkseal import (
    HistoryStore,
    KeyStore,
    Publisher,
    SiteConfig,
    verify_document,
    verify_history,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


async def main():
    with tempfile.TemporaryDirectory() as root:
        config = SiteConfig(root=root)

        # Example 1: Key pair
        logger.info("=== Example 1: Site key ===")
        keys = KeyStore(config)
        key = keys.generate()
        logger.info(f"Public key: {key.public_key().to_openssh(config.key_comment).strip()}")

        # Example 2: Publish, then edit
        logger.info("=== Example 2: Publish ===")
        publisher = Publisher(config, key)
        first = await publisher.publish("# Hello\n\nFirst version.\n", "posts/hello.md")
        logger.info(f"Published {first.path} as {first.version}")

        second = await publisher.republish("posts/hello.md", "# Hello\n\nSecond version.\n")
        logger.info(f"Republished {second.path}: {second.previous_version} -> {second.version}")

        # Example 3: Verify the live document
        logger.info("=== Example 3: Verify ===")
        text = (config.root_path / "posts" / "hello.md").read_text()
        report = verify_document(text, keys.load_public())
        logger.info(f"Signature: {report.signature.status.value}, hash: {report.hash_status.value}")

        # Example 4: Time travel
        logger.info("=== Example 4: Reconstruct ===")
        store = HistoryStore(config)
        original = await store.reconstruct("posts/hello.md", first.version)
        logger.info(f"Original body:\n{original}")

        # Example 5: Audit
        audit = verify_history(await store.load("posts/hello.md"))
        logger.info(audit.message)


if __name__ == "__main__":
    asyncio.run(main())
