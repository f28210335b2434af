# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Remote content verification.

Fetches a published document over HTTP, fetches the author's public key from
<site>/.well-known/polis, and verifies the document against it.

Usage:
    async with RemoteClient(SiteConfig()) as client:
        result = await verify_remote_content("https://alice.example/posts/hello.md", client)
        print(result.signature.status)

A missing public key or signature is reported as unverifiable, never as
invalid.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from .config import SiteConfig
from .document import has_frontmatter
from .errors import RemoteError
from .verify import ContentVerification, verify_document

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/polis"

_ALTERNATE_EXTENSIONS = {".md": ".html", ".html": ".md"}


@dataclass
class WellKnown:
    """Author metadata published at /.well-known/polis."""
    public_key: str = ""
    author: str = ""
    email: str = ""
    domain: str = ""
    version: str = ""
    created: str = ""
    site_title: str = ""
    base_url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WellKnown":
        return cls(
            public_key=data.get("public_key", ""),
            author=data.get("author", ""),
            email=data.get("email", ""),
            domain=data.get("domain", ""),
            version=data.get("version", ""),
            created=data.get("created", ""),
            site_title=data.get("site_title", ""),
            base_url=data.get("base_url", ""),
        )

    @property
    def author_domain(self) -> str:
        """Explicit domain, else the host part of base_url."""
        if self.domain:
            return self.domain
        if self.base_url:
            return urlsplit(self.base_url).netloc or self.base_url.split("/", 1)[0]
        return ""


def extract_base_url(url: str) -> str:
    """scheme://host[:port] of a URL."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise RemoteError(f"not an absolute URL: {url}", url=url)
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def alternate_url(url: str) -> str | None:
    """Same URL with .md and .html swapped, or None for other extensions."""
    parts = urlsplit(url)
    for ext, alt in _ALTERNATE_EXTENSIONS.items():
        if parts.path.endswith(ext):
            path = parts.path[: -len(ext)] + alt
            return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))
    return None


class RemoteClient:
    """
    Async HTTP client for published content.

    Usage:
        async with RemoteClient(config) as client:
            text = await client.fetch_content(url)
            key = await client.fetch_public_key("https://alice.example")
    """

    def __init__(self, config: SiteConfig | None = None):
        self.config = config or SiteConfig()
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_ms / 1000)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.config.generator},
            )
        return self._session

    async def __aenter__(self):
        """Context manager entry."""
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close the session."""
        await self.close()
        return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_content(self, url: str) -> str:
        """
        GET a URL and return the body as text.

        Raises:
            RemoteError: On connection failure, timeout, HTTP status >= 400
                or a body that does not decode in its declared charset
        """
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status >= 400:
                    raise RemoteError(
                        f"fetch failed with status {response.status} for {url}",
                        url=url,
                        status=response.status,
                    )
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as e:
            raise RemoteError(f"failed to fetch {url}: {e}", url=url) from e

    async def fetch_well_known(self, base_url: str) -> WellKnown:
        """
        Fetch and parse <base_url>/.well-known/polis.

        Raises:
            RemoteError: If the file can't be fetched or isn't a JSON object
        """
        url = base_url.rstrip("/") + WELL_KNOWN_PATH
        text = await self.fetch_content(url)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RemoteError(f"failed to parse {url}: {e}", url=url) from e
        if not isinstance(data, dict):
            raise RemoteError(f"{url} is not a JSON object", url=url)
        return WellKnown.from_dict(data)

    async def fetch_public_key(self, base_url: str) -> str:
        return (await self.fetch_well_known(base_url)).public_key

    async def try_alternate_extension(self, url: str) -> tuple[str, str]:
        """
        Fetch the .md/.html counterpart of url.

        Returns:
            (content, alternate_url)

        Raises:
            RemoteError: If url has no alternate or the fetch fails
        """
        alt = alternate_url(url)
        if alt is None:
            raise RemoteError(f"no alternate extension for {url}", url=url)
        return await self.fetch_content(alt), alt


async def verify_remote_content(
    url: str,
    client: RemoteClient | None = None,
) -> ContentVerification:
    """
    Fetch a document and its author's key, then verify it.

    If the response has no frontmatter (e.g. the rendered .html page), the
    .md counterpart is tried.

    Raises:
        RemoteError: If the content can't be fetched or has no frontmatter
    """
    if client is None:
        async with RemoteClient() as owned:
            return await verify_remote_content(url, owned)

    content = await client.fetch_content(url)
    actual_url = url

    if not has_frontmatter(content):
        try:
            alt_content, alt_url = await client.try_alternate_extension(url)
        except RemoteError as e:
            logger.debug(f"Alternate extension unavailable: {e}")
        else:
            if has_frontmatter(alt_content):
                content, actual_url = alt_content, alt_url

    if not has_frontmatter(content):
        raise RemoteError(f"content at {url} has no frontmatter (not a signed document)", url=url)

    public_key = None
    author = ""
    try:
        well_known = await client.fetch_well_known(extract_base_url(actual_url))
        public_key = well_known.public_key or None
        author = well_known.email or well_known.author
    except RemoteError as e:
        logger.warning(f"Could not fetch author key for {actual_url}: {e}")

    result = verify_document(content, public_key, source=actual_url, author=author)
    logger.info(f"Verified {actual_url}: signature={result.signature.status.value}, hash={result.hash_status.value}")
    return result
