import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp

from ..core.perftest import FetchError


@dataclass
class FetchedDocument:
    url: str
    status: int
    headers: Dict[str, str]
    body: bytes
    encoding: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == 'content-type':
                return value.lower()
        return ''

    @property
    def is_html(self) -> bool:
        return 'text/html' in self.content_type

    def text(self) -> str:
        try:
            return self.body.decode(self.encoding or 'utf-8')
        except (UnicodeDecodeError, LookupError):
            return self.body.decode('utf-8', errors='replace')

    def encode(self, text: str) -> bytes:
        """Encode text back to the charset the forwarded Content-Type declares."""
        try:
            return text.encode(self.encoding or 'utf-8', errors='xmlcharrefreplace')
        except LookupError:
            return text.encode('utf-8')


@dataclass
class RequestConfig:
    timeout: int
    verify_ssl: bool
    allow_redirects: bool
    dropped_headers: frozenset = field(default_factory=lambda: frozenset({
        'host', 'content-length', 'accept-encoding', 'connection',
    }))


class DocumentFetcher:
    """
    Out-of-band HTTP client for navigation documents, built on aiohttp.

    The browser request is replayed outside the page so the document body can
    be rewritten before the page sees it. One fetcher is opened per run and
    closed with it.
    """

    # aiohttp decodes these without optional extras
    ACCEPT_ENCODING = 'gzip, deflate'

    def __init__(self, timeout: int = 30, verify_ssl: bool = True):
        self.config = RequestConfig(timeout=timeout, verify_ssl=verify_ssl, allow_redirects=True)
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger("perfprobe.http")

    async def __aenter__(self) -> "DocumentFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                connector=aiohttp.TCPConnector(ssl=self.config.verify_ssl),
            )
        return self.session

    async def close(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    def _forwardable_headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        forwarded = {
            name: value for name, value in (headers or {}).items()
            if name.lower() not in self.config.dropped_headers and not name.startswith(':')
        }
        forwarded['Accept-Encoding'] = self.ACCEPT_ENCODING
        return forwarded

    async def fetch(self, url: str, method: str = 'GET',
                    headers: Optional[Dict[str, str]] = None) -> FetchedDocument:
        """
        Fetch a document with the browser's method and headers.

        Args:
            url: Document URL
            method: HTTP method of the intercepted request
            headers: Headers of the intercepted request

        Returns:
            FetchedDocument with decoded body bytes, status and headers

        Raises:
            FetchError: If the request cannot be completed
        """
        session = self._get_session()
        self.logger.info(f"Fetching document out of band: {method} {url}")

        try:
            async with session.request(
                method,
                url,
                headers=self._forwardable_headers(headers),
                allow_redirects=self.config.allow_redirects,
            ) as response:
                body = await response.read()
                return FetchedDocument(
                    url=str(response.url),
                    status=response.status,
                    headers={name: value for name, value in response.headers.items()},
                    body=body,
                    encoding=response.charset,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e
