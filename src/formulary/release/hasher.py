"""
Artifact hashing over HTTP.

Downloads an artifact in full and computes the SHA-256 of the exact bytes
served, streaming chunks through the digest instead of buffering the body.
"""

import asyncio
import hashlib
import logging
import time
from typing import Any, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, TCPConnector

from formulary.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    HTTP_STATUS_ERROR_THRESHOLD,
)
from formulary.exceptions import FetchError
from formulary.log_utils import logger as default_logger
from formulary.utils import get_effective_github_token, get_user_agent


def sha256_bytes(data: bytes) -> str:
    """Return the lowercase hex SHA-256 of in-memory `data`, as `hash_url` would for the same body."""
    return hashlib.sha256(data).hexdigest()


class ArtifactHasher:
    """
    Computes content digests of remote artifacts.

    One hasher (and therefore one connection pool) is shared by all tasks of a
    run; there is no cap on concurrent downloads beyond aiohttp's defaults.

    Example:
        async with ArtifactHasher() as hasher:
            digest = await hasher.hash_url("https://api.github.com/repos/o/r/tarball/v1")
    """

    def __init__(
        self,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        github_token: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.timeout = ClientTimeout(total=timeout)
        self.chunk_size = chunk_size
        self.github_token = get_effective_github_token(github_token)
        self.logger = logger or default_logger
        self._session: Optional[ClientSession] = None

    async def __aenter__(self) -> "ArtifactHasher":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            headers = {"User-Agent": get_user_agent()}
            if self.github_token:
                headers["Authorization"] = f"token {self.github_token}"
            self._session = ClientSession(
                connector=TCPConnector(limit=0, enable_cleanup_closed=True),
                timeout=self.timeout,
                headers=headers,
            )
        return self._session

    async def close(self) -> None:
        """Close the shared aiohttp session, if active."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def hash_url(self, url: str) -> str:
        """
        Download `url` completely and return the lowercase hex SHA-256 of its body.

        Redirects are followed (GitHub tarball URLs redirect to codeload). The
        digest covers the bytes as served, without content decoding beyond what
        the server applied to the transfer.

        Raises:
            FetchError: On connection errors, timeouts, HTTP status >= 400, or read errors.
        """
        session = await self._ensure_session()
        digest = hashlib.sha256()
        downloaded = 0
        start_time = time.time()

        try:
            async with session.get(url) as response:
                if response.status >= HTTP_STATUS_ERROR_THRESHOLD:
                    raise FetchError(
                        f"HTTP error {response.status}",
                        url=url,
                        status_code=response.status,
                    )
                async for chunk in response.content.iter_chunked(self.chunk_size):
                    digest.update(chunk)
                    downloaded += len(chunk)
        except aiohttp.ClientResponseError as e:
            raise FetchError(
                f"HTTP error {e.status}: {e.message}",
                url=url,
                status_code=e.status,
            ) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Network error: {e}", url=url) from e
        except asyncio.TimeoutError as e:
            raise FetchError("Download timed out", url=url) from e

        elapsed = time.time() - start_time
        hex_digest = digest.hexdigest()
        self.logger.debug(
            f"Hashed {url} ({downloaded} bytes in {elapsed:.2f}s): {hex_digest}"
        )
        return hex_digest
