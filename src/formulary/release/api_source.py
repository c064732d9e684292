"""
GitHub REST API Release Source

Alternative to the gh CLI source that talks to the GitHub REST API directly
through aiohttp. Useful where the `gh` binary is not installed, e.g. in
minimal CI containers.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from aiohttp import ClientSession, ClientTimeout, TCPConnector

from formulary.constants import (
    DEFAULT_RELEASE_LIMIT,
    GITHUB_API_BASE,
    GITHUB_API_TIMEOUT,
    GITHUB_API_VERSION,
    GITHUB_MAX_PER_PAGE,
    HTTP_STATUS_ERROR_THRESHOLD,
)
from formulary.exceptions import QueryError, ResolutionError
from formulary.log_utils import logger as default_logger
from formulary.utils import get_effective_github_token, get_user_agent

from .interfaces import ReleaseSource, ReleaseSummary, parse_timestamp


class GitHubApiReleaseSource(ReleaseSource):
    """
    Release source backed by the GitHub REST API.

    The "latest" flag is not part of the list endpoint's payload, so it is taken
    from `GET /repos/{repo}/releases/latest`; a 404 there leaves every release
    unflagged, which the pipeline then rejects.

    Example:
        async with GitHubApiReleaseSource(github_token="ghp_...") as source:
            releases = await source.list_releases("owner/repo")
    """

    def __init__(
        self,
        github_token: Optional[str] = None,
        release_limit: int = DEFAULT_RELEASE_LIMIT,
        timeout: float = GITHUB_API_TIMEOUT,
        api_base: str = GITHUB_API_BASE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.github_token = get_effective_github_token(github_token)
        self.release_limit = release_limit
        self.timeout = ClientTimeout(total=timeout)
        self.api_base = api_base.rstrip("/")
        self.logger = logger or default_logger
        self._session: Optional[ClientSession] = None

    async def __aenter__(self) -> "GitHubApiReleaseSource":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """
        Ensure a session exists, creating one if needed.

        Returns:
            ClientSession: The active aiohttp session.
        """
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                connector=TCPConnector(enable_cleanup_closed=True),
                timeout=self.timeout,
                headers=self._get_default_headers(),
            )
        return self._session

    def _get_default_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": get_user_agent(),
        }
        if self.github_token:
            headers["Authorization"] = f"token {self.github_token}"
        return headers

    async def close(self) -> None:
        """Close the client session and release resources."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get_page(
        self, url: str, params: Optional[Dict[str, Any]] = None
    ) -> tuple[int, Any, Optional[str]]:
        """
        GET `url` and decode the JSON body.

        Returns:
            tuple[int, Any, Optional[str]]: HTTP status, decoded body (None for
            error statuses) and the `rel="next"` URL from the Link header, if any.
        """
        session = await self._ensure_session()
        async with session.get(url, params=params) as response:
            if response.status >= HTTP_STATUS_ERROR_THRESHOLD:
                return response.status, None, None
            next_link = response.links.get("next")
            next_url = str(next_link["url"]) if next_link else None
            return response.status, await response.json(), next_url

    async def _get_json(
        self, url: str, params: Optional[Dict[str, Any]] = None
    ) -> tuple[int, Any]:
        status, data, _ = await self._get_page(url, params=params)
        return status, data

    async def _latest_tag(self, repository: str) -> Optional[str]:
        url = f"{self.api_base}/{repository}/releases/latest"
        status, data = await self._get_json(url)
        if status == 404:
            self.logger.debug("No latest release flagged for %s", repository)
            return None
        if data is None:
            raise QueryError(
                f"HTTP error {status} fetching latest release",
                repository=repository,
                details=url,
            )
        tag = data.get("tag_name") if isinstance(data, dict) else None
        return tag if isinstance(tag, str) else None

    async def list_releases(self, repository: str) -> List[ReleaseSummary]:
        """
        Fetch up to `release_limit` releases, following Link pagination.

        Raises:
            QueryError: On HTTP errors, timeouts, network or payload errors.
        """
        url = f"{self.api_base}/{repository}/releases"
        page_url: Optional[str] = url
        params: Optional[Dict[str, Any]] = {
            "per_page": min(self.release_limit, GITHUB_MAX_PER_PAGE)
        }
        data: List[Any] = []
        try:
            while page_url and len(data) < self.release_limit:
                status, page, page_url = await self._get_page(page_url, params=params)
                if page is None:
                    raise QueryError(
                        f"HTTP error {status} listing releases",
                        repository=repository,
                        details=url,
                    )
                if not isinstance(page, list):
                    raise QueryError(
                        f"Unexpected releases payload: expected list, got {type(page).__name__}",
                        repository=repository,
                        details=url,
                    )
                if not page:
                    break
                data.extend(page)
                # Next links already carry the query string
                params = None
            latest_tag = await self._latest_tag(repository)
        except aiohttp.ClientError as exc:
            raise QueryError(
                f"Network error listing releases: {exc}",
                repository=repository,
                details=url,
            ) from exc
        except asyncio.TimeoutError as exc:
            raise QueryError(
                "Timed out listing releases",
                repository=repository,
                details=url,
            ) from exc
        except ValueError as exc:
            # aiohttp raises ContentTypeError / JSONDecodeError, both ValueErrors
            raise QueryError(
                "GitHub API returned invalid JSON",
                repository=repository,
                details=str(exc),
            ) from exc

        releases: List[ReleaseSummary] = []
        try:
            for item in data[: self.release_limit]:
                if not isinstance(item, dict):
                    raise TypeError(f"expected object, got {type(item).__name__}")
                tag_name = item["tag_name"]
                if not isinstance(tag_name, str) or not tag_name.strip():
                    raise ValueError("release entry has an empty tag_name")
                releases.append(
                    ReleaseSummary(
                        tag_name=tag_name,
                        name=item.get("name") or "",
                        created_at=parse_timestamp(item.get("created_at")),
                        published_at=parse_timestamp(item.get("published_at")),
                        is_draft=bool(item.get("draft", False)),
                        is_latest=latest_tag is not None and tag_name == latest_tag,
                        is_prerelease=bool(item.get("prerelease", False)),
                    )
                )
        except (KeyError, TypeError, ValueError) as exc:
            raise QueryError(
                "Malformed release entry in GitHub API response",
                repository=repository,
                details=str(exc),
            ) from exc

        self.logger.debug("Fetched %d releases from %s", len(releases), url)
        return releases

    async def view_tarball_url(self, repository: str, tag_name: str) -> str:
        tag_path = quote(tag_name, safe="")
        url = f"{self.api_base}/{repository}/releases/tags/{tag_path}"
        try:
            status, data = await self._get_json(url)
        except aiohttp.ClientError as exc:
            raise ResolutionError(
                f"Network error resolving release: {exc}",
                repository=repository,
                tag=tag_name,
                details=url,
            ) from exc
        except asyncio.TimeoutError as exc:
            raise ResolutionError(
                "Timed out resolving release",
                repository=repository,
                tag=tag_name,
                details=url,
            ) from exc
        except ValueError as exc:
            raise ResolutionError(
                "GitHub API returned invalid JSON",
                repository=repository,
                tag=tag_name,
                details=str(exc),
            ) from exc

        if data is None:
            raise ResolutionError(
                f"HTTP error {status} resolving release",
                repository=repository,
                tag=tag_name,
                details=url,
            )

        tarball_url = data.get("tarball_url") if isinstance(data, dict) else None
        if not isinstance(tarball_url, str) or not tarball_url:
            raise ResolutionError(
                "Release has an empty tarball URL",
                repository=repository,
                tag=tag_name,
                details=url,
            )
        return tarball_url
