import asyncio
import logging
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from formulary.config import RunConfig
from formulary.exceptions import ResolutionError
from formulary.release.context import RunContext
from formulary.release.hasher import sha256_bytes
from formulary.release.interfaces import ReleaseSource, ReleaseSummary, RepositoryTarget

_ASYNC_NETWORK_BLOCK_MSG = (
    "Async network access is blocked during tests. Mock aiohttp.ClientSession."
)

TEST_TEMPLATE = (
    "class {{ short_name | formula_class }}\n"
    "  tag {{ tag_name }}\n"
    "  version {{ version }}\n"
    "  url {{ tarball_url }}\n"
    "  sha256 {{ tarball_sha256 }}\n"
)


async def _async_block_network(*_args, **_kwargs):
    """
    Prevent async network calls during tests by raising a RuntimeError.

    Raises:
        RuntimeError: `_ASYNC_NETWORK_BLOCK_MSG` suggesting to mock `aiohttp.ClientSession`.
    """
    raise RuntimeError(_ASYNC_NETWORK_BLOCK_MSG)


pytest_plugins = ("pytest_asyncio",)


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing aiohttp entry points with blocking callables.
    """
    import aiohttp

    aiohttp.request = _async_block_network
    aiohttp.ClientSession.request = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.get = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.head = _async_block_network  # type: ignore[assignment]


# =============================================================================
# Fakes
# =============================================================================


class FakeReleaseSource(ReleaseSource):
    """
    In-memory release source.

    `releases` maps repository -> list of summaries (or an exception to raise);
    `urls` maps tag -> tarball URL (or an exception to raise).
    """

    def __init__(self, releases, urls, on_list=None):
        self.releases = releases
        self.urls = urls
        self.on_list = on_list
        self.list_calls = []
        self.view_calls = []
        self.closed = False

    async def list_releases(self, repository):
        self.list_calls.append(repository)
        if self.on_list is not None:
            self.on_list(repository)
        result = self.releases[repository]
        if isinstance(result, Exception):
            raise result
        return [ReleaseSummary(**vars(release)) for release in result]

    async def view_tarball_url(self, repository, tag_name):
        self.view_calls.append((repository, tag_name))
        await asyncio.sleep(0)
        result = self.urls[tag_name]
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


class FakeHasher:
    """
    Hashes the bytes registered for each URL.

    URLs listed in `blocking` never finish: the download "starts" (setting
    `started`) and then waits until cancelled, which is recorded in `cancelled`.
    """

    def __init__(self, contents, blocking=()):
        self.contents = contents
        self.blocking = set(blocking)
        self.started = asyncio.Event()
        self.cancelled = []
        self.calls = []
        self.closed = False

    async def hash_url(self, url):
        self.calls.append(url)
        if url in self.blocking:
            self.started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(url)
                raise
        result = self.contents[url]
        if isinstance(result, Exception):
            raise result
        await asyncio.sleep(0)
        return sha256_bytes(result)

    async def close(self):
        self.closed = True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_logger():
    logger = logging.getLogger("formulary.tests")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture
def template_file(tmp_path) -> Path:
    path = tmp_path / "templates" / "tool.rb.j2"
    path.parent.mkdir(parents=True)
    path.write_text(TEST_TEMPLATE, encoding="utf-8")
    return path


@pytest.fixture
def output_dir(tmp_path) -> Path:
    return tmp_path / "Formula"


@pytest.fixture
def tool_target(template_file) -> RepositoryTarget:
    return RepositoryTarget(repository="org/tool", template_path=template_file)


@pytest.fixture
def run_config(tool_target, output_dir) -> RunConfig:
    return RunConfig(repositories=(tool_target,), output_dir=output_dir)


@pytest.fixture
def run_context(run_config, test_logger) -> RunContext:
    return RunContext(config=run_config, logger=test_logger)


@pytest.fixture
def tool_releases():
    """Two releases of org/tool; v2.0.0 is flagged latest."""
    return [
        ReleaseSummary(tag_name="v1.0.0", name="v1.0.0"),
        ReleaseSummary(tag_name="v2.0.0", name="v2.0.0", is_latest=True),
    ]


@pytest.fixture
def tool_source(tool_releases):
    return FakeReleaseSource(
        releases={"org/tool": tool_releases},
        urls={
            "v1.0.0": "https://example.com/tool/tarball/v1.0.0",
            "v2.0.0": "https://example.com/tool/tarball/v2.0.0",
        },
    )


@pytest.fixture
def tool_hasher():
    return FakeHasher(
        {
            "https://example.com/tool/tarball/v1.0.0": b"tool 1.0.0 archive",
            "https://example.com/tool/tarball/v2.0.0": b"tool 2.0.0 archive",
        }
    )


@pytest.fixture
def empty_url_error():
    return ResolutionError("Release has an empty tarball URL")


@pytest.fixture
def mock_async_response(mocker):
    """
    Provide a factory that creates configured mock aiohttp.ClientResponse objects for tests.

    The factory accepts the status, headers, json() return value, the parsed
    Link header (`links`) and an async iterator returned by `content.iter_chunked`.
    """

    def _create_response(
        status=200, headers=None, json_data=None, chunks=None, links=None
    ):
        import aiohttp

        response = AsyncMock(spec=aiohttp.ClientResponse)
        response.status = status
        response.headers = headers or {}
        response.json = AsyncMock(return_value=json_data)
        response.links = links or {}
        response.__aenter__ = AsyncMock(return_value=response)
        response.__aexit__ = AsyncMock(return_value=None)

        if chunks is not None:
            mock_content = mocker.MagicMock()
            mock_content.iter_chunked = mocker.Mock(return_value=chunks)
            response.content = mock_content

        return response

    return _create_response
