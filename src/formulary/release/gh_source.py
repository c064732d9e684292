"""
GitHub CLI Release Source

Queries release information by running the `gh` command-line client. Each
query is an asyncio subprocess so that cancelling the awaiting task kills the
child process instead of letting the request run to completion.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from formulary.constants import (
    DEFAULT_RELEASE_LIMIT,
    GH_EXECUTABLE,
    GH_RELEASE_LIST_FIELDS,
    GH_RELEASE_VIEW_FIELDS,
)
from formulary.exceptions import QueryError, ResolutionError
from formulary.log_utils import logger as default_logger

from .interfaces import ReleaseSource, ReleaseSummary


@dataclass(frozen=True)
class CommandResult:
    """Exit status and decoded output of a finished command."""

    command: tuple
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(command: Sequence[str]) -> CommandResult:
    """
    Run a command, capturing stdout and stderr.

    If the calling task is cancelled while the command runs, the process is
    killed and reaped before the cancellation propagates.

    Raises:
        OSError: If the executable cannot be started.
    """
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
    return CommandResult(
        command=tuple(command),
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


class GhCliReleaseSource(ReleaseSource):
    """
    Release source backed by `gh release list` and `gh release view`.

    Authentication is whatever `gh` itself is configured with (`gh auth login`
    or the GH_TOKEN / GITHUB_TOKEN environment variables).
    """

    def __init__(
        self,
        executable: str = GH_EXECUTABLE,
        release_limit: int = DEFAULT_RELEASE_LIMIT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.executable = executable
        self.release_limit = release_limit
        self.logger = logger or default_logger

    def _list_command(self, repository: str) -> List[str]:
        return [
            self.executable,
            "release",
            "list",
            "--json",
            GH_RELEASE_LIST_FIELDS,
            "--limit",
            str(self.release_limit),
            "-R",
            repository,
        ]

    def _view_command(self, repository: str, tag_name: str) -> List[str]:
        return [
            self.executable,
            "release",
            "view",
            tag_name,
            "--json",
            GH_RELEASE_VIEW_FIELDS,
            "-R",
            repository,
        ]

    async def list_releases(self, repository: str) -> List[ReleaseSummary]:
        command = self._list_command(repository)
        self.logger.debug("Running %s", " ".join(command))
        try:
            result = await run_command(command)
        except OSError as exc:
            raise QueryError(
                f"Could not run {self.executable}",
                repository=repository,
                details=str(exc),
            ) from exc

        if not result.ok:
            raise QueryError(
                "gh release list failed",
                repository=repository,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        try:
            payload: Any = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise QueryError(
                "gh release list returned invalid JSON",
                repository=repository,
                stdout=result.stdout,
                stderr=result.stderr,
                details=str(exc),
            ) from exc

        if not isinstance(payload, list):
            raise QueryError(
                f"Unexpected release list payload: expected array, got {type(payload).__name__}",
                repository=repository,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        try:
            releases = [ReleaseSummary.from_gh_json(item) for item in payload]
        except (KeyError, TypeError, ValueError) as exc:
            raise QueryError(
                "Malformed release entry in gh release list output",
                repository=repository,
                stdout=result.stdout,
                stderr=result.stderr,
                details=str(exc),
            ) from exc

        self.logger.debug("Listed %d releases for %s", len(releases), repository)
        return releases

    async def view_tarball_url(self, repository: str, tag_name: str) -> str:
        command = self._view_command(repository, tag_name)
        self.logger.debug("Running %s", " ".join(command))
        try:
            result = await run_command(command)
        except OSError as exc:
            raise ResolutionError(
                f"Could not run {self.executable}",
                repository=repository,
                tag=tag_name,
                details=str(exc),
            ) from exc

        if not result.ok:
            raise ResolutionError(
                "gh release view failed",
                repository=repository,
                tag=tag_name,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        try:
            payload: Any = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ResolutionError(
                "gh release view returned invalid JSON",
                repository=repository,
                tag=tag_name,
                stdout=result.stdout,
                stderr=result.stderr,
                details=str(exc),
            ) from exc

        tarball_url = payload.get("tarballUrl") if isinstance(payload, dict) else None
        if not isinstance(tarball_url, str) or not tarball_url:
            raise ResolutionError(
                "Release has an empty tarball URL",
                repository=repository,
                tag=tag_name,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return tarball_url
