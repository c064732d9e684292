"""
Core Interfaces for the Formulary Release Pipeline

This module defines the data structures passed between the pipeline stages and
the interface every release source implements.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .naming import repository_short_name


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp as returned by GitHub into an aware datetime.

    Returns:
        Optional[datetime]: The parsed timestamp, or None when the value is empty.

    Raises:
        ValueError: If the value is present but is not a valid timestamp string.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError(f"expected timestamp string, got {type(value).__name__}")
    # fromisoformat only accepts a trailing "Z" from Python 3.11 onwards
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class RepositoryTarget:
    """A configured repository together with the template its manifests use."""

    repository: str
    """Repository identifier, e.g. 'goutls/protoc-gen-go-extend'"""

    template_path: Path
    """Template file rendered once per release"""

    @property
    def short_name(self) -> str:
        """Last path segment of the repository identifier."""
        return repository_short_name(self.repository)


@dataclass
class ReleaseSummary:
    """Represents one entry of a repository's release index."""

    tag_name: str
    """The release tag (e.g., 'v0.0.17')"""

    name: str = ""
    """Human-readable release title"""

    created_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    is_draft: bool = False
    is_latest: bool = False
    is_prerelease: bool = False

    @classmethod
    def from_gh_json(cls, data: Dict[str, Any]) -> "ReleaseSummary":
        """
        Build a summary from one item of `gh release list --json` output.

        Raises:
            KeyError: If `tagName` is missing.
            ValueError: If `tagName` is empty or a timestamp is malformed.
            TypeError: If `data` is not a mapping.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected object, got {type(data).__name__}")
        tag_name = data["tagName"]
        if not isinstance(tag_name, str) or not tag_name.strip():
            raise ValueError("release entry has an empty tagName")
        return cls(
            tag_name=tag_name,
            name=data.get("name") or "",
            created_at=parse_timestamp(data.get("createdAt")),
            published_at=parse_timestamp(data.get("publishedAt")),
            is_draft=bool(data.get("isDraft", False)),
            is_latest=bool(data.get("isLatest", False)),
            is_prerelease=bool(data.get("isPrerelease", False)),
        )


@dataclass
class ReleaseRecord(ReleaseSummary):
    """A release summary enriched with its resolved tarball and digest."""

    tarball_url: str = ""
    """Download location of the release's source archive"""

    tarball_sha256: str = ""
    """Lowercase hex SHA-256 of the archive bytes served at `tarball_url`"""

    @classmethod
    def from_summary(
        cls, summary: ReleaseSummary, tarball_url: str, tarball_sha256: str
    ) -> "ReleaseRecord":
        """
        Enrich a summary into a record.

        Raises:
            ValueError: If the URL or digest is empty.
        """
        if not tarball_url:
            raise ValueError(f"release {summary.tag_name} has no tarball URL")
        if not tarball_sha256:
            raise ValueError(f"release {summary.tag_name} has no tarball digest")
        values = {f.name: getattr(summary, f.name) for f in fields(ReleaseSummary)}
        return cls(**values, tarball_url=tarball_url, tarball_sha256=tarball_sha256)

    def template_context(self, **extra: Any) -> Dict[str, Any]:
        """Return the mapping exposed to manifest templates."""
        context = {f.name: getattr(self, f.name) for f in fields(self)}
        context.update(extra)
        return context


@dataclass(frozen=True)
class ManifestOutput:
    """Rendered manifest bytes and the path they are written to."""

    path: Path
    content: bytes = field(repr=False)

    def aliased(self, path: Path) -> "ManifestOutput":
        """Return the same content bound to another path."""
        return replace(self, path=path)


class ReleaseSource(ABC):
    """
    Abstract interface for querying a hosting platform's releases.

    Implementations must be safe to call concurrently from many tasks and must
    abandon their external request promptly when the awaiting task is cancelled.
    """

    @abstractmethod
    async def list_releases(self, repository: str) -> List[ReleaseSummary]:
        """
        Return the repository's release index in platform order.

        Raises:
            QueryError: On transport, authentication or malformed-response errors.
        """

    @abstractmethod
    async def view_tarball_url(self, repository: str, tag_name: str) -> str:
        """
        Return the tarball URL for a release. Never returns an empty string.

        Raises:
            ResolutionError: On query failure or when the URL is empty.
        """

    async def close(self) -> None:
        """Release any resources held by the source."""
