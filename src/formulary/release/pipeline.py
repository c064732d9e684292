"""
Per-repository manifest generation.

Enumerates a repository's releases, validates the release index, then fans out
one asyncio task per release (resolve -> hash -> render -> write) and joins
them. The first failing task cancels its siblings and its error is re-raised.
"""

import asyncio
from enum import Enum
from typing import List, Optional, Sequence

from formulary.exceptions import (
    DuplicateVersionTokenError,
    NoLatestReleaseError,
    NoReleasesFoundError,
    PipelineError,
    ResolutionError,
)

from .context import RunContext
from .hasher import ArtifactHasher
from .interfaces import (
    ManifestOutput,
    ReleaseRecord,
    ReleaseSource,
    ReleaseSummary,
    RepositoryTarget,
)
from .naming import (
    alias_output_path,
    find_token_collisions,
    sanitize_version_token,
    versioned_output_path,
)
from .renderer import ManifestRenderer
from .writer import write_manifest


class PipelineState(str, Enum):
    ENUMERATING = "enumerating"
    LATEST_VALIDATED = "latest-validated"
    FANNING_OUT = "fanning-out"
    JOINED = "joined"
    DONE = "done"
    FAILED = "failed"


def select_latest(repository: str, releases: Sequence[ReleaseSummary]) -> ReleaseSummary:
    """
    Return the single release flagged latest.

    Raises:
        NoReleasesFoundError: If `releases` is empty.
        NoLatestReleaseError: If zero or several releases are flagged latest.
    """
    if not releases:
        raise NoReleasesFoundError("No releases found", repository=repository)
    latest = [release for release in releases if release.is_latest]
    if not latest:
        raise NoLatestReleaseError("No latest release found", repository=repository)
    if len(latest) > 1:
        raise NoLatestReleaseError(
            f"Expected exactly one latest release, found {len(latest)}",
            repository=repository,
            details=", ".join(release.tag_name for release in latest),
        )
    return latest[0]


async def join_fail_fast(
    tasks: Sequence["asyncio.Task[List[ManifestOutput]]"],
) -> List[List[ManifestOutput]]:
    """
    Wait for every task; on the first failure cancel the rest and re-raise it.

    If the caller itself is cancelled, every task is cancelled and awaited
    before the cancellation propagates, so no task outlives the join point.
    """
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failed = [task for task in done if not task.cancelled() and task.exception()]
    if failed or pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    if failed:
        # Several tasks may fail in the same loop iteration; report the first spawned
        first = min(failed, key=tasks.index)
        raise first.exception()  # type: ignore[misc]
    return [task.result() for task in tasks]


class RepositoryPipeline:
    """
    Generates the manifests of one repository.

    The pipeline is stateless between runs; `state` reflects the last run and is
    only informational.
    """

    def __init__(
        self,
        context: RunContext,
        source: ReleaseSource,
        hasher: ArtifactHasher,
    ) -> None:
        self.context = context
        self.source = source
        self.hasher = hasher
        self.state: Optional[PipelineState] = None

    @property
    def logger(self):
        return self.context.logger

    def _transition(self, target: RepositoryTarget, state: PipelineState) -> None:
        self.state = state
        self.logger.debug("%s: %s", target.repository, state.value)

    async def run(self, target: RepositoryTarget) -> List[ManifestOutput]:
        """
        Generate and write every manifest for `target`.

        Returns:
            List[ManifestOutput]: Everything written, versioned files and the alias.

        Raises:
            PipelineError: The first error encountered; already-written files stay.
            RunCancelledError: If the run-wide signal fired.
        """
        try:
            return await self._run(target)
        except BaseException as exc:
            if isinstance(exc, PipelineError):
                exc.with_release(target.repository, None)
            self._transition(target, PipelineState.FAILED)
            raise

    async def _run(self, target: RepositoryTarget) -> List[ManifestOutput]:
        config = self.context.config
        cancel_signal = self.context.cancel_signal

        renderer = ManifestRenderer.from_file(target.template_path)
        self.logger.info(f"Loaded template {renderer.name} for {target.repository}")

        self._transition(target, PipelineState.ENUMERATING)
        cancel_signal.check()
        releases = await self.source.list_releases(target.repository)
        self.logger.info(f"Found {len(releases)} releases for {target.repository}")

        latest = select_latest(target.repository, releases)
        collisions = find_token_collisions(release.tag_name for release in releases)
        if collisions:
            raise DuplicateVersionTokenError(
                "Release tags map to the same versioned manifest",
                repository=target.repository,
                details="; ".join(
                    f"{token!r}: {', '.join(tags)}" for token, tags in collisions.items()
                ),
            )
        self._transition(target, PipelineState.LATEST_VALIDATED)
        self.logger.info(f"Latest release of {target.repository} is {latest.tag_name}")

        self._transition(target, PipelineState.FANNING_OUT)
        cancel_signal.check()
        tasks = [
            asyncio.create_task(
                self._process_release(target, renderer, release),
                name=f"{target.repository}@{release.tag_name}",
            )
            for release in releases
        ]
        results = await join_fail_fast(tasks)
        self._transition(target, PipelineState.JOINED)

        outputs = [output for written in results for output in written]
        self._transition(target, PipelineState.DONE)
        self.logger.info(
            f"Wrote {len(outputs)} manifests for {target.repository} to {config.output_dir}"
        )
        return outputs

    async def _process_release(
        self,
        target: RepositoryTarget,
        renderer: ManifestRenderer,
        release: ReleaseSummary,
    ) -> List[ManifestOutput]:
        try:
            return await self._generate(target, renderer, release)
        except PipelineError as exc:
            exc.with_release(target.repository, release.tag_name)
            raise

    async def _generate(
        self,
        target: RepositoryTarget,
        renderer: ManifestRenderer,
        release: ReleaseSummary,
    ) -> List[ManifestOutput]:
        config = self.context.config
        cancel_signal = self.context.cancel_signal
        tag = release.tag_name

        cancel_signal.check()
        tarball_url = await self.source.view_tarball_url(target.repository, tag)
        if not tarball_url:
            raise ResolutionError("Release has an empty tarball URL")
        self.logger.debug(f"{target.repository}@{tag}: tarball {tarball_url}")

        cancel_signal.check()
        digest = await self.hasher.hash_url(tarball_url)

        record = ReleaseRecord.from_summary(release, tarball_url, digest)
        version_token = sanitize_version_token(tag)
        content = renderer.render(
            record.template_context(
                repository=target.repository,
                short_name=target.short_name,
                version=version_token,
            )
        )

        cancel_signal.check()
        versioned = ManifestOutput(
            path=versioned_output_path(
                config.output_dir, target.short_name, version_token, config.extension
            ),
            content=content,
        )
        await write_manifest(versioned)
        self.logger.info(f"Wrote {versioned.path} ({tag}, sha256 {digest})")
        outputs = [versioned]

        if release.is_latest:
            alias = versioned.aliased(
                alias_output_path(config.output_dir, target.short_name, config.extension)
            )
            await write_manifest(alias)
            self.logger.info(f"Wrote {alias.path} (latest: {tag})")
            outputs.append(alias)

        return outputs
