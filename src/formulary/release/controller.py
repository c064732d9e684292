"""
Run control: repositories in sequence, one cancellation signal for the run.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from formulary.config import RunConfig
from formulary.constants import SOURCE_API
from formulary.exceptions import RunCancelledError

from .api_source import GitHubApiReleaseSource
from .context import CancelSignal, RunContext
from .gh_source import GhCliReleaseSource
from .hasher import ArtifactHasher
from .interfaces import ManifestOutput, ReleaseSource, RepositoryTarget
from .pipeline import RepositoryPipeline

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)

SourceFactory = Callable[[RunContext], ReleaseSource]
HasherFactory = Callable[[RunContext], ArtifactHasher]


def default_source_factory(context: RunContext) -> ReleaseSource:
    """Build the release source selected by `config.source`."""
    config = context.config
    if config.source == SOURCE_API:
        return GitHubApiReleaseSource(
            github_token=config.github_token,
            release_limit=config.release_limit,
            logger=context.logger,
        )
    return GhCliReleaseSource(
        executable=config.gh_executable,
        release_limit=config.release_limit,
        logger=context.logger,
    )


def default_hasher_factory(context: RunContext) -> ArtifactHasher:
    return ArtifactHasher(
        timeout=context.config.request_timeout,
        github_token=context.config.github_token,
        logger=context.logger,
    )


@dataclass
class RunSummary:
    """What a successful run produced."""

    repositories: List[str] = field(default_factory=list)
    outputs: List[ManifestOutput] = field(default_factory=list)

    @property
    def files_written(self) -> int:
        return len(self.outputs)


class RunController:
    """
    Runs the repository pipeline for each configured repository in order.

    Every error is fatal: the first failure (or a cancellation request) stops the
    run and propagates to the caller. Repositories after the failing one are not
    started.
    """

    def __init__(
        self,
        context: RunContext,
        source_factory: SourceFactory = default_source_factory,
        hasher_factory: HasherFactory = default_hasher_factory,
    ) -> None:
        self.context = context
        self.source_factory = source_factory
        self.hasher_factory = hasher_factory

    @property
    def cancel_signal(self) -> CancelSignal:
        return self.context.cancel_signal

    async def _run_cancellable(
        self, pipeline: RepositoryPipeline, target: RepositoryTarget
    ) -> List[ManifestOutput]:
        """
        Run one pipeline, cancelling it as soon as the run-wide signal fires.

        Raises:
            RunCancelledError: If the signal fired before the pipeline finished.
        """
        self.cancel_signal.check()
        work = asyncio.create_task(pipeline.run(target), name=target.repository)
        watcher = asyncio.create_task(self.cancel_signal.wait(), name="cancel-watcher")
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watcher.cancel()
            if not work.done():
                work.cancel()
            await asyncio.gather(work, watcher, return_exceptions=True)

        if work.cancelled():
            raise RunCancelledError(reason=self.cancel_signal.reason)
        return work.result()

    async def run(self) -> RunSummary:
        """
        Process every configured repository.

        Raises:
            FormularyError: The first pipeline error, or RunCancelledError.
        """
        config = self.context.config
        logger = self.context.logger
        summary = RunSummary()

        source = self.source_factory(self.context)
        hasher = self.hasher_factory(self.context)
        try:
            for target in config.repositories:
                logger.info(f"Starting repository {target.repository}")
                pipeline = RepositoryPipeline(self.context, source, hasher)
                outputs = await self._run_cancellable(pipeline, target)
                summary.repositories.append(target.repository)
                summary.outputs.extend(outputs)
        finally:
            await source.close()
            await hasher.close()

        logger.info(
            f"Generated {summary.files_written} manifests for "
            f"{len(summary.repositories)} repositories"
        )
        return summary


def install_signal_handlers(
    cancel_signal: CancelSignal,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    logger: Optional[logging.Logger] = None,
) -> Callable[[], None]:
    """
    Translate SIGINT/SIGTERM into `cancel_signal.cancel()`.

    Uses `loop.add_signal_handler` where available and falls back to
    `signal.signal` (Windows). Returns a callable that restores the previous
    handlers.
    """
    loop = loop or asyncio.get_running_loop()

    def _make_handler(signum: int) -> Callable[..., None]:
        def _handler(*_args: Any) -> None:
            name = signal.Signals(signum).name
            if logger is not None:
                logger.warning(f"Received {name}, cancelling run")
            loop.call_soon_threadsafe(cancel_signal.cancel, f"received {name}")

        return _handler

    restore: List[Callable[[], None]] = []
    for signum in TERMINATION_SIGNALS:
        handler = _make_handler(signum)
        try:
            loop.add_signal_handler(signum, handler)
            restore.append(lambda signum=signum: loop.remove_signal_handler(signum))
        except (NotImplementedError, RuntimeError):
            previous = signal.signal(signum, handler)
            restore.append(
                lambda signum=signum, previous=previous: signal.signal(signum, previous)
            )

    def _restore() -> None:
        for undo in restore:
            undo()

    return _restore


async def run_with_signals(
    config: RunConfig,
    logger: logging.Logger,
    source_factory: SourceFactory = default_source_factory,
    hasher_factory: HasherFactory = default_hasher_factory,
) -> RunSummary:
    """Run the controller with process termination signals wired to cancellation."""
    context = RunContext(config=config, logger=logger)
    restore = install_signal_handlers(context.cancel_signal, logger=logger)
    try:
        return await RunController(context, source_factory, hasher_factory).run()
    finally:
        restore()
        # Fires on completion too, so any stray waiter unblocks
        context.cancel_signal.cancel("run finished")


def run_sync(config: RunConfig, logger: logging.Logger) -> RunSummary:
    """Blocking entry point used by the CLI."""
    return asyncio.run(run_with_signals(config, logger))
