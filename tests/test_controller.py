import asyncio
import signal
from unittest.mock import MagicMock

import pytest

from conftest import FakeHasher, FakeReleaseSource
from formulary.config import RunConfig
from formulary.exceptions import QueryError, RunCancelledError
from formulary.release.api_source import GitHubApiReleaseSource
from formulary.release.context import CancelSignal
from formulary.release.controller import (
    RunController,
    default_hasher_factory,
    default_source_factory,
    install_signal_handlers,
    run_with_signals,
)
from formulary.release.gh_source import GhCliReleaseSource
from formulary.release.interfaces import ReleaseSummary, RepositoryTarget

OTHER_URL = "https://example.com/other/tarball/2024.1"


@pytest.fixture
def two_repo_config(run_config, template_file):
    other = RepositoryTarget(repository="org/other", template_path=template_file)
    return RunConfig(
        repositories=run_config.repositories + (other,),
        output_dir=run_config.output_dir,
    )


@pytest.fixture
def two_repo_source(tool_releases, tool_source):
    tool_source.releases["org/other"] = [
        ReleaseSummary(tag_name="2024.1", is_latest=True)
    ]
    tool_source.urls["2024.1"] = OTHER_URL
    return tool_source


@pytest.mark.asyncio
class TestRunController:
    async def test_runs_repositories_in_order(
        self, run_context, two_repo_config, two_repo_source, tool_hasher, output_dir
    ):
        run_context.config = two_repo_config
        tool_hasher.contents[OTHER_URL] = b"other archive"
        controller = RunController(
            run_context,
            source_factory=lambda _ctx: two_repo_source,
            hasher_factory=lambda _ctx: tool_hasher,
        )

        summary = await controller.run()

        assert summary.repositories == ["org/tool", "org/other"]
        assert two_repo_source.list_calls == ["org/tool", "org/other"]
        assert summary.files_written == 5
        assert (output_dir / "other@20241.rb").exists()
        assert (output_dir / "other.rb").exists()
        assert two_repo_source.closed and tool_hasher.closed

    async def test_stops_after_first_failure(
        self, run_context, two_repo_config, two_repo_source, tool_hasher, output_dir
    ):
        run_context.config = two_repo_config
        two_repo_source.releases["org/tool"] = QueryError("gh release list failed")
        controller = RunController(
            run_context,
            source_factory=lambda _ctx: two_repo_source,
            hasher_factory=lambda _ctx: tool_hasher,
        )

        with pytest.raises(QueryError):
            await controller.run()

        assert two_repo_source.list_calls == ["org/tool"]
        assert not output_dir.exists()
        assert two_repo_source.closed and tool_hasher.closed

    async def test_cancel_during_download(
        self, run_context, tool_source, output_dir
    ):
        hasher = FakeHasher(
            {},
            blocking=[
                "https://example.com/tool/tarball/v1.0.0",
                "https://example.com/tool/tarball/v2.0.0",
            ],
        )
        controller = RunController(
            run_context,
            source_factory=lambda _ctx: tool_source,
            hasher_factory=lambda _ctx: hasher,
        )

        run = asyncio.create_task(controller.run())
        await asyncio.wait_for(hasher.started.wait(), timeout=1)
        run_context.cancel_signal.cancel("received SIGINT")

        with pytest.raises(RunCancelledError) as exc_info:
            await asyncio.wait_for(run, timeout=1)

        assert exc_info.value.reason == "received SIGINT"
        assert hasher.cancelled
        assert not output_dir.exists()
        assert tool_source.closed and hasher.closed

    async def test_cancelled_before_first_repository(
        self, run_context, tool_source, tool_hasher
    ):
        run_context.cancel_signal.cancel("received SIGTERM")
        controller = RunController(
            run_context,
            source_factory=lambda _ctx: tool_source,
            hasher_factory=lambda _ctx: tool_hasher,
        )

        with pytest.raises(RunCancelledError):
            await controller.run()

        assert tool_source.list_calls == []
        assert tool_source.closed


@pytest.mark.asyncio
async def test_run_with_signals_restores_handlers(
    mocker, run_config, test_logger, tool_source, tool_hasher
):
    restore = MagicMock()
    install = mocker.patch(
        "formulary.release.controller.install_signal_handlers", return_value=restore
    )

    summary = await run_with_signals(
        run_config,
        test_logger,
        source_factory=lambda _ctx: tool_source,
        hasher_factory=lambda _ctx: tool_hasher,
    )

    assert summary.files_written == 3
    install.assert_called_once()
    restore.assert_called_once_with()


class TestSignalHandlers:
    def test_uses_loop_signal_handlers(self):
        cancel_signal = CancelSignal()
        loop = MagicMock()

        restore = install_signal_handlers(cancel_signal, loop=loop)

        registered = [c.args[0] for c in loop.add_signal_handler.call_args_list]
        assert registered == [signal.SIGINT, signal.SIGTERM]

        handler = loop.add_signal_handler.call_args_list[0].args[1]
        handler()
        loop.call_soon_threadsafe.assert_called_once_with(
            cancel_signal.cancel, "received SIGINT"
        )

        restore()
        removed = [c.args[0] for c in loop.remove_signal_handler.call_args_list]
        assert removed == [signal.SIGINT, signal.SIGTERM]

    def test_falls_back_to_signal_module(self, mocker):
        cancel_signal = CancelSignal()
        loop = MagicMock()
        loop.add_signal_handler.side_effect = NotImplementedError
        previous = object()
        mock_signal = mocker.patch("signal.signal", return_value=previous)

        restore = install_signal_handlers(cancel_signal, loop=loop)

        assert [c.args[0] for c in mock_signal.call_args_list] == [
            signal.SIGINT,
            signal.SIGTERM,
        ]
        handler = mock_signal.call_args_list[1].args[1]
        handler(signal.SIGTERM, None)
        loop.call_soon_threadsafe.assert_called_once_with(
            cancel_signal.cancel, "received SIGTERM"
        )

        mock_signal.reset_mock()
        restore()
        mock_signal.assert_any_call(signal.SIGINT, previous)
        mock_signal.assert_any_call(signal.SIGTERM, previous)


class TestCancelSignal:
    def test_keeps_first_reason(self):
        cancel_signal = CancelSignal()
        cancel_signal.check()

        cancel_signal.cancel("received SIGINT")
        cancel_signal.cancel("run finished")

        assert cancel_signal.cancelled
        assert cancel_signal.reason == "received SIGINT"
        with pytest.raises(RunCancelledError):
            cancel_signal.check()


class TestFactories:
    def test_gh_source_is_default(self, run_context):
        source = default_source_factory(run_context)
        assert isinstance(source, GhCliReleaseSource)
        assert source.executable == run_context.config.gh_executable

    def test_api_source(self, run_context):
        run_context.config = run_context.config.with_overrides(
            source="api", github_token="ghp_test"
        )
        source = default_source_factory(run_context)
        assert isinstance(source, GitHubApiReleaseSource)
        assert source.github_token == "ghp_test"

    def test_hasher_uses_request_timeout(self, run_context):
        run_context.config = run_context.config.with_overrides(request_timeout=42.0)
        hasher = default_hasher_factory(run_context)
        assert hasher.timeout.total == 42.0
