from pathlib import Path

import pytest

from formulary import cli
from formulary.constants import EXIT_CANCELLED, EXIT_FAILURE, EXIT_OK
from formulary.exceptions import FetchError, RunCancelledError


@pytest.fixture(autouse=True)
def _isolate_logging(mocker, test_logger):
    mocker.patch.object(cli.log_utils, "configure_logging", return_value=test_logger)


@pytest.fixture
def config_file(tmp_path, template_file, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "config.yaml"
    path.write_text(
        "outputDir: ./Formula\n"
        "repositories:\n"
        "  - repository: org/tool\n"
        f"    templateFileName: {template_file}\n",
        encoding="utf-8",
    )
    return path


def test_version_command(capsys):
    assert cli.main(["version"]) == EXIT_OK
    assert capsys.readouterr().out.startswith("Formulary v")


def test_no_command_prints_help(capsys):
    assert cli.main([]) == EXIT_OK
    assert "generate" in capsys.readouterr().out


def test_generate_success(mocker, config_file, tmp_path):
    run_sync = mocker.patch("formulary.cli.run_sync")

    assert cli.main(["generate", "--config", str(config_file)]) == EXIT_OK

    config = run_sync.call_args.args[0]
    assert [t.repository for t in config.repositories] == ["org/tool"]
    assert config.output_dir == tmp_path / "Formula"


def test_generate_cli_overrides(mocker, config_file, tmp_path):
    run_sync = mocker.patch("formulary.cli.run_sync")

    exit_code = cli.main(
        ["generate", "-c", str(config_file), "-o", str(tmp_path / "tap"), "--source", "api"]
    )

    assert exit_code == EXIT_OK
    config = run_sync.call_args.args[0]
    assert config.output_dir == Path(tmp_path / "tap")
    assert config.source == "api"


def test_generate_missing_config(mocker, tmp_path):
    run_sync = mocker.patch("formulary.cli.run_sync")

    exit_code = cli.main(["generate", "--config", str(tmp_path / "missing.yaml")])

    assert exit_code == EXIT_FAILURE
    run_sync.assert_not_called()


def test_generate_pipeline_failure(mocker, config_file, test_logger):
    error = FetchError("HTTP error 404", url="https://x", status_code=404)
    error.with_release("org/tool", "v1.0.0")
    mocker.patch("formulary.cli.run_sync", side_effect=error)
    log_error = mocker.spy(test_logger, "error")

    assert cli.main(["generate", "--config", str(config_file)]) == EXIT_FAILURE

    logged = " ".join(str(call.args[0]) for call in log_error.call_args_list)
    assert "org/tool" in logged
    assert "v1.0.0" in logged
    assert "404" in logged


@pytest.mark.parametrize(
    "raised", [RunCancelledError(reason="received SIGINT"), KeyboardInterrupt()]
)
def test_generate_cancelled(mocker, config_file, raised):
    mocker.patch("formulary.cli.run_sync", side_effect=raised)

    assert cli.main(["generate", "--config", str(config_file)]) == EXIT_CANCELLED
