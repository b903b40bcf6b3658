"""Tests for the command-line entry point and its exit codes."""

from unittest.mock import MagicMock, patch

import pytest

from release_mirror import cli
from release_mirror.errors import CorruptStateError, SerializationError, StorageError, TransportError
from release_mirror.models import EnumerationMode, SyncStats
from release_mirror.run_config import ENV_VARIABLES


class FakePipeline:
    """Stands in for SyncPipeline; run() returns stats or raises the configured error."""

    def __init__(self, config, outcome):
        self.config = config
        self.outcome = outcome
        self.closed = False

    async def run(self):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    for name in ENV_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("QINGSTOR_BUCKET_NAME", "releases")
    monkeypatch.setenv("MIRROR_STORAGE_TYPE", "local")
    monkeypatch.setenv("MIRROR_BASE_PATH", str(tmp_path / "bucket-root"))
    with patch("release_mirror.cli.setup_logging"):
        yield


@pytest.mark.asyncio
async def test_successful_run_exits_zero():
    created = []

    def from_run_config(config):
        created.append(FakePipeline(config, SyncStats(projects=1, mirrored=2)))
        return created[-1]

    with patch.object(cli.SyncPipeline, "from_run_config", side_effect=from_run_config):
        assert await cli.main([]) == 0

    assert created[0].closed is True


@pytest.mark.asyncio
async def test_flags_override_configuration(tmp_path):
    created = []

    def from_run_config(config):
        created.append(FakePipeline(config, SyncStats()))
        return created[-1]

    argv = [
        "--latest-only",
        "--project",
        "qsctl",
        "--project",
        "snapshots",
        "--data-file",
        str(tmp_path / "data.json"),
        "--concurrency",
        "2",
        "--failure-policy",
        "asset",
        "--dry-run",
    ]
    with patch.object(cli.SyncPipeline, "from_run_config", side_effect=from_run_config):
        assert await cli.main(argv) == 0

    config = created[0].config
    assert config.projects == ("qsctl", "snapshots")
    assert config.mode is EnumerationMode.LATEST
    assert config.data_file == tmp_path / "data.json"
    assert config.concurrency == 2
    assert config.failure_policy == "asset"
    assert config.dry_run is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,exit_code,step",
    [
        (CorruptStateError("bad index"), 3, "loading index"),
        (TransportError("HTTP 502"), 4, "talking to GitHub"),
        (StorageError("permission denied"), 5, "storage"),
        (SerializationError("read-only filesystem"), 6, "writing index"),
        (RuntimeError("bug"), 1, "unexpected error"),
    ],
)
async def test_errors_map_to_exit_codes(error, exit_code, step, capsys):
    def from_run_config(config):
        return FakePipeline(config, error)

    with patch.object(cli.SyncPipeline, "from_run_config", side_effect=from_run_config):
        assert await cli.main([]) == exit_code

    err = capsys.readouterr().err
    assert f"Mirror failed ({step})" in err
    assert str(error) in err


@pytest.mark.asyncio
async def test_failed_projects_exit_with_transport_code(capsys):
    stats = SyncStats(projects=2, failed_projects={"snapshots": "HTTP 404 Not Found"})

    with patch.object(cli.SyncPipeline, "from_run_config", side_effect=lambda config: FakePipeline(config, stats)):
        assert await cli.main([]) == 4

    assert "snapshots" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_missing_bucket_is_a_configuration_error(monkeypatch, capsys):
    monkeypatch.delenv("QINGSTOR_BUCKET_NAME")

    assert await cli.main([]) == 2
    assert "Mirror failed (configuration)" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_invalid_config_file_is_a_configuration_error(tmp_path):
    config_path = tmp_path / "mirror.json"
    config_path.write_text("{")

    assert await cli.main(["--config", str(config_path)]) == 2


def test_unknown_failure_policy_is_rejected_by_parser():
    with pytest.raises(SystemExit) as exc_info:
        cli.build_parser().parse_args(["--failure-policy", "sometimes"])

    assert exc_info.value.code == 2


def test_entry_point_interrupted():
    with (
        patch("release_mirror.cli.main", MagicMock()),
        patch("release_mirror.cli.asyncio.run", side_effect=KeyboardInterrupt),
    ):
        with pytest.raises(SystemExit) as exc_info:
            cli.entry_point()

    assert exc_info.value.code == 130


def test_entry_point_exits_with_main_result():
    with (
        patch("release_mirror.cli.main", MagicMock()),
        patch("release_mirror.cli.asyncio.run", return_value=5),
    ):
        with pytest.raises(SystemExit) as exc_info:
            cli.entry_point()

    assert exc_info.value.code == 5
