"""Shared test configuration utilities and fixtures."""

from pathlib import Path
from typing import cast
from unittest.mock import patch

import pytest

from release_mirror.index import MirrorIndex
from release_mirror.models import EnumerationMode
from release_mirror.run_config import RunConfig, StorageConfig
from release_mirror.storage import ScratchDirectoryManager
from tests.test_utils.fakes import FakeGitHubClient, FakeStorage


def _no_sleep(seconds):
    """Synchronous sleep stub used to short-circuit tenacity waits in tests."""
    return None


@pytest.fixture(scope="session", autouse=True)
def disable_retry_delays():
    """Disable retry delays globally for all tests to speed up test suite.

    Retries will still happen (testing retry logic), but without wait times.
    Only patches tenacity's internal sleep functions, not asyncio.sleep globally.
    """
    import tenacity

    original_base_run_wait = tenacity.BaseRetrying._run_wait
    original_async_run_wait = tenacity.AsyncRetrying._run_wait

    def _zero_wait(self, retry_state):
        """Invoke original wait logic but force the computed delay to zero."""
        original_base_run_wait(self, retry_state)
        retry_state.upcoming_sleep = 0.0

    async def _zero_wait_async(self, retry_state):
        """Async equivalent that still computes retry metadata without sleeping."""
        await original_async_run_wait(self, retry_state)
        retry_state.upcoming_sleep = 0.0

    with patch("tenacity.nap.sleep", side_effect=_no_sleep):
        with patch.object(tenacity.BaseRetrying, "_run_wait", _zero_wait):
            with patch.object(tenacity.AsyncRetrying, "_run_wait", _zero_wait_async):
                yield


class ConfigBuilder:
    """Builder for creating test RunConfig instances with common configurations."""

    def __init__(self, data_file: Path):
        storage_config: StorageConfig = {
            "type": "qingstor",
            "config": {"bucket_name": "releases", "bucket_location": "pek3b"},
        }
        self._config = {
            "projects": ("demo",),
            "owner": "qingstor",
            "mode": EnumerationMode.ALL,
            "data_file": data_file,
            "storage_config": storage_config,
            "concurrency": 4,
        }

    def with_projects(self, *projects: str):
        self._config["projects"] = projects
        return self

    def latest_only(self):
        self._config["mode"] = EnumerationMode.LATEST
        return self

    def local_storage(self, base_path: str, bucket: str = "releases"):
        """Configure local storage."""
        self._config["storage_config"] = cast(
            StorageConfig, {"type": "local", "config": {"bucket_name": bucket, "base_path": base_path}}
        )
        return self

    def with_options(self, **kwargs):
        """Set any other RunConfig field."""
        self._config.update(kwargs)
        return self

    def build(self) -> RunConfig:
        """Build the RunConfig instance."""
        return RunConfig(**self._config)


@pytest.fixture
def data_file(tmp_path) -> Path:
    return tmp_path / "site" / "data.json"


@pytest.fixture
def test_config_builder(data_file):
    """Fixture that provides a ConfigBuilder instance."""
    return ConfigBuilder(data_file)


@pytest.fixture
def scratch(tmp_path) -> ScratchDirectoryManager:
    # Threshold of 1.0 keeps tests independent of how full the host disk is
    return ScratchDirectoryManager(tmp_path / "scratch", capacity_threshold=1.0)


@pytest.fixture
def fake_client() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def index() -> MirrorIndex:
    return MirrorIndex()
