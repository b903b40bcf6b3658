"""
Scratch Directory Management

Private scratch files for downloads, with disk space monitoring.
Every scratch file is removed when its context exits, whatever the outcome.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from ..constants import DEFAULT_DISK_SPACE_THRESHOLD
from ..errors import DiskSpaceError

logger = logging.getLogger(__name__)


class ScratchDirectoryManager:
    """Hands out scratch files for downloads in one directory."""

    def __init__(self, scratch_path: str | Path | None = None, capacity_threshold: float = DEFAULT_DISK_SPACE_THRESHOLD):
        """
        Args:
            scratch_path: Directory for scratch files (system temp dir when None)
            capacity_threshold: Disk usage threshold (0.0-1.0) to pause downloads
        """
        self.scratch_path = Path(scratch_path) if scratch_path is not None else Path(tempfile.gettempdir())
        self.capacity_threshold = capacity_threshold

        self.scratch_path.mkdir(parents=True, exist_ok=True)

    def get_disk_usage(self) -> tuple[int, int, float]:
        """
        Get disk usage information for the scratch directory.

        Returns:
            Tuple of (used_bytes, total_bytes, usage_ratio)
        """
        usage = shutil.disk_usage(self.scratch_path)
        used_bytes = usage.total - usage.free
        usage_ratio = used_bytes / usage.total if usage.total > 0 else 0.0
        return used_bytes, usage.total, usage_ratio

    def check_disk_space(self, required_bytes: int = 0) -> bool:
        """True if the download fits under the capacity threshold."""
        used_bytes, total_bytes, usage_ratio = self.get_disk_usage()
        projected_ratio = (used_bytes + required_bytes) / total_bytes if total_bytes > 0 else 0.0

        if projected_ratio >= self.capacity_threshold:
            logger.warning(
                f"Disk space limit reached: {usage_ratio:.1%} used (threshold: {self.capacity_threshold:.1%}). "
                f"Used: {used_bytes / (1024**3):.1f}GB / {total_bytes / (1024**3):.1f}GB"
            )
            return False
        return True

    async def wait_for_disk_space(self, required_bytes: int = 0, check_interval: int = 30, timeout: int = 600) -> None:
        """
        Block until the scratch directory has room for a download.

        Raises:
            DiskSpaceError: If timeout is reached without sufficient space
        """
        start_time = time.time()
        warned = False

        while not self.check_disk_space(required_bytes):
            if not warned:
                logger.info(f"Waiting for disk space in {self.scratch_path}, pausing downloads...")
                warned = True

            if time.time() - start_time >= timeout:
                _, _, usage_ratio = self.get_disk_usage()
                raise DiskSpaceError(
                    f"Timed out waiting for disk space after {timeout} seconds "
                    f"({usage_ratio:.1%} full, threshold {self.capacity_threshold:.1%})"
                )

            await asyncio.sleep(check_interval)

        if warned:
            logger.info("Disk space available, resuming downloads")

    @asynccontextmanager
    async def scratch_file(self, prefix: str = "release-") -> AsyncIterator[Path]:
        """Create an empty private scratch file and delete it on exit."""
        fd, name = tempfile.mkstemp(dir=self.scratch_path, prefix=prefix)
        os.close(fd)
        path = Path(name)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)
