"""
Mirror Index

Registry of already-mirrored assets: project -> version -> filename -> public URL.
Loaded from and persisted to a JSON document.
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TypeAlias

import aiofiles

from .common import Filename, Project, Version, asset_label
from .errors import CorruptStateError, SerializationError

logger = logging.getLogger(__name__)

IndexData: TypeAlias = dict[Project, dict[Version, dict[Filename, str]]]


def validate_index_data(data: object, source: str = "index") -> IndexData:
    """Check that decoded JSON has the three-level string mapping shape."""
    if not isinstance(data, dict):
        raise CorruptStateError(f"{source}: top level must be an object, got {type(data).__name__}")

    for project, versions in data.items():
        if not isinstance(versions, dict):
            raise CorruptStateError(f"{source}: entry for project {project!r} must be an object")
        for version, files in versions.items():
            if not isinstance(files, dict):
                raise CorruptStateError(f"{source}: entry for {project}/{version} must be an object")
            for filename, url in files.items():
                if not isinstance(url, str):
                    raise CorruptStateError(f"{source}: URL for {project}/{version}/{filename} must be a string")
    return data


class MirrorIndex:
    """
    In-memory index of mirrored assets.

    All access goes through an asyncio lock so concurrent mirror workers can
    record results while the orchestrator reads or persists.
    """

    def __init__(self, data: IndexData | None = None):
        self._data: IndexData = data if data is not None else {}
        self._lock = asyncio.Lock()

    @classmethod
    async def load(cls, source: str | Path) -> "MirrorIndex":
        """
        Load an index document.

        A missing or empty document yields an empty index so the first run can bootstrap.

        Raises:
            CorruptStateError: If the document is not valid JSON of the expected shape
        """
        path = Path(source)
        if not path.exists():
            logger.info(f"Index {path} does not exist yet, starting empty")
            return cls()

        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise CorruptStateError(f"Failed to read index {path}: {e}") from e

        if not content.strip():
            logger.info(f"Index {path} is empty, starting empty")
            return cls()

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CorruptStateError(f"Invalid JSON in index {path}: {e}") from e

        index = cls(validate_index_data(data, str(path)))
        logger.info(f"Loaded {len(index)} mirror records from {path}")
        return index

    async def contains(self, project: str, version: str, filename: str) -> bool:
        """Exact, case-sensitive lookup of one asset."""
        return await self.get(project, version, filename) is not None

    async def get(self, project: str, version: str, filename: str) -> str | None:
        """Return the recorded URL of an asset, if any."""
        async with self._lock:
            return self._data.get(project, {}).get(version, {}).get(filename)

    async def record(self, project: str, version: str, filename: str, url: str) -> None:
        """Insert or overwrite one record, creating intermediate levels as needed."""
        async with self._lock:
            files = self._data.setdefault(project, {}).setdefault(version, {})
            previous = files.get(filename)
            if previous is not None and previous != url:
                logger.warning(f"{asset_label(project, version, filename)} URL changed from {previous} to {url}")
            files[filename] = url

    async def snapshot(self) -> IndexData:
        """Deep copy of the current mapping."""
        async with self._lock:
            return copy.deepcopy(self._data)

    def projects(self) -> list[str]:
        return sorted(self._data)

    def __len__(self) -> int:
        return sum(len(files) for versions in self._data.values() for files in versions.values())

    async def persist(self, destination: str | Path) -> None:
        """
        Write the index atomically.

        The document is written to a temporary file next to the destination and
        renamed over it, so a failure leaves the previous document intact.

        Raises:
            SerializationError: If the index cannot be encoded or written
        """
        path = Path(destination)
        data = await self.snapshot()

        try:
            content = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Failed to encode index: {e}") from e

        temp_path: Path | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            os.close(fd)
            temp_path = Path(temp_name)

            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
                os.fsync(f.fileno())

            # mkstemp creates 0600 files; the document is published with the site
            os.chmod(temp_path, 0o644)
            os.replace(temp_path, path)
            temp_path = None
        except OSError as e:
            raise SerializationError(f"Failed to write index {path}: {e}") from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

        logger.info(f"Persisted {sum(len(f) for v in data.values() for f in v.values())} mirror records to {path}")
