"""
Mirror Worker

Mirrors one asset: existence check, download to a scratch file, upload, record.
"""

import logging
from pathlib import Path

import aiofiles
import aiohttp

from ..assets import AssetResolver
from ..client import GitHubClient, retry_transient, translate_transport_errors
from ..common import asset_label, format_bytes
from ..errors import ObjectNotFoundError
from ..index import MirrorIndex
from ..models import Asset, MirrorResult, MirrorState, Release, StorageLocation
from ..storage import ScratchDirectoryManager, Storage

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


@retry_transient
async def stream_asset_to_file(client: GitHubClient, url: str, to_path: Path) -> int:
    """Download url into to_path, returning the number of bytes written. Retried as a whole."""
    total_bytes = 0
    async with client.download_asset(url) as response:
        # "wb" truncates whatever an earlier attempt left behind
        async with aiofiles.open(to_path, "wb") as f:
            async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                await f.write(chunk)
                total_bytes += len(chunk)
            await f.flush()

        expected = response.content_length
        if expected is not None and expected != total_bytes:
            raise aiohttp.ClientPayloadError(f"Incomplete download: expected {expected} bytes, got {total_bytes}")

    actual_size = to_path.stat().st_size
    if actual_size != total_bytes:
        raise aiohttp.ClientPayloadError(f"File size mismatch: wrote {total_bytes}, found {actual_size} on disk")
    return total_bytes


async def download_asset_to_file(client: GitHubClient, asset: Asset, to_path: Path) -> int:
    """Download an asset's bytes; failures surface as TransportError."""
    with translate_transport_errors(f"download {asset.name}"):
        return await stream_asset_to_file(client, asset.browser_download_url, to_path)


class MirrorWorker:
    """
    Runs the per-asset state machine UNCHECKED -> PRESENT | MISSING -> MIRRORED.

    The worker records successful outcomes into the index but never persists it.
    """

    def __init__(
        self,
        client: GitHubClient,
        storage: Storage,
        index: MirrorIndex,
        resolver: AssetResolver,
        scratch: ScratchDirectoryManager,
        location: StorageLocation,
        dry_run: bool = False,
        trust_index: bool = False,
    ):
        self.client = client
        self.storage = storage
        self.index = index
        self.resolver = resolver
        self.scratch = scratch
        self.location = location
        self.dry_run = dry_run
        self.trust_index = trust_index

    async def mirror(self, project: str, release: Release, asset: Asset) -> MirrorResult:
        """
        Mirror one asset.

        Raises:
            StorageError: If the existence check fails for a reason other than "not found",
                or the upload fails. The index is left untouched for this asset.
            TransportError: If the download fails.
        """
        path = self.resolver.target_path(project, release, asset)
        url = self.resolver.public_url(self.location.bucket_name, self.location.location, path)
        label = asset_label(project, release.tag_name, asset.name)
        result = MirrorResult(project=project, version=release.tag_name, filename=asset.name, target_path=path)

        result.state = await self.check(project, release, asset, path, url)

        if result.state is MirrorState.MISSING:
            if self.dry_run:
                logger.info(f"{label} Missing from storage, would mirror to {path} (dry run)")
                result.state = MirrorState.PLANNED
                return result

            logger.info(f"{label} File {path} does not exist, mirroring")
            result.bytes_transferred = await self.download_and_upload(asset, path, label)
            result.state = MirrorState.MIRRORED

        logger.debug(f"{label} Recording {url}")
        await self.index.record(project, release.tag_name, asset.name, url)
        result.url = url
        return result

    async def check(self, project: str, release: Release, asset: Asset, path: str, url: str) -> MirrorState:
        """Decide whether the asset is PRESENT or MISSING."""
        label = asset_label(project, release.tag_name, asset.name)

        if self.trust_index and await self.index.get(project, release.tag_name, asset.name) == url:
            logger.debug(f"{label} Already in index, skipping existence check")
            return MirrorState.PRESENT

        logger.info(f"{label} Checking if {path} exists")
        try:
            await self.storage.stat(path)
        except ObjectNotFoundError:
            return MirrorState.MISSING

        logger.info(f"{label} File {path} exists")
        return MirrorState.PRESENT

    async def download_and_upload(self, asset: Asset, path: str, label: str) -> int:
        """Transfer an asset through a scratch file; returns the byte count uploaded."""
        async with self.scratch.scratch_file() as scratch_path:
            await self.scratch.wait_for_disk_space(asset.size or 0)

            logger.info(f"{label} Downloading {asset.browser_download_url}")
            size = await download_asset_to_file(self.client, asset, scratch_path)

            logger.info(f"{label} Uploading {format_bytes(size)} to {path}")
            await self.storage.write_file(path, scratch_path, size)

        return size
