#!/usr/bin/env python3
"""
Sync Pipeline Orchestration

Drives enumerate -> resolve -> mirror -> record -> persist across the configured projects.
"""

import asyncio
import logging
import time

from ..assets import AssetResolver
from ..client import GitHubClient
from ..common import format_bytes, format_duration, pluralize
from ..errors import MirrorError, SerializationError, TransportError
from ..index import MirrorIndex
from ..models import Asset, MirrorResult, MirrorState, Release, SyncStats
from ..releases import ReleaseEnumerator
from ..run_config import RunConfig
from ..storage import ScratchDirectoryManager, Storage, create_storage_from_config
from .worker import MirrorWorker

logger = logging.getLogger(__name__)


class SyncPipeline:
    """Mirrors the releases of every configured project into storage and keeps the index current."""

    @classmethod
    def from_run_config(cls, config: RunConfig) -> "SyncPipeline":
        """Create a SyncPipeline with live collaborators built from a RunConfig.

        Args:
            config: RunConfig containing all pipeline configuration

        Returns:
            Configured SyncPipeline instance
        """
        config.validate()
        client = GitHubClient(
            token=config.github_token, timeout=config.request_timeout, download_timeout=config.download_timeout
        )
        storage = create_storage_from_config(config.storage_config)
        scratch = ScratchDirectoryManager(config.staging_dir, capacity_threshold=config.disk_space_threshold)
        return cls(config, client, storage, scratch)

    def __init__(
        self,
        config: RunConfig,
        client: GitHubClient,
        storage: Storage,
        scratch: ScratchDirectoryManager,
        index: MirrorIndex | None = None,
    ):
        self.config = config
        self.client = client
        self.storage = storage
        self.scratch = scratch
        self.index = index

        self.enumerator = ReleaseEnumerator(client, config.owner, config.mode)
        self.resolver = AssetResolver(client, config.owner, config.public_url_template)
        self.stats = SyncStats()

    async def run(self) -> SyncStats:
        """
        Run the mirror over all configured projects.

        Returns:
            SyncStats for the run. Projects that failed under the "project" or
            "asset" policy are listed in stats.failed_projects.

        Raises:
            MirrorError: Fatal errors (storage, configuration, corrupt state, serialization,
                and transport errors under the "abort" policy) after partial progress is persisted
        """
        start_time = time.time()
        self.stats = SyncStats()

        if self.index is None:
            self.index = await MirrorIndex.load(self.config.data_file)

        location = await self.storage.metadata()
        logger.info(f"Mirroring into bucket {location.bucket_name} ({location.location})")
        if self.config.dry_run:
            logger.info("DRY RUN: no files will be uploaded and the index will not be written")

        worker = MirrorWorker(
            self.client,
            self.storage,
            self.index,
            self.resolver,
            self.scratch,
            location,
            dry_run=self.config.dry_run,
            trust_index=self.config.trust_index,
        )

        try:
            for project in self.config.projects:
                await self._run_project(project, worker)
        except (MirrorError, asyncio.CancelledError):
            await self._persist_partial()
            raise

        await self._persist()
        self._log_summary(time.time() - start_time)
        return self.stats

    async def _run_project(self, project: str, worker: MirrorWorker) -> None:
        self.stats.projects += 1
        release_count = 0
        logger.info(f"[{project}] Enumerating {self.config.mode.value} releases of {self.config.owner}/{project}")

        try:
            async for release in self.enumerator.list_releases(project):
                await self._run_release(project, release, worker)
                release_count += 1
        except TransportError as e:
            if self.config.failure_policy == "abort":
                raise
            logger.error(f"[{project}] Project failed after {release_count} {pluralize(release_count, 'release')}: {e}")
            self.stats.failed_projects[project] = str(e)
            return

        logger.info(f"[{project}] Finished {release_count} {pluralize(release_count, 'release')}")

    async def _run_release(self, project: str, release: Release, worker: MirrorWorker) -> None:
        assets = await self.resolver.list_assets(project, release)
        logger.info(f"[{project}/{release.tag_name}] {len(assets)} {pluralize(len(assets), 'asset')}")

        results = await self.mirror_assets(project, release, assets, worker)
        self.stats.releases += 1
        for result in results:
            self.stats.add_result(result)

        if self.config.persist_each_release:
            await self._persist()

    async def mirror_assets(
        self, project: str, release: Release, assets: list[Asset], worker: MirrorWorker
    ) -> list[MirrorResult]:
        """
        Mirror a release's assets with at most `concurrency` workers in flight.

        Every worker is joined before this returns, so whatever finished is recorded
        before an error propagates.
        """
        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def bounded(asset: Asset) -> MirrorResult:
            async with semaphore:
                return await worker.mirror(project, release, asset)

        outcomes = await asyncio.gather(*(bounded(asset) for asset in assets), return_exceptions=True)

        results: list[MirrorResult] = []
        fatal: BaseException | None = None
        transport_error: TransportError | None = None
        for asset, outcome in zip(assets, outcomes, strict=True):
            if not isinstance(outcome, BaseException):
                results.append(outcome)
                continue

            if isinstance(outcome, TransportError) and self.config.failure_policy == "asset":
                logger.error(f"[{project}/{release.tag_name}/{asset.name}] Skipping asset: {outcome}")
                results.append(
                    MirrorResult(
                        project=project,
                        version=release.tag_name,
                        filename=asset.name,
                        target_path=self.resolver.target_path(project, release, asset),
                        state=MirrorState.FAILED,
                        error=str(outcome),
                    )
                )
            elif isinstance(outcome, TransportError):
                transport_error = transport_error or outcome
            elif fatal is None:
                fatal = outcome

        # Errors that end the run win over a transport error that only ends the project
        if fatal is not None:
            raise fatal
        if transport_error is not None:
            raise transport_error
        return results

    async def _persist(self) -> None:
        if self.config.dry_run or self.index is None:
            return
        await self.index.persist(self.config.data_file)

    async def _persist_partial(self) -> None:
        """Persist recorded progress before a fatal error propagates."""
        if self.config.dry_run or self.index is None:
            return
        logger.info(f"Saving {len(self.index)} mirror records before stopping")
        try:
            await self.index.persist(self.config.data_file)
        except SerializationError as e:
            logger.error(f"Could not save partial progress: {e}")

    def _log_summary(self, elapsed: float) -> None:
        stats = self.stats
        logger.info(
            f"Mirror run complete in {format_duration(elapsed)}: "
            f"{stats.projects} {pluralize(stats.projects, 'project')}, "
            f"{stats.releases} {pluralize(stats.releases, 'release')}, "
            f"{stats.present} present, {stats.mirrored} mirrored ({format_bytes(stats.bytes_uploaded)}), "
            f"{stats.failed} failed"
            + (f", {stats.planned} planned" if self.config.dry_run else "")
        )
        for project, error in stats.failed_projects.items():
            logger.error(f"[{project}] Failed: {error}")

    async def close(self) -> None:
        """Release network clients."""
        await self.client.close()
        await self.storage.close()

    async def __aenter__(self) -> "SyncPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
