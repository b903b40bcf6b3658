"""
Release enumeration

Produces the releases of a project, either every page of them or only the latest.
"""

import logging
from collections.abc import AsyncIterator

from .client import GitHubClient
from .models import EnumerationMode, Release

logger = logging.getLogger(__name__)


class ReleaseEnumerator:
    """Lists the releases of projects owned by one account."""

    def __init__(self, client: GitHubClient, owner: str, mode: EnumerationMode = EnumerationMode.ALL):
        self.client = client
        self.owner = owner
        self.mode = mode

    async def list_releases(self, project: str) -> AsyncIterator[Release]:
        """
        Yield releases of a project in the platform's native order.

        The sequence is lazy and can be consumed once; pages are requested as needed.
        A project without published releases yields nothing in either mode.
        TransportError propagates to the caller.
        """
        if self.mode is EnumerationMode.LATEST:
            release = await self.client.get_latest_release(self.owner, project)
            if release is None:
                logger.warning(f"[{project}] No published releases")
                return
            logger.info(f"[{project}] Latest release is {release.tag_name}")
            yield release
            return

        page = 1
        while True:
            releases, next_page = await self.client.list_releases(self.owner, project, page=page)
            logger.debug(f"[{project}] Page {page}: {len(releases)} releases (next page: {next_page or 'none'})")

            for release in releases:
                yield release

            if next_page == 0:
                break
            page = next_page
