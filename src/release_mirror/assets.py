"""
Asset resolution

Lists a release's assets and computes where each one lives in storage.
"""

import logging

from .client import GitHubClient
from .constants import ASSET_PAGE_SIZE, DEFAULT_PUBLIC_URL_TEMPLATE
from .errors import ConfigurationError
from .models import Asset, Release

logger = logging.getLogger(__name__)


def target_path(project: str, release: Release, asset: Asset) -> str:
    """Storage key of an asset: "{project}/{tag}/{filename}"."""
    return f"{project}/{release.tag_name}/{asset.name}"


def public_url(
    bucket_name: str, bucket_location: str, path: str, template: str = DEFAULT_PUBLIC_URL_TEMPLATE
) -> str:
    """Build the public download URL of a stored object."""
    if not bucket_name:
        raise ConfigurationError("Cannot build public URLs without a bucket name")
    if not bucket_location:
        raise ConfigurationError(f"Cannot build public URLs: location of bucket {bucket_name} is unknown")
    return template.format(bucket=bucket_name, location=bucket_location, path=path)


class AssetResolver:
    """Lists assets of releases and maps them onto storage paths and URLs."""

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        public_url_template: str = DEFAULT_PUBLIC_URL_TEMPLATE,
        page_size: int = ASSET_PAGE_SIZE,
    ):
        self.client = client
        self.owner = owner
        self.public_url_template = public_url_template
        self.page_size = page_size

    async def list_assets(self, project: str, release: Release) -> list[Asset]:
        """
        List a release's assets.

        Only the first page is requested: releases with more than one page of assets
        are mirrored partially.
        """
        assets = await self.client.list_release_assets(self.owner, project, release.id, per_page=self.page_size)
        if len(assets) >= self.page_size:
            logger.debug(
                f"[{project}/{release.tag_name}] Asset listing hit the {self.page_size} asset cap; "
                f"further assets are not mirrored"
            )
        return assets[: self.page_size]

    def target_path(self, project: str, release: Release, asset: Asset) -> str:
        return target_path(project, release, asset)

    def public_url(self, bucket_name: str, bucket_location: str, path: str) -> str:
        return public_url(bucket_name, bucket_location, path, self.public_url_template)
