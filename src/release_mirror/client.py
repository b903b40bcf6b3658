"""
Async GitHub API client using aiohttp
"""

import logging
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import aiohttp
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import (
    ASSET_PAGE_SIZE,
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    GITHUB_API_URL,
    REQUEST_BACKOFF_MAX,
    REQUEST_BACKOFF_MIN,
    REQUEST_BACKOFF_MULTIPLIER,
    REQUEST_MAX_RETRIES,
)
from .errors import TransportError, TransportTimeoutError
from .models import Asset, Release

logger = logging.getLogger(__name__)

# HTTP connection pool limits; downloads and API calls share the pool
HTTP_CONNECTION_POOL_LIMITS = {"limit": 20, "limit_per_host": 10}

USER_AGENT = "release-mirror"


def is_retryable_error(exc: BaseException) -> bool:
    """Connection failures, timeouts, rate limiting and 5xx responses are worth another attempt."""
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status == 429 or exc.status >= 500
    return isinstance(exc, aiohttp.ClientConnectionError | aiohttp.ClientPayloadError | TimeoutError)


@contextmanager
def translate_transport_errors(operation: str) -> Iterator[None]:
    """Re-raise aiohttp failures as TransportError naming the failed operation."""
    try:
        yield
    except TimeoutError as e:
        # aiohttp.ServerTimeoutError is also a TimeoutError
        raise TransportTimeoutError(f"{operation}: timed out") from e
    except aiohttp.ClientResponseError as e:
        raise TransportError(f"{operation}: HTTP {e.status} {e.message}") from e
    except aiohttp.ClientError as e:
        raise TransportError(f"{operation}: {type(e).__name__}: {e}") from e


def next_page_from_links(links: Any) -> int:
    """Extract the next page number from a parsed Link header, 0 when there is none."""
    next_link = links.get("next") if links else None
    if not next_link:
        return 0
    page = next_link["url"].query.get("page")
    return int(page) if page else 0


retry_transient = retry(
    stop=stop_after_attempt(REQUEST_MAX_RETRIES + 1),
    retry=retry_if_exception(is_retryable_error),
    wait=wait_exponential(multiplier=REQUEST_BACKOFF_MULTIPLIER, min=REQUEST_BACKOFF_MIN, max=REQUEST_BACKOFF_MAX),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class GitHubClient:
    """Async client for the GitHub releases API."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str = GITHUB_API_URL,
        timeout: int = DEFAULT_REQUEST_TIMEOUT,
        download_timeout: int = DEFAULT_DOWNLOAD_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.download_timeout = download_timeout

        # Session will be created lazily when first needed
        self.session: aiohttp.ClientSession | None = None
        self._request_count = 0

        if not token:
            logger.warning("No GitHub token configured; API requests are subject to anonymous rate limits")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists, creating it if necessary."""
        if self.session is None:
            connector = aiohttp.TCPConnector(
                limit=HTTP_CONNECTION_POOL_LIMITS["limit"],
                limit_per_host=HTTP_CONNECTION_POOL_LIMITS["limit_per_host"],
                keepalive_timeout=30,
            )
            timeout_config = aiohttp.ClientTimeout(total=self.timeout, connect=10, sock_read=30)
            self.session = aiohttp.ClientSession(
                connector=connector, timeout=timeout_config, headers={"User-Agent": USER_AGENT}
            )
        return self.session

    def _api_headers(self) -> dict[str, str]:
        # Sent per request so the token never follows a download redirect to another host
        headers = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @retry_transient
    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> tuple[Any, int]:
        """GET an API path, returning the decoded body and the next page number."""
        session = await self._ensure_session()
        self._request_count += 1
        url = f"{self.base_url}{path}"
        request_start = time.time()

        async with session.get(url, params=params, headers=self._api_headers()) as response:
            response.raise_for_status()
            payload = await response.json()
            next_page = next_page_from_links(response.links)

        logger.debug(
            f"Request {self._request_count} succeeded in {time.time() - request_start:.3f}s: "
            f"GET {path} params={params} next_page={next_page}"
        )
        return payload, next_page

    async def list_releases(self, owner: str, repo: str, page: int = 1) -> tuple[list[Release], int]:
        """
        List one page of releases.

        Returns:
            Tuple of (releases on this page, next page number or 0 if this was the last page)
        """
        with translate_transport_errors(f"list releases of {owner}/{repo} (page {page})"):
            payload, next_page = await self._get_json(f"/repos/{owner}/{repo}/releases", {"page": page})
        return [Release.from_api(item) for item in payload], next_page

    async def get_latest_release(self, owner: str, repo: str) -> Release | None:
        """
        Fetch the latest published release.

        Returns:
            The release, or None when the project has no published release (HTTP 404)
        """
        with translate_transport_errors(f"get latest release of {owner}/{repo}"):
            try:
                payload, _ = await self._get_json(f"/repos/{owner}/{repo}/releases/latest")
            except aiohttp.ClientResponseError as e:
                if e.status != 404:
                    raise
                return None
        return Release.from_api(payload)

    async def list_release_assets(
        self, owner: str, repo: str, release_id: int, per_page: int = ASSET_PAGE_SIZE
    ) -> list[Asset]:
        """List the first page of a release's assets."""
        with translate_transport_errors(f"list assets of {owner}/{repo} release {release_id}"):
            payload, _ = await self._get_json(
                f"/repos/{owner}/{repo}/releases/{release_id}/assets", {"per_page": per_page}
            )
        return [Asset.from_api(item) for item in payload]

    @asynccontextmanager
    async def download_asset(self, url: str) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a streaming download of an asset's bytes."""
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.download_timeout, connect=10, sock_read=60)
        async with session.get(url, timeout=timeout, headers={"Accept": "application/octet-stream"}) as response:
            response.raise_for_status()
            yield response

    async def close(self) -> None:
        """Close the session. Must be called when done with client."""
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
