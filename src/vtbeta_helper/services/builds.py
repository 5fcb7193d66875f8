"""
Build listing with retry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from vtbeta_helper.api.models import BuildData, BuildPage
from vtbeta_helper.logging import get_logger
from vtbeta_helper.retry import RetryConfig, retry_with_backoff
from vtbeta_helper.services.auth import retry_transient

if TYPE_CHECKING:
    from vtbeta_helper.api.client import ApiService
    from vtbeta_helper.config import RetrySettings
    from vtbeta_helper.services.cache import BuildCache

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_DELAY_SECONDS = 1.0


def _retry_config(retry: RetrySettings | None) -> RetryConfig:
    if retry is None:
        return RetryConfig(
            max_retries=DEFAULT_MAX_RETRIES,
            initial_delay=DEFAULT_RETRY_DELAY_SECONDS,
            decide=retry_transient,
        )
    return RetryConfig(
        max_retries=retry.max_retries,
        initial_delay=retry.initial_delay_seconds,
        decide=retry_transient,
    )


async def list_builds(
    api: ApiService,
    limit: int,
    offset: int,
    retry: RetrySettings | None = None,
    cache: BuildCache | None = None,
) -> BuildPage:
    """
    Fetch a page of builds, retrying transient failures.

    Args:
        api: Build service client.
        limit: Page size.
        offset: Index of the first build.
        retry: Retry budget (10 retries from 1s by default).
        cache: Optional page cache, keyed by token and page index. Requests
            whose offset is not a multiple of limit bypass it.

    Raises:
        ApiException: If the listing fails for good.
        MalformedResponseError: If the response cannot be parsed.
    """
    config = _retry_config(retry)

    async def _fetch() -> BuildPage:
        return await retry_with_backoff(lambda: api.list_builds(limit, offset), config)

    # Pages are cached by index, so only page-aligned requests can use them
    if cache is None or limit <= 0 or offset % limit != 0:
        return await _fetch()
    return await cache.fetch_builds(api.token, offset // limit, limit, _fetch)


async def get_latest_build(
    api: ApiService, retry: RetrySettings | None = None
) -> BuildData | None:
    """Return the newest published build, or None if there are none."""
    page = await list_builds(api, limit=1, offset=0, retry=retry)
    if not page.data:
        logger.debug("No builds published")
        return None
    return page.data[0]
