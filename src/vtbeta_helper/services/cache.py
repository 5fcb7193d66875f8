"""
In-memory cache for build listings and the subscription.

Entries expire after one hour. Build pages are keyed by token and page index;
the listing total is kept per token so a cached page can compute has_more
without another request.

The cache only pays off in a long-lived process that lists builds or reads
the subscription repeatedly, such as a settings UI embedding this package.
Callers opt in by passing a BuildCache to services.builds.list_builds() or
services.auth.refresh_subscription(). The CLI does not: each invocation is a
fresh process, and the update checker must see new builds as soon as its
interval elapses rather than after the cache TTL.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from vtbeta_helper.api.models import BuildData, BuildPage, Subscription
from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)

CACHE_TTL_SECONDS = 60 * 60

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float


class BuildCache:
    """
    TTL cache in front of the build listing and subscription lookups.

    Args:
        ttl_seconds: Lifetime of an entry.
        clock: Time source in seconds.
    """

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._builds: dict[str, CacheEntry[list[BuildData]]] = {}
        self._build_totals: dict[str, int] = {}
        self._subscription: CacheEntry[Subscription] | None = None

    def _is_expired(self, timestamp: float) -> bool:
        return self._clock() - timestamp > self._ttl

    async def fetch_builds(
        self,
        token: str,
        page: int,
        page_size: int,
        fetch: Callable[[], Awaitable[BuildPage]],
    ) -> BuildPage:
        """
        Return a page of builds, calling fetch on a miss or expired entry.

        Args:
            token: Token the listing belongs to.
            page: Zero-based page index.
            page_size: Builds per page.
            fetch: Coroutine function loading the page from the server.
        """
        key = f"{token}-{page}"
        entry = self._builds.get(key)
        total = self._build_totals.get(token)

        if entry is not None and total is not None and not self._is_expired(entry.timestamp):
            logger.debug("Build page cache hit", extra={"page": page})
            return BuildPage(
                data=entry.data,
                total=total,
                limit=page_size,
                offset=page * page_size,
                has_more=(page + 1) * page_size < total,
            )

        result = await fetch()
        self._builds[key] = CacheEntry(data=result.data, timestamp=self._clock())
        self._build_totals[token] = result.total
        return result

    async def fetch_subscription(
        self, fetch: Callable[[], Awaitable[Subscription]]
    ) -> Subscription:
        """Return the cached subscription, calling fetch when missing or expired."""
        if self._subscription is not None and not self._is_expired(
            self._subscription.timestamp
        ):
            return self._subscription.data

        data = await fetch()
        self._subscription = CacheEntry(data=data, timestamp=self._clock())
        return data

    def invalidate(self) -> None:
        """Drop every cached entry."""
        self._builds.clear()
        self._build_totals.clear()
        self._subscription = None
