"""
Metrics Cache - Read-through cache with per-metric freshness windows.

Entries are keyed by (user_id, metric, params) and hold the value with the
time it was fetched. A StalenessPolicy per metric decides when an entry
needs refetching. A background loop refreshes stale entries at a fixed
interval.

A failed refresh never blocks the caller: the previous value is served
and the failure logged. The error only propagates when nothing was ever
cached for the key.

Usage:
    cache = MetricsCache(policies={'win_rate': StalenessPolicy(60)})
    key = CacheKey.of(user_id, 'win_rate', asset_type='stock')
    metrics = await cache.get(key, fetch_win_rate)
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import logging

import trading_dashboard.core.models.domain as dm
from trading_dashboard.adapters.base import QuoteProviderBase

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheKey:
    """Deterministic key: params are stored as a sorted tuple of pairs"""
    user_id: str
    metric: str
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, user_id: str, metric: str, **params) -> 'CacheKey':
        normalized = {
            name: value.value if isinstance(value, Enum) else value
            for name, value in params.items()
        }
        return cls(user_id, metric, tuple(sorted(normalized.items())))


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    fetched_at: datetime


@dataclass(frozen=True)
class StalenessPolicy:
    ttl_seconds: float

    def is_stale(self, entry: CacheEntry, now: datetime) -> bool:
        return (now - entry.fetched_at).total_seconds() >= self.ttl_seconds


class MetricsCache:
    """In-memory metric cache shared by the dashboard facade"""

    def __init__(
        self,
        policies: Optional[Dict[str, StalenessPolicy]] = None,
        default_policy: StalenessPolicy = StalenessPolicy(60),
        clock: Callable[[], datetime] = dm.utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        self.policies = dict(policies or {})
        self.default_policy = default_policy
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.is_running = False
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._fetchers: Dict[CacheKey, Fetcher] = {}

    def policy_for(self, metric: str) -> StalenessPolicy:
        return self.policies.get(metric, self.default_policy)

    def is_stale(self, key: CacheKey, entry: CacheEntry) -> bool:
        return self.policy_for(key.metric).is_stale(entry, self.clock())

    def peek(self, key: CacheKey) -> Optional[CacheEntry]:
        """Current entry without fetching, fresh or not"""
        return self._entries.get(key)

    def keys(self) -> List[CacheKey]:
        return list(self._entries)

    def tracked_keys(self) -> List[CacheKey]:
        """Keys the background refresh will revisit"""
        return list(self._fetchers)

    async def _load(self, key: CacheKey, fetcher: Fetcher) -> CacheEntry:
        value = await fetcher()
        entry = CacheEntry(value=value, fetched_at=self.clock())
        self._entries[key] = entry
        return entry

    async def get(self, key: CacheKey, fetcher: Fetcher) -> Any:
        """
        Cached value for key, fetching when missing or stale.

        Raises:
            Exception: whatever fetcher raised, only when no value is cached
        """
        self._fetchers[key] = fetcher
        entry = self._entries.get(key)
        if entry is not None and not self.is_stale(key, entry):
            return entry.value

        try:
            return (await self._load(key, fetcher)).value
        except Exception as e:
            if entry is None:
                raise
            self.logger.warning(
                f"Refresh of {key.metric} for {key.user_id} failed, "
                f"serving value from {entry.fetched_at:%H:%M:%S}: {e}"
            )
            return entry.value

    def invalidate(self, user_id: Optional[str] = None, metric: Optional[str] = None) -> int:
        """
        Drop matching entries and their fetchers (all when no filter).

        Dropped keys are no longer refreshed in the background; the next get()
        registers them again. Returns the number of entries dropped.
        """
        def matches(k: CacheKey) -> bool:
            return (user_id is None or k.user_id == user_id) and (metric is None or k.metric == metric)

        for k in [k for k in self._fetchers if matches(k)]:
            del self._fetchers[k]
        doomed = [k for k in self._entries if matches(k)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    async def refresh(self, key: CacheKey) -> Optional[CacheEntry]:
        """Refetch one key with its last fetcher; keeps the old entry on failure"""
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            return self._entries.get(key)
        try:
            return await self._load(key, fetcher)
        except Exception as e:
            self.logger.warning(f"Background refresh of {key.metric} for {key.user_id} failed: {e}")
            return self._entries.get(key)

    async def refresh_all(self, stale_only: bool = True) -> int:
        """Refresh every known key (or only stale ones). Returns keys attempted."""
        keys = [
            k for k in self._fetchers
            if not stale_only
            or k not in self._entries
            or self.is_stale(k, self._entries[k])
        ]
        for k in keys:
            await self.refresh(k)
        return len(keys)

    async def run_refresh_loop(self, interval: float = 60):
        """Poll for stale entries until stop() is called"""
        self.is_running = True
        self.logger.info(f"Starting metrics refresh loop (every {interval}s)")

        while self.is_running:
            refreshed = await self.refresh_all()
            if refreshed:
                self.logger.debug(f"Refreshed {refreshed} cached metrics")
            await asyncio.sleep(interval)

    def stop(self):
        self.is_running = False
        self.logger.info("Stopping metrics refresh loop...")


class CachedQuoteProvider(QuoteProviderBase):
    """
    Per-symbol quote cache in front of another provider.

    Only symbols missing or older than ttl_seconds are requested upstream.
    Upstream errors propagate so the caller's retry policy applies.
    """

    def __init__(self, provider: QuoteProviderBase, ttl_seconds: float = 30,
                 clock: Callable[[], datetime] = dm.utc_now):
        self.provider = provider
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.name = f"cached:{provider.name}"
        self._cache: Dict[Tuple[str, str], Tuple[datetime, dm.Quote]] = {}

    def cached_symbols(self) -> List[Tuple[str, str]]:
        """(kind, symbol) pairs currently held"""
        return sorted(self._cache)

    async def _get(self, kind: str, fetch: Callable[[List[str]], Awaitable[Dict[str, dm.Quote]]],
                   symbols: List[str]) -> Dict[str, dm.Quote]:
        now = self.clock()
        self._cache = {
            k: v for k, v in self._cache.items()
            if (now - v[0]).total_seconds() < self.ttl_seconds
        }

        quotes: Dict[str, dm.Quote] = {}
        missing = []
        for symbol in symbols:
            cached = self._cache.get((kind, symbol))
            if cached:
                quotes[symbol] = cached[1]
            else:
                missing.append(symbol)

        if missing:
            fetched = await fetch(missing)
            for symbol, quote in fetched.items():
                self._cache[(kind, symbol)] = (now, quote)
            quotes.update(fetched)
        return quotes

    async def get_stock_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        return await self._get('stock', self.provider.get_stock_quotes, symbols)

    async def get_crypto_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        return await self._get('crypto', self.provider.get_crypto_quotes, symbols)

    async def get_option_quotes(self, symbols: List[str]) -> Dict[str, dm.Quote]:
        return await self._get('option', self.provider.get_option_quotes, symbols)
