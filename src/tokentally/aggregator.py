import asyncio
import math
import time
from datetime import datetime
from typing import Awaitable, Callable, Iterable

import structlog

from tokentally.metrics import MetricsUpdater
from tokentally.models import (
    AggregatedResult,
    FilterMode,
    PricingTable,
    ProviderName,
    UsageEntry,
)
from tokentally.pricing import PricingCache
from tokentally.provider.base import UsageProvider
from tokentally.timestamps import now_utc, start_of_month

logger = structlog.get_logger()

DEFAULT_PAGE_SIZE = 50

# auto-refresh interval bounds, in seconds
DEFAULT_REFRESH_INTERVAL = 30
MIN_REFRESH_INTERVAL = 5
MAX_REFRESH_INTERVAL = 300


def clamp_refresh_interval(value: "float") -> "int":
    """
    rounds the refresh interval and keeps it within
    [MIN_REFRESH_INTERVAL, MAX_REFRESH_INTERVAL]. Non-finite values
    fall back to the default.
    """
    if not math.isfinite(value):
        return DEFAULT_REFRESH_INTERVAL
    return min(MAX_REFRESH_INTERVAL, max(MIN_REFRESH_INTERVAL, round(value)))


def window_start(
    filter_mode: "FilterMode",
    started_at: "datetime",
    now: "datetime | None" = None,
) -> "datetime":
    """
    returns the inclusive lower bound of the filter window: the
    process start for session mode, the first day of the current
    local month for monthly mode.
    """
    if filter_mode is FilterMode.SESSION:
        return started_at
    return start_of_month(now)


def _filter_mode(value: "FilterMode | str") -> "FilterMode":
    try:
        return FilterMode(value)
    except ValueError:
        logger.warning("unknown_filter_mode", filter_mode=value)
        return FilterMode.SESSION


def filter_entries(entries: "list[UsageEntry]", since: "datetime") -> "list[UsageEntry]":
    return [e for e in entries if e.timestamp >= since]


class Aggregator:
    """
    Aggregator merges the entries of every active provider into a
    single result: sorted newest first, filtered to a time window,
    totalled, then paginated. Providers run concurrently and are
    isolated from each other; a provider that fails is logged and
    contributes nothing, so get_usages always returns a result.
    """

    def __init__(
        self,
        providers: "list[UsageProvider]",
        pricing_cache: "PricingCache",
        metrics_updater: "MetricsUpdater",
        started_at: "datetime | None" = None,
    ) -> "None":
        self._providers: "dict[str, UsageProvider]" = {p.name: p for p in providers}
        self._pricing = pricing_cache
        self._metrics = metrics_updater
        self._started_at: "datetime" = started_at or now_utc()
        self._stop_event: "asyncio.Event" = asyncio.Event()

    @property
    def started_at(self) -> "datetime":
        """
        process start time, the lower bound of session mode.
        """
        return self._started_at

    @started_at.setter
    def started_at(self, value: "datetime") -> "None":
        self._started_at = value

    @property
    def provider_names(self) -> "list[str]":
        return list(self._providers)

    def stop(self) -> "None":
        """
        signals the refresh loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def close(self) -> "None":
        """
        closes all provider sessions and the pricing client.
        """
        for p in self._providers.values():
            await p.close()
        await self._pricing.close()

    def _active_providers(
        self, providers: "Iterable[ProviderName | str]"
    ) -> "list[UsageProvider]":
        wanted = {p.value if isinstance(p, ProviderName) else p for p in providers}
        # an empty filter means every provider
        if not wanted:
            return list(self._providers.values())

        unknown = wanted - set(self._providers)
        if unknown:
            logger.warning("unknown_providers_ignored", providers=sorted(unknown))
        return [p for name, p in self._providers.items() if name in wanted]

    async def get_usages(
        self,
        page: "int" = 1,
        page_size: "int" = DEFAULT_PAGE_SIZE,
        filter_mode: "FilterMode | str" = FilterMode.SESSION,
        providers: "Iterable[ProviderName | str]" = (),
    ) -> "AggregatedResult":
        mode = _filter_mode(filter_mode)
        page = max(1, page)
        page_size = max(1, page_size)

        pricing = await self._pricing.get_pricing()
        active = self._active_providers(providers)

        results = await asyncio.gather(
            *(self._collect_provider(p, pricing) for p in active)
        )
        merged: "list[UsageEntry]" = [e for entries in results for e in entries]

        # stable sort: entries with equal timestamps keep provider order
        merged.sort(key=lambda e: e.timestamp, reverse=True)

        now = now_utc()
        since = window_start(mode, self._started_at, now)
        filtered = filter_entries(merged, since)

        total_cost = float(sum(e.cost for e in filtered))
        total_count = len(filtered)
        total_pages = math.ceil(total_count / page_size)

        start = (page - 1) * page_size
        page_entries = filtered[start : start + page_size]

        self._metrics.update_window(mode, [p.name for p in active], filtered)
        logger.info(
            "usages_aggregated",
            filter_mode=mode.value,
            providers=[p.name for p in active],
            merged=len(merged),
            total_count=total_count,
            total_cost=round(total_cost, 6),
            page=page,
            total_pages=total_pages,
        )

        return AggregatedResult(
            entries=page_entries,
            total_cost=total_cost,
            total_count=total_count,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            last_updated=now,
            filter_mode=mode,
            window_start=since,
            providers=tuple(ProviderName(p.name) for p in active),
        )

    async def _collect_provider(
        self,
        provider: "UsageProvider",
        pricing: "PricingTable",
    ) -> "list[UsageEntry]":
        cycle_start = time.monotonic()

        try:
            entries = list(await provider.fetch_entries(pricing))
        except Exception:
            logger.exception("provider_collect_error", provider=provider.name)
            self._metrics.inc_collect_error(provider.name)
            entries = []
        else:
            self._metrics.set_last_collect_success(provider.name, time.time())
            logger.debug(
                "provider_collected", provider=provider.name, count=len(entries)
            )

        duration = time.monotonic() - cycle_start
        self._metrics.observe_collect_duration(provider.name, duration)
        return entries

    async def run(
        self,
        on_result: "Callable[[AggregatedResult], Awaitable[None] | None]",
        interval: "float" = DEFAULT_REFRESH_INTERVAL,
        page: "int" = 1,
        page_size: "int" = DEFAULT_PAGE_SIZE,
        filter_mode: "FilterMode | str" = FilterMode.SESSION,
        providers: "Iterable[ProviderName | str]" = (),
    ) -> "None":
        """
        refreshes the aggregate every `interval` seconds and hands each
        result to on_result. Runs until stop() is called.
        """
        interval = clamp_refresh_interval(interval)
        providers = tuple(providers)

        while not self._stop_event.is_set():
            logger.info("refresh_cycle_start", interval=interval)
            result = await self.get_usages(page, page_size, filter_mode, providers)

            outcome = on_result(result)
            if asyncio.iscoroutine(outcome):
                await outcome

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass
