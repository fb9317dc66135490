from collections import Counter
from typing import Any

import httpx
import structlog

from tokentally.errors import PageFetchError
from tokentally.models import PricingTable, ProviderName, Skip, SkipReason, UsageEntry
from tokentally.paginator import DEFAULT_MAX_CONCURRENCY, Page, fetch_all_pages
from tokentally.pricing import resolve_pricing, standard_cost
from tokentally.provider.base import as_dict, as_float, as_int, as_str
from tokentally.timestamps import now_utc, parse_timestamp
from tokentally.tokens import TokenProvider

logger = structlog.get_logger()

CURSOR_USAGE_EVENTS_URL = "https://cursor.com/api/dashboard/get-filtered-usage-events"
CURSOR_ORIGIN = "https://cursor.com"
CURSOR_SESSION_COOKIE = "WorkosCursorSessionToken"

DEFAULT_PAGE_SIZE = 1000


def parse_cursor_event(
    event: "Any",
    *,
    index: "int",
    pricing: "PricingTable",
) -> "UsageEntry | Skip":
    """
    converts one usage event of the dashboard API into a UsageEntry.

    The API reports output and cache tokens and the billed amount in
    cents, but no input tokens; input stays 0 and the total is the sum
    of the reported fields. Events without a billed amount are priced
    from the pricing table instead.
    """
    if not isinstance(event, dict):
        return Skip(SkipReason.MALFORMED, "event is not an object")

    model = as_str(event.get("model")) or "unknown"
    token_usage = as_dict(event.get("tokenUsage"))

    output_tokens = as_int(token_usage.get("outputTokens"))
    cache_creation_tokens = as_int(token_usage.get("cacheWriteTokens"))
    cache_read_tokens = as_int(token_usage.get("cacheReadTokens"))

    total_cents = as_float(token_usage.get("totalCents"))
    if total_cents is not None:
        cost = max(0.0, total_cents / 100)
    else:
        cost = standard_cost(
            resolve_pricing(pricing, model),
            0,
            output_tokens,
            cache_creation_tokens,
            cache_read_tokens,
        )

    # epoch milliseconds as a string
    timestamp = parse_timestamp(event.get("timestamp")) or now_utc()

    return UsageEntry(
        id=f"cursor-{int(timestamp.timestamp() * 1000)}-{index}",
        timestamp=timestamp,
        provider=ProviderName.CURSOR,
        model=model,
        input_tokens=0,
        output_tokens=output_tokens,
        cache_creation_tokens=cache_creation_tokens,
        cache_read_tokens=cache_read_tokens,
        total_tokens=output_tokens + cache_creation_tokens + cache_read_tokens,
        cost=cost,
    )


class CursorProvider:
    """
    CursorProvider implements the UsageProvider protocol for the
    cloud IDE's dashboard API. Usage events are fetched with a
    session cookie; the first page tells how many events exist and
    the remaining pages are fetched concurrently. Pages that fail are
    dropped so partial data is still returned.
    """

    def __init__(
        self,
        token_provider: "TokenProvider",
        page_size: "int" = DEFAULT_PAGE_SIZE,
        max_concurrency: "int" = DEFAULT_MAX_CONCURRENCY,
        timeout: "float" = 10.0,
        url: "str" = CURSOR_USAGE_EVENTS_URL,
    ) -> "None":
        self._token_provider = token_provider
        self._page_size = page_size
        self._max_concurrency = max_concurrency
        self._url = url
        self._client: "httpx.AsyncClient" = httpx.AsyncClient(
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "Origin": CURSOR_ORIGIN,
            },
        )

    @property
    def name(self) -> "str":
        return ProviderName.CURSOR.value

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    async def fetch_entries(self, pricing: "PricingTable") -> "list[UsageEntry]":
        token = self._token_provider.get_session_token(self.name)
        if not token:
            logger.debug("cursor_token_missing")
            return []

        async def _fetch(page: "int") -> "Page":
            return await self._fetch_page(token, page)

        events = await fetch_all_pages(
            _fetch, self._page_size, self._max_concurrency
        )

        entries: "list[UsageEntry]" = []
        skipped: "Counter[str]" = Counter()
        for event in events:
            result = parse_cursor_event(event, index=len(entries), pricing=pricing)
            if isinstance(result, Skip):
                skipped[result.reason.value] += 1
                continue
            entries.append(result)

        if skipped:
            logger.debug("cursor_events_skipped", **skipped)
        logger.debug("cursor_collect_done", entry_count=len(entries))
        return entries

    async def _fetch_page(self, token: "str", page: "int") -> "Page":
        """
        fetches a single 1-indexed page of usage events.
        """
        logger.debug("cursor_fetch_page", page=page, page_size=self._page_size)
        try:
            resp = await self._client.post(
                self._url,
                json={"pageSize": self._page_size, "page": page},
                headers={"Cookie": f"{CURSOR_SESSION_COOKIE}={token}"},
            )
        except httpx.HTTPError as exc:
            raise PageFetchError(page, f"transport error: {exc!r}") from exc

        if not resp.is_success:
            raise PageFetchError(page, f"unexpected status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise PageFetchError(page, "response is not valid JSON") from exc

        events = as_dict(data).get("usageEventsDisplay")
        if not isinstance(events, list):
            raise PageFetchError(page, "response has no usageEventsDisplay")

        return Page(
            total_count=as_int(data.get("totalUsageEventsCount")),
            items=events,
        )
