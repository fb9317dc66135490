import asyncio
import time
from typing import Callable, Mapping, Sequence

import httpx
import structlog

from tokentally.errors import PricingFetchError
from tokentally.models import PricingRecord, PricingTable

logger = structlog.get_logger()

LITELLM_PRICING_URL = (
    "https://raw.githubusercontent.com/BerriAI/litellm/main/"
    "model_prices_and_context_window.json"
)

# refetch the pricing table at most once an hour
_DEFAULT_TTL_SECONDS = 3600

CLAUDE_PREFIXES: "tuple[str, ...]" = ("claude/", "anthropic/")
CODEX_PREFIXES: "tuple[str, ...]" = ("openai/", "azure/", "openrouter/openai/")

CODEX_MODEL_ALIASES: "dict[str, str]" = {
    "gpt-5-codex": "gpt-5",
}


class PricingCache:
    """
    PricingCache downloads the LiteLLM model price table and keeps
    the last good snapshot. A snapshot younger than the TTL is served
    without touching the network; when a refresh fails the previous
    snapshot is served however stale, and an empty table is the last
    resort. get_pricing() never raises.
    """

    def __init__(
        self,
        url: "str" = LITELLM_PRICING_URL,
        ttl_seconds: "float" = _DEFAULT_TTL_SECONDS,
        client: "httpx.AsyncClient | None" = None,
        clock: "Callable[[], float]" = time.monotonic,
        timeout: "float" = 10.0,
    ) -> "None":
        self._url = url
        self._ttl = ttl_seconds
        self._owns_client = client is None
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=timeout
        )
        self._clock = clock
        self._snapshot: "dict[str, PricingRecord] | None" = None
        self._fetched_at: "float" = 0.0
        self._lock: "asyncio.Lock" = asyncio.Lock()

    async def close(self) -> "None":
        """
        closes the underlying HTTP client if this cache created it.
        """
        if self._owns_client:
            await self._client.aclose()

    def _is_fresh(self) -> "bool":
        return (
            self._snapshot is not None
            and (self._clock() - self._fetched_at) < self._ttl
        )

    async def get_pricing(self) -> "PricingTable":
        # fast path: fresh snapshot, no lock
        if self._is_fresh():
            return self._snapshot

        async with self._lock:
            # another task may have refreshed while we waited
            if self._is_fresh():
                return self._snapshot

            try:
                table = await self._fetch()
            except PricingFetchError as exc:
                logger.warning(
                    "pricing_fetch_failed",
                    url=self._url,
                    error=str(exc),
                    serving_stale=self._snapshot is not None,
                )
                return self._snapshot if self._snapshot is not None else {}

            self._snapshot = table
            self._fetched_at = self._clock()
            logger.debug("pricing_fetched", model_count=len(table))
            return table

    async def _fetch(self) -> "dict[str, PricingRecord]":
        try:
            resp = await self._client.get(self._url)
        except httpx.HTTPError as exc:
            raise PricingFetchError(f"transport error: {exc}") from exc

        if not resp.is_success:
            raise PricingFetchError(f"unexpected status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise PricingFetchError("response is not valid JSON") from exc

        if not isinstance(data, dict):
            raise PricingFetchError("response is not a JSON object")

        # the upstream file carries non-model keys such as "sample_spec"
        # whose values are still objects; those simply end up unpriced.
        return {
            model: PricingRecord.from_dict(entry)
            for model, entry in data.items()
            if isinstance(entry, dict)
        }


def _strip_prefixes(key: "str", prefixes: "Sequence[str]") -> "str":
    for prefix in prefixes:
        if key.startswith(prefix):
            return key[len(prefix) :]
    return key


def resolve_pricing(
    table: "PricingTable",
    model: "str",
    prefixes: "Sequence[str]" = (),
    aliases: "Mapping[str, str] | None" = None,
) -> "PricingRecord | None":
    """
    resolves a model name to its pricing record. Tried in order,
    first match wins:
     1. exact key,
     2. each "<prefix><model>" key,
     3. the aliased model name, exact and through the prefixes,
     4. substring match in either direction, comparing against
     the key with the known prefixes removed.
    The substring step returns the first matching key in table
    order, which is not necessarily the closest one.
    """
    if not model:
        return None

    if model in table:
        return table[model]

    for prefix in prefixes:
        key = f"{prefix}{model}"
        if key in table:
            return table[key]

    aliased = (aliases or {}).get(model)
    if aliased:
        if aliased in table:
            return table[aliased]
        for prefix in prefixes:
            key = f"{prefix}{aliased}"
            if key in table:
                return table[key]

    for key, record in table.items():
        stripped = _strip_prefixes(key, prefixes)
        if model in key or (stripped and stripped in model):
            return record

    return None


def standard_cost(
    record: "PricingRecord | None",
    input_tokens: "int",
    output_tokens: "int",
    cache_creation_tokens: "int" = 0,
    cache_read_tokens: "int" = 0,
) -> "float":
    """
    cost for providers that report input tokens exclusive of cached
    tokens. Cache prices fall back to the plain input price.
    """
    if record is None:
        return 0.0

    input_price = record.input_cost_per_token or 0.0
    output_price = record.output_cost_per_token or 0.0
    cache_creation_price = record.cache_creation_input_token_cost or input_price
    cache_read_price = record.cache_read_input_token_cost or input_price

    return (
        input_tokens * input_price
        + output_tokens * output_price
        + cache_creation_tokens * cache_creation_price
        + cache_read_tokens * cache_read_price
    )


def codex_cost(
    record: "PricingRecord | None",
    input_tokens: "int",
    output_tokens: "int",
    cached_input_tokens: "int",
) -> "float":
    """
    cost for codex, whose input token count already includes the
    cached input tokens.
    """
    if record is None:
        return 0.0

    input_price = record.input_cost_per_token or 0.0
    output_price = record.output_cost_per_token or 0.0
    cached_price = record.cache_read_input_token_cost or input_price

    non_cached_input = max(0, input_tokens - cached_input_tokens)
    return (
        non_cached_input * input_price
        + cached_input_tokens * cached_price
        + output_tokens * output_price
    )
