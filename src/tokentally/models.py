import enum
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


class ProviderName(str, enum.Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    CURSOR = "cursor"


ALL_PROVIDERS: "tuple[ProviderName, ...]" = (
    ProviderName.CLAUDE,
    ProviderName.CODEX,
    ProviderName.CURSOR,
)


class FilterMode(str, enum.Enum):
    # entries since the process started
    SESSION = "session"
    # entries since the first day of the current calendar month
    MONTHLY = "monthly"


@dataclass(frozen=True, slots=True)
class UsageEntry:
    """
    UsageEntry is a single normalized and priced record of
    token consumption for one model invocation.
    """

    id: "str"
    timestamp: "datetime"
    provider: "ProviderName"
    model: "str"
    input_tokens: "int" = 0
    output_tokens: "int" = 0
    cache_creation_tokens: "int" = 0
    cache_read_tokens: "int" = 0
    total_tokens: "int" = 0
    # dollars
    cost: "float" = 0.0
    # only set by log-based providers
    session_id: "str | None" = None
    project_name: "str | None" = None

    def to_dict(self) -> "dict[str, Any]":
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "provider": self.provider.value,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
            "session_id": self.session_id,
            "project_name": self.project_name,
        }


def _as_price(value: "Any") -> "float | None":
    # bools are ints in python, they are never a price
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        price = float(value)
    except OverflowError:
        return None
    return price if math.isfinite(price) else None


@dataclass(frozen=True, slots=True)
class PricingRecord:
    """
    PricingRecord holds the per-token prices of one model. Missing
    prices are None and count as zero when computing cost.
    """

    input_cost_per_token: "float | None" = None
    output_cost_per_token: "float | None" = None
    cache_creation_input_token_cost: "float | None" = None
    cache_read_input_token_cost: "float | None" = None

    @classmethod
    def from_dict(cls, data: "Mapping[str, Any]") -> "PricingRecord":
        return cls(
            input_cost_per_token=_as_price(data.get("input_cost_per_token")),
            output_cost_per_token=_as_price(data.get("output_cost_per_token")),
            cache_creation_input_token_cost=_as_price(
                data.get("cache_creation_input_token_cost")
            ),
            cache_read_input_token_cost=_as_price(
                data.get("cache_read_input_token_cost")
            ),
        )


PricingTable = Mapping[str, PricingRecord]


class SkipReason(str, enum.Enum):
    MALFORMED = "malformed"
    NO_USAGE = "no_usage"
    DUPLICATE = "duplicate"
    NOT_TOKEN_EVENT = "not_token_event"


@dataclass(frozen=True, slots=True)
class Skip:
    """
    Skip is returned instead of a UsageEntry when a source
    record does not produce usage.
    """

    reason: "SkipReason"
    detail: "str" = ""


@dataclass(frozen=True, slots=True)
class AggregatedResult:
    """
    AggregatedResult is one page of merged usage entries. total_cost
    and total_count cover the whole filtered set, not only the page.
    """

    entries: "list[UsageEntry]"
    total_cost: "float"
    total_count: "int"
    page: "int"
    page_size: "int"
    total_pages: "int"
    last_updated: "datetime"
    filter_mode: "FilterMode"
    window_start: "datetime"
    providers: "tuple[ProviderName, ...]" = field(default=ALL_PROVIDERS)

    def to_dict(self) -> "dict[str, Any]":
        return {
            "entries": [e.to_dict() for e in self.entries],
            "total_cost": self.total_cost,
            "total_count": self.total_count,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "last_updated": self.last_updated.isoformat(),
            "filter_mode": self.filter_mode.value,
            "window_start": self.window_start.isoformat(),
            "providers": [p.value for p in self.providers],
        }
