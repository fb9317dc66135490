from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from tokentally.models import FilterMode, UsageEntry

TOKEN_KINDS: "tuple[str, ...]" = ("input", "output", "cache_creation", "cache_read")


def create_usage_metrics(
    registry: "CollectorRegistry" = REGISTRY,
) -> "dict[str, Gauge]":
    """
    creates the gauges describing the last aggregated window.
     - cost_usd: total cost in USD, labeled by provider and
     filter_mode.
     - entries: number of usage entries, labeled by provider and
     filter_mode.
     - tokens: tokens used, labeled by provider, filter_mode and
     kind (input/output/cache_creation/cache_read).
    Gauges rather than counters since each aggregation recomputes
    the whole window.
    """
    return {
        "cost_usd": Gauge(
            "tokentally_usage_cost_usd",
            "Total cost in USD within the filter window",
            ["provider", "filter_mode"],
            registry=registry,
        ),
        "entries": Gauge(
            "tokentally_usage_entries",
            "Number of usage entries within the filter window",
            ["provider", "filter_mode"],
            registry=registry,
        ),
        "tokens": Gauge(
            "tokentally_usage_tokens",
            "Tokens used within the filter window",
            ["provider", "filter_mode", "kind"],
            registry=registry,
        ),
    }


class MetricsUpdater:
    """
    applies aggregated usage entries to Prometheus gauges and tracks
    the health of each provider pipeline.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        self._usage: "dict[str, Gauge]" = create_usage_metrics(registry)
        self._collect_duration: "Histogram" = Histogram(
            "tokentally_collect_duration_seconds",
            "Duration of provider collection",
            ["provider"],
            registry=registry,
        )
        self._collect_errors: "Counter" = Counter(
            "tokentally_collect_errors_total",
            "Total number of failed provider collections",
            ["provider"],
            registry=registry,
        )
        self._last_collect_success: "Gauge" = Gauge(
            "tokentally_last_collect_success_timestamp_seconds",
            "Unix timestamp of last successful collection per provider",
            ["provider"],
            registry=registry,
        )

    def update_window(
        self,
        filter_mode: "FilterMode",
        providers: "list[str]",
        entries: "list[UsageEntry]",
    ) -> "None":
        """
        replaces the window gauges of the given providers with the
        totals of the filtered entries. Providers without entries are
        reset to zero.
        """
        cost: "dict[str, float]" = {p: 0.0 for p in providers}
        count: "dict[str, int]" = {p: 0 for p in providers}
        tokens: "dict[str, dict[str, int]]" = {
            p: {kind: 0 for kind in TOKEN_KINDS} for p in providers
        }

        for entry in entries:
            provider = entry.provider.value
            if provider not in cost:
                continue
            cost[provider] += entry.cost
            count[provider] += 1
            tokens[provider]["input"] += entry.input_tokens
            tokens[provider]["output"] += entry.output_tokens
            tokens[provider]["cache_creation"] += entry.cache_creation_tokens
            tokens[provider]["cache_read"] += entry.cache_read_tokens

        mode = filter_mode.value
        for provider in providers:
            self._usage["cost_usd"].labels(provider=provider, filter_mode=mode).set(
                cost[provider]
            )
            self._usage["entries"].labels(provider=provider, filter_mode=mode).set(
                count[provider]
            )
            for kind, value in tokens[provider].items():
                self._usage["tokens"].labels(
                    provider=provider, filter_mode=mode, kind=kind
                ).set(value)

    def observe_collect_duration(
        self, provider: "str", duration_seconds: "float"
    ) -> "None":
        self._collect_duration.labels(provider=provider).observe(duration_seconds)

    def inc_collect_error(self, provider: "str") -> "None":
        self._collect_errors.labels(provider=provider).inc()

    def set_last_collect_success(self, provider: "str", timestamp: "float") -> "None":
        self._last_collect_success.labels(provider=provider).set(timestamp)
