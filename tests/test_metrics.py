from datetime import datetime, timezone

from prometheus_client import CollectorRegistry

from tokentally.metrics import MetricsUpdater
from tokentally.models import FilterMode, ProviderName, UsageEntry


def _entry(provider: "ProviderName", cost: "float") -> "UsageEntry":
    return UsageEntry(
        id=f"{provider.value}-x",
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
        provider=provider,
        model="m",
        input_tokens=100,
        output_tokens=50,
        cache_creation_tokens=5,
        cache_read_tokens=7,
        total_tokens=162,
        cost=cost,
    )


class TestMetricsUpdater:
    def test_usage_metrics_are_created(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        MetricsUpdater(registry=registry)
        metric_names = [m.name for m in registry.collect()]
        assert "tokentally_usage_cost_usd" in metric_names
        assert "tokentally_usage_entries" in metric_names
        assert "tokentally_usage_tokens" in metric_names

    def test_update_window_sets_gauges(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.update_window(
            FilterMode.MONTHLY,
            ["claude", "codex"],
            [_entry(ProviderName.CLAUDE, 1.5), _entry(ProviderName.CLAUDE, 0.5)],
        )

        labels = {"provider": "claude", "filter_mode": "monthly"}
        assert registry.get_sample_value("tokentally_usage_cost_usd", labels) == 2.0
        assert registry.get_sample_value("tokentally_usage_entries", labels) == 2.0
        assert (
            registry.get_sample_value(
                "tokentally_usage_tokens", {**labels, "kind": "cache_read"}
            )
            == 14.0
        )

        # providers without entries are reported as zero
        codex = {"provider": "codex", "filter_mode": "monthly"}
        assert registry.get_sample_value("tokentally_usage_cost_usd", codex) == 0.0

    def test_update_window_replaces_previous_values(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)
        labels = {"provider": "claude", "filter_mode": "session"}

        updater.update_window(FilterMode.SESSION, ["claude"], [_entry(ProviderName.CLAUDE, 3.0)])
        updater.update_window(FilterMode.SESSION, ["claude"], [])

        assert registry.get_sample_value("tokentally_usage_cost_usd", labels) == 0.0

    def test_ignores_inactive_providers(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.update_window(FilterMode.SESSION, ["codex"], [_entry(ProviderName.CLAUDE, 3.0)])

        assert (
            registry.get_sample_value(
                "tokentally_usage_cost_usd",
                {"provider": "claude", "filter_mode": "session"},
            )
            is None
        )

    def test_self_metrics_are_created(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        MetricsUpdater(registry=registry)
        metric_names = [m.name for m in registry.collect()]
        # prometheus_client strips _total suffix from Counter family names
        assert "tokentally_collect_duration_seconds" in metric_names
        assert "tokentally_collect_errors" in metric_names
        assert "tokentally_last_collect_success_timestamp_seconds" in metric_names

    def test_self_metrics_update(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        updater = MetricsUpdater(registry=registry)

        updater.observe_collect_duration("cursor", 0.5)
        updater.inc_collect_error("cursor")
        updater.set_last_collect_success("cursor", 1000.0)

        error_val = registry.get_sample_value(
            "tokentally_collect_errors_total",
            {"provider": "cursor"},
        )
        assert error_val == 1.0

        success_val = registry.get_sample_value(
            "tokentally_last_collect_success_timestamp_seconds",
            {"provider": "cursor"},
        )
        assert success_val == 1000.0

        count_val = registry.get_sample_value(
            "tokentally_collect_duration_seconds_count",
            {"provider": "cursor"},
        )
        assert count_val == 1.0
