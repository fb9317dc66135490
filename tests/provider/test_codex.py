from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from tokentally.models import PricingRecord, ProviderName
from tokentally.provider.codex import (
    DEFAULT_CODEX_MODEL,
    CodexProvider,
    parse_codex_file,
)

GPT5 = PricingRecord(input_cost_per_token=0.000002, output_cost_per_token=0.000008)
PRICING = {"openai/gpt-5": GPT5}

WriteJsonl = Callable[[str, "list[Any]"], Path]


def _turn_context(model: "str") -> "dict[str, Any]":
    return {
        "type": "turn_context",
        "timestamp": "2025-01-01T09:59:00.000Z",
        "payload": {"model": model, "cwd": "/tmp"},
    }


def _token_count(
    input_tokens: "int" = 100,
    cached_input_tokens: "int" = 40,
    output_tokens: "int" = 20,
    total_tokens: "int | None" = None,
    timestamp: "str" = "2025-01-01T10:00:00.000Z",
) -> "dict[str, Any]":
    total = input_tokens + output_tokens if total_tokens is None else total_tokens
    return {
        "type": "event_msg",
        "timestamp": timestamp,
        "payload": {
            "type": "token_count",
            "info": {
                "total_token_usage": {"total_tokens": 99999},
                "last_token_usage": {
                    "input_tokens": input_tokens,
                    "cached_input_tokens": cached_input_tokens,
                    "output_tokens": output_tokens,
                    "reasoning_output_tokens": 0,
                    "total_tokens": total,
                },
            },
        },
    }


class TestParseCodexFile:
    def test_prices_non_cached_input_separately(self, write_jsonl: "WriteJsonl") -> "None":
        path = write_jsonl(
            "sessions/2025/01/01/rollout-1.jsonl",
            [_turn_context("gpt-5"), _token_count()],
        )

        entries = parse_codex_file(str(path), PRICING)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.id == "codex-rollout-1-0"
        assert entry.provider is ProviderName.CODEX
        assert entry.model == "gpt-5"
        assert entry.timestamp == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert entry.input_tokens == 100
        assert entry.output_tokens == 20
        assert entry.cache_read_tokens == 40
        assert entry.cache_creation_tokens == 0
        assert entry.total_tokens == 120
        assert entry.cost == pytest.approx(0.00036)
        assert entry.session_id == "rollout-1"
        assert entry.project_name is None

    def test_uses_reported_total(self, write_jsonl: "WriteJsonl") -> "None":
        path = write_jsonl("s.jsonl", [_token_count(total_tokens=150)])

        assert parse_codex_file(str(path), PRICING)[0].total_tokens == 150

    def test_default_model_until_turn_context(self, write_jsonl: "WriteJsonl") -> "None":
        path = write_jsonl(
            "s.jsonl",
            [
                _token_count(),
                _turn_context("gpt-5"),
                _token_count(),
                _turn_context("o3"),
                _token_count(),
            ],
        )

        entries = parse_codex_file(str(path), PRICING)

        assert [e.model for e in entries] == [DEFAULT_CODEX_MODEL, "gpt-5", "o3"]
        assert [e.id for e in entries] == ["codex-s-0", "codex-s-1", "codex-s-2"]

    def test_every_event_is_accumulated(self, write_jsonl: "WriteJsonl") -> "None":
        path = write_jsonl(
            "s.jsonl", [_turn_context("gpt-5"), _token_count(), _token_count()]
        )

        entries = parse_codex_file(str(path), PRICING)

        assert len(entries) == 2
        assert sum(e.cost for e in entries) == pytest.approx(0.00072)

    def test_alias_resolves_to_base_model(self, write_jsonl: "WriteJsonl") -> "None":
        path = write_jsonl("s.jsonl", [_turn_context("gpt-5-codex"), _token_count()])

        entry = parse_codex_file(str(path), PRICING)[0]

        assert entry.model == "gpt-5-codex"
        assert entry.cost == pytest.approx(0.00036)

    def test_skips_zero_and_missing_usage(self, write_jsonl: "WriteJsonl") -> "None":
        no_info = {"type": "event_msg", "payload": {"type": "token_count", "info": None}}
        path = write_jsonl(
            "s.jsonl",
            [
                _token_count(input_tokens=0, output_tokens=0),
                no_info,
                {"type": "event_msg", "payload": {"type": "agent_message"}},
                {"type": "response_item", "payload": {"type": "message"}},
            ],
        )

        assert parse_codex_file(str(path), PRICING) == []

    def test_skips_malformed_lines(self, write_jsonl: "WriteJsonl") -> "None":
        path = write_jsonl("s.jsonl", ["garbage", _token_count(), "42"])

        assert len(parse_codex_file(str(path), PRICING)) == 1

    def test_non_finite_counts_do_not_break_the_file(
        self, write_jsonl: "WriteJsonl"
    ) -> "None":
        path = write_jsonl(
            "s.jsonl",
            [
                _token_count(),
                _token_count(total_tokens=float("nan")),
                _token_count(input_tokens=float("inf"), total_tokens=150),
            ],
        )

        entries = parse_codex_file(str(path), PRICING)

        assert [e.total_tokens for e in entries] == [120, 150]
        assert entries[1].input_tokens == 0

    def test_missing_file_yields_nothing(self, tmp_path: "Path") -> "None":
        assert parse_codex_file(str(tmp_path / "nope.jsonl"), PRICING) == []


class TestCodexProvider:
    @pytest.mark.asyncio
    async def test_collects_all_sessions(
        self, tmp_path: "Path", write_jsonl: "WriteJsonl"
    ) -> "None":
        write_jsonl("codex/sessions/2025/01/01/a.jsonl", [_token_count()])
        write_jsonl("codex/sessions/2025/01/02/b.jsonl", [_token_count(), _token_count()])
        write_jsonl("codex/config.toml.jsonl.bak", ["ignored"])

        provider = CodexProvider(home=str(tmp_path / "codex"))
        entries = await provider.fetch_entries(PRICING)

        assert len(entries) == 3
        assert {e.session_id for e in entries} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_codex_home_from_environment(
        self,
        tmp_path: "Path",
        write_jsonl: "WriteJsonl",
        monkeypatch: "pytest.MonkeyPatch",
    ) -> "None":
        write_jsonl("elsewhere/sessions/a.jsonl", [_token_count()])
        monkeypatch.setenv("CODEX_HOME", str(tmp_path / "elsewhere"))

        entries = await CodexProvider().fetch_entries(PRICING)

        assert len(entries) == 1
