import asyncio
import json
import os
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from tokentally.discovery import (
    DEFAULT_MAX_DEPTH,
    codex_home,
    find_log_files,
    most_recent_files,
)
from tokentally.models import PricingTable, ProviderName, Skip, SkipReason, UsageEntry
from tokentally.pricing import (
    CODEX_MODEL_ALIASES,
    CODEX_PREFIXES,
    codex_cost,
    resolve_pricing,
)
from tokentally.provider.base import as_dict, as_int, as_str, read_lines
from tokentally.timestamps import now_utc, parse_timestamp

logger = structlog.get_logger()

# model assumed until the first turn_context line names one
DEFAULT_CODEX_MODEL = "gpt-4"


@dataclass(frozen=True, slots=True)
class CodexLine:
    """
    CodexLine is one line of a codex session log, reduced to the
    fields that matter for usage: turn_context lines carry the model,
    event_msg/token_count lines carry the per-turn token delta.
    """

    type: "str | None"
    payload_type: "str | None"
    timestamp: "datetime | None"
    model: "str | None"
    # payload.info.last_token_usage, None when absent
    last_token_usage: "dict[str, Any] | None"

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "CodexLine":
        payload = as_dict(data.get("payload"))
        info = as_dict(payload.get("info"))
        usage = info.get("last_token_usage")
        return cls(
            type=as_str(data.get("type")),
            payload_type=as_str(payload.get("type")),
            timestamp=parse_timestamp(data.get("timestamp")),
            model=as_str(payload.get("model")),
            last_token_usage=usage if isinstance(usage, dict) else None,
        )

    @property
    def is_turn_context(self) -> "bool":
        return self.type == "turn_context"

    @property
    def is_token_count(self) -> "bool":
        return self.type == "event_msg" and self.payload_type == "token_count"


def codex_line_to_entry(
    line: "CodexLine",
    *,
    model: "str",
    entry_id: "str",
    session_id: "str",
    pricing: "PricingTable",
) -> "UsageEntry | Skip":
    """
    converts a token_count line into a UsageEntry attributed to the
    model in effect at that point of the log.
    """
    if not line.is_token_count:
        return Skip(SkipReason.NOT_TOKEN_EVENT)

    usage = line.last_token_usage or {}
    reported_total = as_int(usage.get("total_tokens"))
    if reported_total <= 0:
        return Skip(SkipReason.NO_USAGE)

    input_tokens = as_int(usage.get("input_tokens"))
    output_tokens = as_int(usage.get("output_tokens"))
    cached_input_tokens = as_int(usage.get("cached_input_tokens"))

    record = resolve_pricing(pricing, model, CODEX_PREFIXES, CODEX_MODEL_ALIASES)
    return UsageEntry(
        id=entry_id,
        timestamp=line.timestamp or now_utc(),
        provider=ProviderName.CODEX,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_tokens=0,
        cache_read_tokens=cached_input_tokens,
        # codex reports input inclusive of cached input, so its own
        # total is the authoritative one
        total_tokens=reported_total,
        cost=codex_cost(record, input_tokens, output_tokens, cached_input_tokens),
        session_id=session_id,
    )


def parse_codex_file(path: "str", pricing: "PricingTable") -> "list[UsageEntry]":
    """
    parses a codex session log. Each token_count event is a delta for
    one turn, so every event becomes its own entry; nothing is
    deduplicated.
    """
    try:
        lines = list(read_lines(path))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("codex_file_unreadable", path=path, error=str(exc))
        return []

    session_id = os.path.splitext(os.path.basename(path))[0]
    current_model = DEFAULT_CODEX_MODEL

    entries: "list[UsageEntry]" = []
    skipped: "Counter[str]" = Counter()
    for raw in lines:
        try:
            data = json.loads(raw)
        except ValueError:
            skipped[SkipReason.MALFORMED.value] += 1
            continue
        if not isinstance(data, dict):
            skipped[SkipReason.MALFORMED.value] += 1
            continue

        line = CodexLine.from_dict(data)
        if line.is_turn_context and line.model:
            current_model = line.model

        result = codex_line_to_entry(
            line,
            model=current_model,
            entry_id=f"codex-{session_id}-{len(entries)}",
            session_id=session_id,
            pricing=pricing,
        )
        if isinstance(result, Skip):
            skipped[result.reason.value] += 1
            continue
        entries.append(result)

    if skipped:
        logger.debug("codex_lines_skipped", path=path, **skipped)
    return entries


class CodexProvider:
    """
    CodexProvider reads the code generation CLI's session logs from
    its data directory (CODEX_HOME or ~/.codex).
    """

    def __init__(
        self,
        home: "str | None" = None,
        max_depth: "int" = DEFAULT_MAX_DEPTH,
        max_files: "int | None" = None,
    ) -> "None":
        self._home = home
        self._max_depth = max_depth
        self._max_files = max_files

    @property
    def name(self) -> "str":
        return ProviderName.CODEX.value

    async def close(self) -> "None":
        pass

    async def fetch_entries(self, pricing: "PricingTable") -> "list[UsageEntry]":
        return await asyncio.to_thread(self._collect, pricing)

    def _collect(self, pricing: "PricingTable") -> "list[UsageEntry]":
        root = self._home or codex_home()
        files = most_recent_files(
            find_log_files(root, self._max_depth), self._max_files
        )

        entries: "list[UsageEntry]" = []
        for path in files:
            entries.extend(parse_codex_file(path, pricing))

        logger.debug(
            "codex_collect_done",
            root=root,
            file_count=len(files),
            entry_count=len(entries),
        )
        return entries
