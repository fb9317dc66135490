import asyncio
import json
import os
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from tokentally.dedup import DeduplicationStore
from tokentally.discovery import (
    DEFAULT_MAX_DEPTH,
    claude_projects_dirs,
    find_log_files,
    most_recent_files,
)
from tokentally.models import (
    PricingTable,
    ProviderName,
    Skip,
    SkipReason,
    UsageEntry,
)
from tokentally.pricing import CLAUDE_PREFIXES, resolve_pricing, standard_cost
from tokentally.provider.base import as_dict, as_float, as_int, as_str, read_lines
from tokentally.timestamps import now_utc, parse_timestamp

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ClaudeRecord:
    """
    ClaudeRecord is the subset of a claude log line that carries
    usage. Every field is optional in the source.
    """

    message_id: "str | None"
    request_id: "str | None"
    model: "str | None"
    timestamp: "datetime | None"
    input_tokens: "int"
    output_tokens: "int"
    cache_creation_tokens: "int"
    cache_read_tokens: "int"
    # pre-computed cost embedded by older versions of the CLI
    cost_usd: "float | None"

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "ClaudeRecord":
        message = as_dict(data.get("message"))
        usage = as_dict(message.get("usage"))
        cost = as_float(data.get("costUSD"))

        return cls(
            message_id=as_str(message.get("id")),
            request_id=as_str(data.get("requestId")),
            model=as_str(message.get("model")),
            timestamp=parse_timestamp(data.get("timestamp")),
            input_tokens=as_int(usage.get("input_tokens")),
            output_tokens=as_int(usage.get("output_tokens")),
            cache_creation_tokens=as_int(usage.get("cache_creation_input_tokens")),
            cache_read_tokens=as_int(usage.get("cache_read_input_tokens")),
            cost_usd=None if cost is None else max(0.0, cost),
        )

    @property
    def has_usage(self) -> "bool":
        return self.input_tokens > 0 or self.output_tokens > 0


def parse_claude_line(
    line: "str",
    *,
    entry_id: "str",
    session_id: "str",
    project_name: "str",
    pricing: "PricingTable",
    dedup: "DeduplicationStore",
) -> "UsageEntry | Skip":
    """
    turns one log line into a priced UsageEntry, or a Skip when the
    line is malformed, carries no usage, or was already counted.
    """
    try:
        data = json.loads(line)
    except ValueError:
        return Skip(SkipReason.MALFORMED, "invalid json")

    if not isinstance(data, dict):
        return Skip(SkipReason.MALFORMED, "not an object")

    record = ClaudeRecord.from_dict(data)
    if not record.has_usage:
        return Skip(SkipReason.NO_USAGE)

    if not dedup.is_new(record.message_id, record.request_id):
        return Skip(SkipReason.DUPLICATE)

    model = record.model or "unknown"
    cost = record.cost_usd
    if cost is None:
        cost = standard_cost(
            resolve_pricing(pricing, model, CLAUDE_PREFIXES),
            record.input_tokens,
            record.output_tokens,
            record.cache_creation_tokens,
            record.cache_read_tokens,
        )

    return UsageEntry(
        id=entry_id,
        timestamp=record.timestamp or now_utc(),
        provider=ProviderName.CLAUDE,
        model=model,
        input_tokens=record.input_tokens,
        output_tokens=record.output_tokens,
        cache_creation_tokens=record.cache_creation_tokens,
        cache_read_tokens=record.cache_read_tokens,
        total_tokens=(
            record.input_tokens
            + record.output_tokens
            + record.cache_creation_tokens
            + record.cache_read_tokens
        ),
        cost=cost,
        session_id=session_id,
        project_name=project_name,
    )


def _session_id(path: "str") -> "str":
    return os.path.splitext(os.path.basename(path))[0]


def parse_claude_file(
    path: "str",
    pricing: "PricingTable",
    dedup: "DeduplicationStore",
    id_prefix: "str | None" = None,
) -> "list[UsageEntry]":
    """
    parses a claude session log. The session id is the file name and
    the project is the directory holding it. dedup must be shared by
    all files of one run.

    Entry ids are "<id_prefix>-<index>", id_prefix defaulting to
    "claude-<session id>".
    """
    try:
        lines = list(read_lines(path))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("claude_file_unreadable", path=path, error=str(exc))
        return []

    session_id = _session_id(path)
    project_name = os.path.basename(os.path.dirname(path))
    id_prefix = id_prefix or f"claude-{session_id}"

    entries: "list[UsageEntry]" = []
    skipped: "Counter[str]" = Counter()
    for line in lines:
        result = parse_claude_line(
            line,
            entry_id=f"{id_prefix}-{len(entries)}",
            session_id=session_id,
            project_name=project_name,
            pricing=pricing,
            dedup=dedup,
        )
        if isinstance(result, Skip):
            skipped[result.reason.value] += 1
            continue
        entries.append(result)

    if skipped:
        logger.debug("claude_lines_skipped", path=path, **skipped)
    return entries


class ClaudeProvider:
    """
    ClaudeProvider reads the chat assistant's per-session JSONL logs
    from every configured projects directory. Files are parsed newest
    first with one shared DeduplicationStore, so a message that was
    written to several sessions is counted once.
    """

    def __init__(
        self,
        projects_dirs: "list[str] | None" = None,
        max_depth: "int" = DEFAULT_MAX_DEPTH,
        max_files: "int | None" = None,
    ) -> "None":
        self._projects_dirs = projects_dirs
        self._max_depth = max_depth
        self._max_files = max_files

    @property
    def name(self) -> "str":
        return ProviderName.CLAUDE.value

    async def close(self) -> "None":
        pass

    async def fetch_entries(self, pricing: "PricingTable") -> "list[UsageEntry]":
        return await asyncio.to_thread(self._collect, pricing)

    def _collect(self, pricing: "PricingTable") -> "list[UsageEntry]":
        dirs = (
            self._projects_dirs
            if self._projects_dirs is not None
            else claude_projects_dirs()
        )

        files: "list[str]" = []
        for directory in dirs:
            files.extend(find_log_files(directory, self._max_depth))

        files = most_recent_files(files, self._max_files)
        dedup = DeduplicationStore()

        entries: "list[UsageEntry]" = []
        seen_sessions: "Counter[str]" = Counter()
        for path in files:
            session_id = _session_id(path)
            # the same session file can exist under several roots
            repeat = seen_sessions[session_id]
            seen_sessions[session_id] += 1
            id_prefix = f"claude-{session_id}" + (f"~{repeat}" if repeat else "")
            entries.extend(parse_claude_file(path, pricing, dedup, id_prefix))

        logger.debug(
            "claude_collect_done",
            dirs=dirs,
            file_count=len(files),
            entry_count=len(entries),
            dedup_keys=len(dedup),
        )
        return entries
