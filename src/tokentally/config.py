import os
from dataclasses import dataclass, field

from tokentally.pricing import LITELLM_PRICING_URL


@dataclass
class Config:
    # listen_address: format ":9186" or
    # "0.0.0.0:9186", empty disables the metrics server
    listen_address: "str" = ""
    # refresh interval in seconds, 0 runs a single aggregation
    watch_interval: "int" = 0
    log_level: "str" = "info"
    log_format: "str" = "console"

    page: "int" = 1
    page_size: "int" = 50
    filter_mode: "str" = "session"
    # empty means every provider
    providers: "list[str]" = field(default_factory=list)

    pricing_url: "str" = LITELLM_PRICING_URL
    # explicit roots, None resolves them from the environment at collect time
    claude_projects_dirs: "list[str] | None" = None
    codex_home: "str | None" = None
    cursor_session_token: "str" = ""

    http_timeout: "float" = 10.0
    max_concurrent_pages: "int" = 8

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            pricing_url=os.environ.get("TOKENTALLY_PRICING_URL", LITELLM_PRICING_URL),
            cursor_session_token=os.environ.get("CURSOR_SESSION_TOKEN", ""),
        )

    @property
    def cursor_enabled(self) -> "bool":
        return bool(self.cursor_session_token)
