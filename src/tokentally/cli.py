import argparse

from tokentally.config import Config
from tokentally.models import ALL_PROVIDERS, FilterMode


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="tokentally",
        description="Usage and cost aggregator for AI coding assistants",
    )
    parser.add_argument(
        "--page",
        type=int,
        default=1,
        help="Page to print, 1-indexed (default: 1)",
    )
    parser.add_argument(
        "--page-size",
        dest="page_size",
        type=int,
        default=50,
        help="Entries per page (default: 50)",
    )
    parser.add_argument(
        "--filter",
        dest="filter_mode",
        default=FilterMode.SESSION.value,
        choices=[m.value for m in FilterMode],
        help="Time window: since start (session) or this month (default: session)",
    )
    parser.add_argument(
        "--provider",
        dest="providers",
        action="append",
        default=[],
        choices=[p.value for p in ALL_PROVIDERS],
        help="Provider to include, repeatable (default: all)",
    )
    parser.add_argument(
        "--watch",
        dest="watch_interval",
        type=int,
        default=0,
        help="Refresh every N seconds, clamped to 5-300 (default: run once)",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default="",
        help="Address to expose Prometheus metrics on, e.g. :9186 (default: off)",
    )
    parser.add_argument(
        "--claude.projects-dir",
        dest="claude_projects_dirs",
        action="append",
        default=None,
        help="Claude projects directory, repeatable "
        "(default: CLAUDE_CONFIG_DIR or ~/.config/claude and ~/.claude)",
    )
    parser.add_argument(
        "--codex.home",
        dest="codex_home",
        default=None,
        help="Codex data directory (default: CODEX_HOME or ~/.codex)",
    )
    parser.add_argument(
        "--http.timeout",
        dest="http_timeout",
        type=float,
        default=10.0,
        help="Timeout in seconds for pricing and usage API requests (default: 10)",
    )
    parser.add_argument(
        "--cursor.max-concurrent-pages",
        dest="max_concurrent_pages",
        type=int,
        default=8,
        help="Usage event pages fetched in parallel (default: 8)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log format (default: console)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.page = args.page
    config.page_size = args.page_size
    config.filter_mode = args.filter_mode
    config.providers = args.providers
    config.watch_interval = args.watch_interval
    config.listen_address = args.listen_address
    config.claude_projects_dirs = args.claude_projects_dirs
    config.codex_home = args.codex_home
    config.http_timeout = args.http_timeout
    config.max_concurrent_pages = args.max_concurrent_pages
    config.log_level = args.log_level
    config.log_format = args.log_format
    return config
