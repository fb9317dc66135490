import asyncio
import json
import signal
import sys

import structlog
from prometheus_client import start_http_server

from tokentally.aggregator import Aggregator
from tokentally.cli import parse_args
from tokentally.config import Config
from tokentally.logging import setup_logging
from tokentally.metrics import MetricsUpdater
from tokentally.models import AggregatedResult
from tokentally.pricing import PricingCache
from tokentally.provider.base import UsageProvider
from tokentally.provider.claude import ClaudeProvider
from tokentally.provider.codex import CodexProvider
from tokentally.provider.cursor import CursorProvider
from tokentally.tokens import StaticTokenProvider

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def build_providers(config: "Config") -> "list[UsageProvider]":
    """
    log-based providers are always registered, since a missing log
    directory simply yields no entries. The API-based provider needs
    a session token.
    """
    providers: "list[UsageProvider]" = [
        ClaudeProvider(projects_dirs=config.claude_projects_dirs),
        CodexProvider(home=config.codex_home),
    ]

    if config.cursor_enabled:
        tokens = StaticTokenProvider({"cursor": config.cursor_session_token})
        providers.append(
            CursorProvider(
                token_provider=tokens,
                max_concurrency=config.max_concurrent_pages,
                timeout=config.http_timeout,
            )
        )

    for p in providers:
        logger.info("provider_enabled", provider=p.name)
    return providers


def _print_result(result: "AggregatedResult") -> "None":
    sys.stdout.write(json.dumps(result.to_dict(), indent=2) + "\n")
    sys.stdout.flush()


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    if config.listen_address:
        host, port = _parse_listen_address(config.listen_address)
        start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

    async def _run() -> "None":
        aggregator = Aggregator(
            build_providers(config),
            PricingCache(config.pricing_url, timeout=config.http_timeout),
            MetricsUpdater(),
        )
        query = dict(
            page=config.page,
            page_size=config.page_size,
            filter_mode=config.filter_mode,
            providers=config.providers,
        )

        try:
            if not config.watch_interval:
                _print_result(await aggregator.get_usages(**query))
                return

            loop = asyncio.get_running_loop()
            # for SIGINT and SIGTERM, signal the refresh loop
            # to stop gracefully
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, aggregator.stop)

            await aggregator.run(_print_result, config.watch_interval, **query)
        finally:
            logger.info("shutting_down")
            await aggregator.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
