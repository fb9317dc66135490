import asyncio
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger()

# cap on in-flight page requests after the first page
DEFAULT_MAX_CONCURRENCY = 8
# upper bound on pages requested, whatever total the server reports
DEFAULT_MAX_PAGES = 1000


@dataclass(frozen=True, slots=True)
class Page:
    """
    Page is one decoded response of a paginated endpoint.
    """

    # server-reported number of items across all pages
    total_count: "int"
    items: "list[Any]"


PageFetcher = Callable[[int], Awaitable[Page]]


async def fetch_all_pages(
    fetch_page: "PageFetcher",
    page_size: "int",
    max_concurrency: "int" = DEFAULT_MAX_CONCURRENCY,
    max_pages: "int" = DEFAULT_MAX_PAGES,
) -> "list[Any]":
    """
    fetches every page of a 1-indexed paginated endpoint.

    Page 1 is fetched alone to learn the total count; the remaining
    pages are then requested by at most max_concurrency workers, and
    no more than max_pages pages are requested in total. A failing
    page is logged and dropped while the others are kept, so the
    result may be partial. If page 1 fails nothing is returned.
    """
    try:
        first = await fetch_page(1)
    except Exception as exc:
        logger.warning("first_page_fetch_failed", error=str(exc))
        return []

    items: "list[Any]" = list(first.items)
    total_pages = math.ceil(first.total_count / page_size) if page_size > 0 else 1
    if total_pages <= 1:
        return items

    if total_pages > max_pages:
        logger.warning(
            "page_count_capped", reported_pages=total_pages, max_pages=max_pages
        )
        total_pages = max(1, max_pages)

    pages = range(2, total_pages + 1)
    pending = iter(pages)
    results: "dict[int, Page | Exception]" = {}

    async def _worker() -> "None":
        # workers share one page iterator, so each page is fetched once
        for page in pending:
            try:
                results[page] = await fetch_page(page)
            except Exception as exc:
                results[page] = exc

    workers = min(max(1, max_concurrency), len(pages))
    await asyncio.gather(*(_worker() for _ in range(workers)))

    failed = 0
    for page in pages:
        result = results[page]
        if isinstance(result, Exception):
            logger.warning("page_fetch_failed", page=page, error=str(result))
            failed += 1
            continue

        items.extend(result.items)

    logger.debug(
        "pagination_done",
        total_pages=total_pages,
        failed_pages=failed,
        item_count=len(items),
    )
    return items
