"""Exhaustive listing over Fastly's page-numbered endpoints."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from .config import FASTLY_PAGE_SIZE

logger = logging.getLogger(__name__)

T = TypeVar("T")


def list_all_pages(
    fetch_page: Callable[[int, int], list[T] | None],
    page_size: int = FASTLY_PAGE_SIZE,
) -> list[T]:
    """Collect every item of a paginated listing.

    Pages are requested starting at 1. A page holding fewer than
    ``page_size`` items is the last one; Fastly does not report a total.

    Args:
        fetch_page: Called as ``fetch_page(page_number, page_size)``.
        page_size: Items requested per page.

    Returns:
        All items in the order Fastly returned them.
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")

    items: list[T] = []
    page_number = 1
    done = False
    while not done:
        page = fetch_page(page_number, page_size) or []
        items.extend(page)
        done = len(page) < page_size
        page_number += 1

    logger.debug("Listed all pages", extra={"pages": page_number - 1, "items": len(items)})
    return items
