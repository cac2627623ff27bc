"""Newest-first history pages over the message log."""

from __future__ import annotations

from typing import Any, Tuple

from .log import ChatMessage, MessageLog

DEFAULT_PAGE_SIZE = 20


def normalize_page(page: Any) -> int:
    """Coerce a client-supplied page number; anything below 1 means page 1."""

    if isinstance(page, bool):
        return 1
    if isinstance(page, str):
        try:
            page = int(page.strip())
        except ValueError:
            return 1
    if not isinstance(page, int):
        return 1
    return max(page, 1)


def page_bounds(total_count: int, page_number: int, page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[int, int]:
    """Return the ``[start, end)`` slice of the log for a 1-based page.

    Page 1 is the newest ``page_size`` entries. Bounds are computed from the
    log length at call time, so appends between two requests shift pages.
    """

    if page_size <= 0:
        raise ValueError("page_size must be positive")
    page_number = max(page_number, 1)
    start = max(0, total_count - page_number * page_size)
    end = max(0, total_count - (page_number - 1) * page_size)
    return start, end


def paginate(log: MessageLog, page_number: int, page_size: int = DEFAULT_PAGE_SIZE) -> list[ChatMessage]:
    start, end = page_bounds(len(log), page_number, page_size)
    page = log.window(start, end)
    page.reverse()
    return page
