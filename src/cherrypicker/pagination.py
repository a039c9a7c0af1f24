from __future__ import annotations

import logging
from typing import Protocol, TypeVar

from cherrypicker.models import Page
from cherrypicker.observability import log_event


LOGGER = logging.getLogger("cherrypicker.pagination")

T_co = TypeVar("T_co", covariant=True)
T = TypeVar("T")


class Pageable(Protocol[T_co]):
    async def list_by_page(self, page: int) -> Page[T_co]:
        """Fetch one page of the collection."""
        ...


async def list_all(pageable: Pageable[T]) -> list[T]:
    """Drain every page of ``pageable`` starting from page 0.

    The listing is all-or-nothing: an error on any page propagates and the
    items gathered so far are dropped.
    """
    page_number = 0
    items: list[T] = []
    while True:
        page = await pageable.list_by_page(page_number)
        items.extend(page.items)
        if not page.has_next:
            break
        page_number += 1
    log_event(LOGGER, "pagination_drained", pages=page_number + 1, count=len(items))
    return items
