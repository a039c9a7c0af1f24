from __future__ import annotations

import asyncio

from hypothesis import given, strategies as st
import pytest

from cherrypicker.models import Page
from cherrypicker.pagination import list_all


class _FakePageable:
    def __init__(self, pages: list[list[int]], *, fail_at: int | None = None) -> None:
        self.pages = pages
        self.fail_at = fail_at
        self.requested: list[int] = []

    async def list_by_page(self, page: int) -> Page[int]:
        self.requested.append(page)
        if page == self.fail_at:
            raise RuntimeError(f"page {page} failed")
        return Page(items=tuple(self.pages[page]), has_next=page < len(self.pages) - 1)


@given(st.lists(st.lists(st.integers(), max_size=5), min_size=1, max_size=6))
def test_list_all_drains_every_page_in_order(pages: list[list[int]]) -> None:
    pageable = _FakePageable(pages)

    items = asyncio.run(list_all(pageable))

    assert pageable.requested == list(range(len(pages)))
    assert items == [item for page in pages for item in page]


def test_list_all_single_page_without_next() -> None:
    pageable = _FakePageable([[1, 2, 3]])

    assert asyncio.run(list_all(pageable)) == [1, 2, 3]
    assert pageable.requested == [0]


def test_list_all_failure_returns_no_partial_results() -> None:
    pageable = _FakePageable([[1], [2], [3]], fail_at=2)

    with pytest.raises(RuntimeError, match="page 2 failed"):
        asyncio.run(list_all(pageable))

    assert pageable.requested == [0, 1, 2]
