import asyncio
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from wikimirror.mirror.domain.models import Listing

T = TypeVar("T")

FetchPage = Callable[[str | None], Awaitable[Listing[T]]]


async def paginate(fetch_page: FetchPage[T], interval: float = 0.0) -> AsyncIterator[Listing[T]]:
    """Yield listing pages until the source stops returning a continuation cursor.

    ``interval`` seconds are slept before each continuation request, so the delay
    only ever falls between two pages.
    """
    cursor: str | None = None
    while True:
        listing = await fetch_page(cursor)
        yield listing
        if not listing.next_cursor:
            return
        cursor = listing.next_cursor
        if interval > 0:
            await asyncio.sleep(interval)


async def collect_all(fetch_page: FetchPage[T]) -> list[T]:
    items: list[T] = []
    async for listing in paginate(fetch_page):
        items.extend(listing.items)
    return items
