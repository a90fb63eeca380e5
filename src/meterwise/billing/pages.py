from typing import AsyncIterator, Awaitable, Callable, Generic, TypeVar

from meterwise.models import Page

T = TypeVar("T")


class PagedEnumerator(Generic[T]):
    """
    PagedEnumerator walks a server-paginated collection one page at a
    time, starting from a first page the caller already fetched.

    It is forward-only and cannot be restarted: once the page without a
    continuation token has been consumed, has_more() stays False and a
    new enumerator has to be created to walk the same query again.
    """

    def __init__(
        self,
        first_page: "Page[T]",
        fetch_next: "Callable[[str], Awaitable[Page[T]]]",
    ) -> "None":
        self._fetch_next = fetch_next
        self._page: "Page[T] | None" = first_page

    def has_more(self) -> "bool":
        return self._page is not None

    def current(self) -> "Page[T]":
        if self._page is None:
            raise RuntimeError("enumerator is exhausted")
        return self._page

    async def advance(self) -> "None":
        """
        moves to the next page, fetching it when the current one
        carries a continuation token.
        """
        page = self.current()
        if not page.continuation_token:
            self._page = None
            return
        self._page = await self._fetch_next(page.continuation_token)

    async def pages(self) -> "AsyncIterator[Page[T]]":
        while self.has_more():
            yield self.current()
            await self.advance()

    async def collect(self) -> "list[T]":
        """
        drains the enumerator into a single list. If any page fetch
        fails the error propagates and nothing is returned.
        """
        items: "list[T]" = []
        async for page in self.pages():
            items.extend(page.items)
        return items
