"""Cursor pagination over Graph collections."""

from typing import Any, AsyncGenerator, Dict, Optional

from m365crawler.platform.collaborators._base import BaseTransport
from m365crawler.platform.entities._base import Page, RequestDescriptor

NEXT_LINK = "@odata.nextLink"


class CursorPaginator:
    """Turns `@odata.nextLink` cursored responses into pages and item streams.

    Transport errors propagate unchanged; retry policy belongs to the caller.
    """

    def __init__(self, transport: BaseTransport):
        """Initialize the paginator with the transport it reads through."""
        self.transport = transport

    @staticmethod
    def _to_page(body: Dict[str, Any]) -> Page[Dict[str, Any]]:
        return Page[Dict[str, Any]](items=body.get("value") or [], cursor=body.get(NEXT_LINK))

    async def fetch(self, request: RequestDescriptor) -> Page[Dict[str, Any]]:
        """Fetch the first page of a collection."""
        return self._to_page(await self.transport.call(request))

    async def fetch_next(self, cursor: Optional[str]) -> Page[Dict[str, Any]]:
        """Fetch the page a cursor points at.

        An absent or empty cursor is the end of the collection: an empty page is
        returned and the transport is not called.
        """
        if not cursor:
            return Page[Dict[str, Any]]()
        # The cursor is a complete URL that already carries the query.
        return self._to_page(await self.transport.call(RequestDescriptor(url=cursor)))

    async def iterate(self, request: RequestDescriptor) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield every item of a collection in page order."""
        page = await self.fetch(request)
        while True:
            for item in page.items:
                yield item
            if not page.has_next:
                return
            page = await self.fetch_next(page.cursor)

    async def collect(self, request: RequestDescriptor) -> list[Dict[str, Any]]:
        """Return every item of a collection as a list."""
        return [item async for item in self.iterate(request)]
