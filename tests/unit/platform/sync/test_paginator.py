"""Tests for CursorPaginator."""

import pytest

from m365crawler.core.exceptions import AccessDeniedException
from m365crawler.platform.entities._base import RequestDescriptor
from m365crawler.platform.sync.paginator import CursorPaginator
from tests.fixtures.fakes import FakeTransport, collection

NEXT = "https://graph.microsoft.com/v1.0/users?$skiptoken=abc"


class TestCursorPaginator:
    """Tests for cursor pagination."""

    @pytest.mark.asyncio
    async def test_fetch_returns_items_and_cursor(self):
        """Test the first page carries the next link as cursor."""
        # Arrange
        transport = FakeTransport({"users": collection({"id": "1"}, {"id": "2"}, next_link=NEXT)})
        paginator = CursorPaginator(transport)

        # Act
        page = await paginator.fetch(RequestDescriptor(path="users"))

        # Assert
        assert [item["id"] for item in page.items] == ["1", "2"]
        assert page.cursor == NEXT
        assert page.has_next

    @pytest.mark.asyncio
    async def test_fetch_next_without_cursor_does_not_call_transport(self):
        """Test an absent cursor ends the collection without a request."""
        transport = FakeTransport()
        paginator = CursorPaginator(transport)

        for cursor in (None, ""):
            page = await paginator.fetch_next(cursor)
            assert page.items == []
            assert not page.has_next

        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_fetch_next_uses_cursor_as_absolute_url(self):
        """Test the cursor is requested verbatim."""
        transport = FakeTransport({NEXT: collection({"id": "3"})})
        paginator = CursorPaginator(transport)

        page = await paginator.fetch_next(NEXT)

        assert [item["id"] for item in page.items] == ["3"]
        assert transport.calls[0].url == NEXT
        assert transport.calls[0].path is None

    @pytest.mark.asyncio
    async def test_iterate_follows_next_links_in_order(self):
        """Test iteration walks every page in order."""
        transport = FakeTransport(
            {
                "users": collection({"id": "1"}, next_link=NEXT),
                NEXT: collection({"id": "2"}, {"id": "3"}),
            }
        )
        paginator = CursorPaginator(transport)

        items = await paginator.collect(RequestDescriptor(path="users"))

        assert [item["id"] for item in items] == ["1", "2", "3"]
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_missing_value_is_an_empty_page(self):
        """Test a body without `value` yields no items."""
        transport = FakeTransport({"users": {}})
        paginator = CursorPaginator(transport)

        assert await paginator.collect(RequestDescriptor(path="users")) == []

    @pytest.mark.asyncio
    async def test_transport_errors_propagate(self):
        """Test errors are not swallowed by the paginator."""
        transport = FakeTransport({"users": AccessDeniedException("denied")})
        paginator = CursorPaginator(transport)

        with pytest.raises(AccessDeniedException):
            await paginator.fetch(RequestDescriptor(path="users"))
