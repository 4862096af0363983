"""Tests for the SharePoint site, library, list and page walkers."""

import pytest

from m365crawler.core.exceptions import AccessDeniedException, CrawlingException
from m365crawler.platform.entities._base import ResourceKind
from m365crawler.platform.sources.sharepoint import (
    SharePointDocLibWalker,
    SharePointSiteWalker,
    document_library_url,
)
from m365crawler.platform.sources.sharepoint_lists import (
    SharePointListWalker,
    content_from_fields,
    first_field_value,
    is_system_field,
    is_system_list,
)
from m365crawler.platform.sources.sharepoint_pages import (
    SharePointPageWalker,
    canvas_text,
    is_guid_or_id,
    is_system_page,
    page_content,
    page_type,
)
from tests.fixtures.fakes import collection

ROOT_SITE = {
    "id": "s1",
    "displayName": "Marketing",
    "description": "Campaigns",
    "webUrl": "https://contoso.sharepoint.com/sites/mkt",
    "siteCollection": {"root": {}},
}
SUB_SITE = {
    "id": "s2",
    "displayName": "Events",
    "webUrl": "https://contoso.sharepoint.com/sites/mkt/events",
}


def site_routes():
    return {
        "sites": collection(ROOT_SITE),
        "sites/s1/sites": collection(SUB_SITE),
    }


def library(drive_id, name, web_url=None, drive_type="documentLibrary", description=None):
    return {
        "id": drive_id,
        "name": name,
        "description": description,
        "driveType": drive_type,
        "webUrl": web_url or f"https://contoso.sharepoint.com/sites/mkt/{name}",
    }


def generic_list(list_id, name, template="genericList", **extra):
    return {
        "id": list_id,
        "displayName": name,
        "webUrl": f"https://contoso.sharepoint.com/sites/mkt/Lists/{name}",
        "list": {"template": template},
        **extra,
    }


class TestSiteWalkers:
    """Tests for site and document library records."""

    @pytest.mark.asyncio
    async def test_sites_include_sub_sites(self, make_context, transport):
        """Test sub-sites are discovered below their parents."""
        transport.routes.update(site_routes())
        walker = SharePointSiteWalker(make_context())

        handles = [h async for h in walker.walk()]

        assert [h.resource_id for h in handles] == ["s1", "s2"]
        assert all(h.kind == ResourceKind.SITE for h in handles)

    @pytest.mark.asyncio
    async def test_excluded_site_is_skipped(self, make_context, transport):
        """Test the exclusion list applies with exact matches."""
        transport.routes.update(site_routes())
        walker = SharePointSiteWalker(make_context(exclude_site_id="s1"))

        handles = [h async for h in walker.walk()]

        assert [h.resource_id for h in handles] == ["s2"]

    @pytest.mark.asyncio
    async def test_site_type_filter(self, make_context, transport):
        """Test the site type filter keeps root sites only."""
        transport.routes.update(site_routes())
        walker = SharePointSiteWalker(make_context(site_type_filter="root"))

        handles = [h async for h in walker.walk()]

        assert [h.resource_id for h in handles] == ["s1"]

    @pytest.mark.asyncio
    async def test_site_fields_summarize_libraries(self, make_context, transport):
        """Test the site text carries its non-system library names."""
        transport.routes.update(
            {
                "sites/s1/drives": collection(
                    library("d1", "Documents", description="Team files"),
                    library("d2", "Style Library"),
                    library("d3", "Cache", drive_type="business"),
                )
            }
        )
        walker = SharePointSiteWalker(make_context())
        handle = walker.make_handle(ResourceKind.SITE, ROOT_SITE)

        fields = await walker.build_fields(handle)

        assert fields["content"] == (
            "Marketing Campaigns https://contoso.sharepoint.com/sites/mkt Documents Team files"
        )
        assert fields["type"] == "root"
        assert fields["roles"] == []

    @pytest.mark.asyncio
    async def test_doclib_walk_skips_system_libraries(self, make_context, transport):
        """Test system libraries are not emitted."""
        transport.routes.update(
            {
                "sites": collection(ROOT_SITE),
                "sites/s1/drives": collection(
                    library("d1", "Documents"),
                    library("d2", "Form Templates"),
                    library(
                        "d3",
                        "Theme",
                        web_url="https://contoso.sharepoint.com/sites/mkt/_catalogs/theme",
                    ),
                ),
            }
        )
        walker = SharePointDocLibWalker(make_context())

        handles = [h async for h in walker.walk()]

        assert [h.resource_id for h in handles] == ["d1"]
        assert handles[0].context["site"]["id"] == "s1"

    @pytest.mark.asyncio
    async def test_doclib_fields(self, make_context, transport):
        """Test a library record has the canonical URL and drive roles."""
        transport.routes.update(
            {
                "drives/d1/root/permissions": collection(
                    {"grantedToV2": {"group": {"id": "g1"}}}
                ),
                "groups/g1": {"mail": "mkt@contoso.com"},
            }
        )
        walker = SharePointDocLibWalker(make_context())
        handle = walker.make_handle(
            ResourceKind.DOCUMENT_LIBRARY,
            library("d1", "Documents"),
            site={"id": "s1", "displayName": "Marketing", "webUrl": ROOT_SITE["webUrl"]},
        )

        fields = await walker.build_fields(handle)

        assert fields["url"] == "https://contoso.sharepoint.com/sites/mkt/Shared%20Documents"
        assert fields["content"] == "Documents Marketing"
        assert fields["roles"] == ["2g1", "2mkt@contoso.com"]

    def test_document_library_url_encodes_custom_names(self):
        """Test custom library names are encoded."""
        site = {"webUrl": "https://contoso.sharepoint.com/sites/mkt"}

        assert document_library_url(site, {"name": "Brand Assets"}) == (
            "https://contoso.sharepoint.com/sites/mkt/Brand%20Assets"
        )


class TestListHelpers:
    """Tests for list and field classification."""

    def test_system_lists(self):
        """Test system lists are recognised by facet, template and name."""
        assert is_system_list({"system": {}})
        assert is_system_list({"list": {"template": "userInformation"}})
        assert is_system_list({"displayName": "Master Page Gallery"})
        assert is_system_list({"name": "_catalogs_x"})
        assert not is_system_list(generic_list("l1", "Tasks"))

    def test_system_fields(self):
        """Test bookkeeping fields are not content."""
        assert is_system_field("_UIVersionString")
        assert is_system_field("owshiddenversion")
        assert is_system_field("ContentType")
        assert is_system_field("")
        assert not is_system_field("Title")

    def test_first_field_value(self):
        """Test the first non-blank named value wins."""
        fields = {"Title": " ", "LinkTitle": "Launch", "FileLeafRef": "x"}

        assert first_field_value(fields, "Title", "LinkTitle", "FileLeafRef") == "Launch"
        assert first_field_value(None, "Title") is None

    def test_content_from_fields(self):
        """Test user fields are concatenated and system fields skipped."""
        fields = {"Title": "Launch", "_ModerationStatus": 0, "Owner": "Jane", "Notes": None}

        assert content_from_fields(fields) == "Launch Jane"


class TestSharePointListWalker:
    """Tests for list item enumeration and records."""

    @pytest.mark.asyncio
    async def test_walk_filters_lists_and_titles(self, make_context, transport):
        """Test excluded, system and non-matching items are skipped."""
        # Arrange
        transport.routes.update(
            {
                "sites": collection(ROOT_SITE),
                "sites/s1/lists": collection(
                    generic_list("l1", "Tasks"),
                    generic_list("l2", "Excluded"),
                    generic_list("l3", "User Information List", template="userInformation"),
                ),
                "sites/s1/lists/l1/items": collection(
                    {"id": "1", "fields": {"Title": "Launch plan"}},
                    {"id": "2", "fields": {"Title": "Draft"}},
                ),
            }
        )
        walker = SharePointListWalker(
            make_context(exclude_list_id="l2", include_pattern="Launch.*")
        )

        # Act
        handles = [h async for h in walker.walk()]

        # Assert
        assert [h.resource_id for h in handles] == ["1"]
        assert handles[0].name == "Launch plan"
        assert handles[0].context["list"]["template"] == "genericList"
        assert transport.called("sites/s1/lists/l3/items") == 0

    @pytest.mark.asyncio
    async def test_explicit_list_id(self, make_context, transport):
        """Test a configured list is read from the configured site."""
        transport.routes.update(
            {
                "sites/s1": ROOT_SITE,
                "sites/s1/lists/l1": generic_list("l1", "Tasks"),
                "sites/s1/lists/l1/items": collection({"id": "7", "fields": {"Title": "A"}}),
            }
        )
        walker = SharePointListWalker(make_context(site_id="s1", list_id="l1"))

        handles = [h async for h in walker.walk()]

        assert [h.resource_id for h in handles] == ["7"]

    @pytest.mark.asyncio
    async def test_denied_explicit_list_is_abandoned(self, make_context, transport):
        """Test an access error on a configured list ends the walk without raising."""
        transport.routes.update(
            {
                "sites/s1": ROOT_SITE,
                "sites/s1/lists/l1": AccessDeniedException("denied"),
            }
        )
        walker = SharePointListWalker(make_context(site_id="s1", list_id="l1"))

        handles = [h async for h in walker.walk()]

        assert handles == []
        assert transport.called("sites/s1/lists/l1/items") == 0

    def _handle(self, walker, item, template="genericList"):
        return walker.make_handle(
            ResourceKind.LIST_ITEM,
            item,
            site={"id": "s1", "displayName": "Marketing", "webUrl": ROOT_SITE["webUrl"]},
            list={
                "id": "l1",
                "displayName": "Tasks",
                "webUrl": "https://contoso.sharepoint.com/sites/mkt/Lists/Tasks",
                "template": template,
            },
        )

    @pytest.mark.asyncio
    async def test_item_fields(self, make_context):
        """Test a generic list item becomes a record."""
        walker = SharePointListWalker(make_context())
        item = {"id": "3", "fields": {"Title": "Launch", "Body": "Ship it"}}

        fields = await walker.build_fields(self._handle(walker, item))

        assert fields["title"] == "Launch"
        assert fields["content"] == "Ship it"
        assert fields["url"] == (
            "https://contoso.sharepoint.com/sites/mkt/Lists/Tasks/DispForm.aspx?ID=3"
        )
        assert fields["list"]["template_type"] == "genericList"

    @pytest.mark.asyncio
    async def test_non_generic_and_unknown_templates_are_discarded(self, make_context):
        """Test only generic list items become records."""
        walker = SharePointListWalker(make_context())
        item = {"id": "3", "fields": {"Title": "x"}}

        assert await walker.build_fields(self._handle(walker, item, "events")) is None
        assert await walker.build_fields(self._handle(walker, item, None)) is None

    @pytest.mark.asyncio
    async def test_missing_fields_are_refreshed(self, make_context, transport):
        """Test an item listed without fields is fetched again."""
        transport.routes["sites/s1/lists/l1/items/3"] = {
            "id": "3",
            "fields": {"Title": "Refreshed", "Owner": "Jane"},
        }
        walker = SharePointListWalker(make_context())

        fields = await walker.build_fields(self._handle(walker, {"id": "3"}))

        assert fields["title"] == "Refreshed"
        assert fields["content"] == "Refreshed Jane"

    @pytest.mark.asyncio
    async def test_refresh_failure_raises_when_not_ignored(self, make_context, transport):
        """Test a failing refresh aborts the item unless errors are ignored."""
        transport.routes["sites/s1/lists/l1/items/3"] = RuntimeError("boom")
        walker = SharePointListWalker(make_context())

        with pytest.raises(CrawlingException):
            await walker.build_fields(self._handle(walker, {"id": "3"}))


class TestPageHelpers:
    """Tests for page classification and canvas text."""

    def test_is_guid_or_id(self):
        """Test identifiers are told apart from prose."""
        assert is_guid_or_id("0f6a1c2e-3b4d-4e5f-8a9b-0c1d2e3f4a5b")
        assert is_guid_or_id("12345678901")
        assert is_guid_or_id("abc123")
        assert not is_guid_or_id("Quarterly results")
        assert not is_guid_or_id("")

    def test_page_type(self):
        """Test news posts, articles and other pages."""
        news = {"@odata.type": "#microsoft.graph.sitePage", "promotionKind": "newsPost"}

        assert page_type(news) == "news"
        assert page_type({"promotionKind": "page"}) == "article"
        assert page_type({"@odata.type": "#microsoft.graph.otherPage"}) == "page"

    def test_is_system_page(self):
        """Test infrastructure URLs are system pages."""
        assert is_system_page({"webUrl": "https://contoso/sites/a/SitePages/Forms/AllPages.aspx"})
        assert is_system_page({"webUrl": "https://contoso/sites/a/_layouts/15/x.aspx"})
        assert not is_system_page({"webUrl": "https://contoso/sites/a/SitePages/Home.aspx"})

    def test_canvas_text_orders_sections(self):
        """Test horizontal sections come before the vertical section."""
        welcome = {
            "@odata.type": "#microsoft.graph.textWebPart",
            "innerHtml": "<h1>Welcome</h1><p>to&nbsp;the team</p>",
        }
        links = {
            "@odata.type": "#microsoft.graph.standardWebPart",
            "data": {
                "title": "Quick links",
                # Short tokens and numbers are identifiers, not text.
                "properties": {"items": ["Employee handbook", "Handbook", "abc1"]},
                "serverProcessedContent": {"id": "1234"},
            },
        }
        side = {"@odata.type": "#microsoft.graph.textWebPart", "innerHtml": "<p>Side</p>"}
        canvas = {
            "verticalSection": {"webparts": [side]},
            "horizontalSections": [{"columns": [{"webparts": [welcome, links]}]}],
        }

        assert canvas_text(canvas) == [
            "Welcome to the team",
            "Quick links Employee handbook",
            "Side",
        ]

    def test_page_content(self):
        """Test title and description lead the page text."""
        page = {"title": "Home", "description": "Start here", "canvasLayout": None}

        assert page_content(page) == "Home\n\nStart here"


def site_page(page_id, title, path, **extra):
    return {
        "id": page_id,
        "title": title,
        "webUrl": f"https://contoso/sites/mkt/SitePages/{path}",
        **extra,
    }


class TestSharePointPageWalker:
    """Tests for page enumeration and records."""

    @pytest.mark.asyncio
    async def test_walk_applies_filters(self, make_context, transport):
        """Test system pages and page types are filtered."""
        transport.routes.update(
            {
                "sites": collection(ROOT_SITE),
                "sites/s1/pages": collection(
                    site_page("p1", "News", "News.aspx", promotionKind="newsPost"),
                    site_page("p2", "Article", "Article.aspx"),
                    site_page("p3", "Dev", "DevHome.aspx"),
                ),
            }
        )
        walker = SharePointPageWalker(make_context(page_type_filter="news,article"))

        handles = [h async for h in walker.walk()]

        assert [h.resource_id for h in handles] == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_page_roles_fall_back_to_site_roles(self, make_context, transport):
        """Test a page without its own permissions takes the site's."""
        transport.routes.update(
            {
                "sites/s1/pages/p1/microsoft.graph.sitePage": {
                    "id": "p1",
                    "title": "Home",
                    "promotionKind": "page",
                    "createdBy": {"user": {"displayName": "Jane"}},
                    "canvasLayout": {
                        "verticalSection": {
                            "webparts": [{"innerHtml": "<p>Hello world</p>"}]
                        }
                    },
                },
                "sites/s1/pages/p1/permissions": collection(),
                "sites/s1/permissions": collection({"grantedToV2": {"user": {"id": "u1"}}}),
            }
        )
        walker = SharePointPageWalker(make_context())
        handle = walker.make_handle(
            ResourceKind.PAGE,
            {"id": "p1", "webUrl": "https://contoso/sites/mkt/SitePages/Home.aspx"},
            site={"id": "s1", "displayName": "Marketing", "webUrl": ROOT_SITE["webUrl"]},
        )

        fields = await walker.build_fields(handle)

        assert fields["content"] == "Home\n\nHello world"
        assert fields["author"] == "Jane"
        assert fields["type"] == "article"
        assert fields["url"] == "https://contoso/sites/mkt/SitePages/Home.aspx"
        assert fields["roles"] == ["1u1"]
