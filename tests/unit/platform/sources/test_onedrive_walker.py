"""Tests for the OneDrive walker."""

import pytest

from m365crawler.core.exceptions import AccessDeniedException, ContentTooLargeException
from m365crawler.platform.entities._base import ResourceKind
from m365crawler.platform.sources.onedrive import (
    CRAWLER_TYPE_DRIVE,
    CRAWLER_TYPE_SHARED,
    CRAWLER_TYPE_USER,
    OneDriveWalker,
    drive_item_url,
    encode_url_segment,
)
from tests.fixtures.fakes import collection

ONLY_DRIVE = {
    "shared_documents_drive_crawler": "false",
    "user_drive_crawler": "false",
    "group_drive_crawler": "false",
    "drive_id": "d1",
}


def file_item(item_id, name, size=5, mime="text/plain", **extra):
    return {
        "id": item_id,
        "name": name,
        "size": size,
        "webUrl": f"https://contoso.sharepoint.com/Shared%20Documents/{name}",
        "file": {"mimeType": mime},
        **extra,
    }


def folder_item(item_id, name):
    return {"id": item_id, "name": name, "folder": {"childCount": 1}}


async def collect(walker):
    return [handle async for handle in walker.walk()]


class TestDriveItemUrl:
    """Tests for drive item URL rebuilding."""

    def test_plain_url_is_kept(self):
        """Test URLs without a viewer path are returned as is."""
        item = {"webUrl": "https://contoso.sharepoint.com/Shared%20Documents/a.docx"}

        assert drive_item_url(item, CRAWLER_TYPE_SHARED) == item["webUrl"]

    def test_layouts_url_is_rebuilt_from_parent_path(self):
        """Test viewer links are rebuilt under Shared Documents."""
        item = {
            "name": "Q1 report.docx",
            "webUrl": "https://contoso.sharepoint.com/sites/fin/_layouts/15/Doc.aspx?sourcedoc=x",
            "parentReference": {"path": "/drives/d1/root:/Reports/2024"},
        }

        assert drive_item_url(item, CRAWLER_TYPE_SHARED) == (
            "https://contoso.sharepoint.com/sites/fin/Shared%20Documents/Reports/2024/"
            "Q1%20report.docx"
        )

    def test_layouts_url_for_user_drive(self):
        """Test personal drive viewer links point into Documents."""
        item = {
            "name": "a.txt",
            "webUrl": "https://contoso-my.sharepoint.com/personal/jane/_layouts/15/x",
            "parentReference": {"path": "/drives/d1/root:"},
        }

        assert drive_item_url(item, CRAWLER_TYPE_USER) == (
            "https://contoso-my.sharepoint.com/personal/jane/Documents/a.txt"
        )

    def test_layouts_url_for_explicit_drive(self):
        """Test explicit drive links use the drive name."""
        item = {"name": "a.txt", "webUrl": "https://contoso.sharepoint.com/_layouts/15/x"}

        assert drive_item_url(item, CRAWLER_TYPE_DRIVE, "Archive") == (
            "https://contoso.sharepoint.com/Archive/a.txt"
        )

    def test_missing_web_url(self):
        """Test items without a webUrl have no URL."""
        assert drive_item_url({}, CRAWLER_TYPE_SHARED) is None

    def test_encode_url_segment(self):
        """Test spaces become %20 and reserved characters are escaped."""
        assert encode_url_segment("a b&c*") == "a%20b%26c*"
        assert encode_url_segment("") == ""


class TestOneDriveWalk:
    """Tests for drive enumeration."""

    @pytest.mark.asyncio
    async def test_walks_folders_breadth_first(self, make_context, transport):
        """Test items are yielded level by level with breadcrumbs."""
        # Arrange
        transport.routes.update(
            {
                "drives/d1": {"id": "d1", "name": "Archive"},
                "drives/d1/root/children": collection(
                    folder_item("f1", "Reports"), file_item("i1", "root.txt")
                ),
                "drives/d1/items/f1/children": collection(file_item("i2", "deep.txt")),
            }
        )
        walker = OneDriveWalker(make_context(**ONLY_DRIVE))

        # Act
        handles = await collect(walker)

        # Assert
        assert [h.resource_id for h in handles] == ["f1", "i1", "i2"]
        assert all(h.kind == ResourceKind.DRIVE_ITEM for h in handles)
        assert [c.entity_id for c in handles[2].breadcrumbs] == ["d1", "f1"]
        assert handles[0].context["crawler_type"] == CRAWLER_TYPE_DRIVE

    @pytest.mark.asyncio
    async def test_missing_branch_root_is_skipped(self, make_context, transport, failure_log):
        """Test a user without a drive yields nothing and logs no failure."""
        transport.routes.update(
            {"users": collection({"id": "u1", "assignedLicenses": [{"skuId": "x"}]})}
        )
        walker = OneDriveWalker(
            make_context(shared_documents_drive_crawler="false", group_drive_crawler="false")
        )

        assert await collect(walker) == []
        assert failure_log.entries == []

    @pytest.mark.asyncio
    async def test_failing_folder_does_not_stop_siblings(self, make_context, transport):
        """Test an unreadable folder ends only its own branch."""
        transport.routes.update(
            {
                "drives/d1": {"id": "d1", "name": "Archive"},
                "drives/d1/root/children": collection(
                    folder_item("f1", "Locked"), folder_item("f2", "Open")
                ),
                "drives/d1/items/f1/children": AccessDeniedException("denied"),
                "drives/d1/items/f2/children": collection(file_item("i1", "a.txt")),
            }
        )
        walker = OneDriveWalker(make_context(**ONLY_DRIVE))

        handles = await collect(walker)

        assert [h.resource_id for h in handles] == ["f1", "f2", "i1"]

    @pytest.mark.asyncio
    async def test_user_drive_inherits_user_role(self, make_context, transport):
        """Test personal drives carry the owner's role and skip unlicensed users."""
        transport.routes.update(
            {
                "users": collection(
                    {"id": "u1", "assignedLicenses": [{"skuId": "x"}]},
                    {"id": "u2", "assignedLicenses": []},
                ),
                "users/u1/drive": {"id": "d9", "name": "OneDrive"},
                "drives/d9/root/children": collection(file_item("i1", "a.txt")),
            }
        )
        walker = OneDriveWalker(
            make_context(shared_documents_drive_crawler="false", group_drive_crawler="false")
        )

        handles = await collect(walker)

        assert len(handles) == 1
        assert handles[0].context["roles"] == ["1u1"]
        assert transport.called("users/u2/drive") == 0


class TestOneDriveBuildFields:
    """Tests for drive item records."""

    @pytest.mark.asyncio
    async def test_file_fields(self, make_context, transport):
        """Test a file becomes a record with its text and roles."""
        # Arrange
        transport.routes.update(
            {
                "drives/d1": {"id": "d1", "name": "Archive"},
                "drives/d1/root/children": collection(file_item("i1", "Notes.TXT")),
                "drives/d1/items/i1/permissions": collection(
                    {"grantedToV2": {"user": {"id": "u1"}}}
                ),
                "users/u1": {"userPrincipalName": "jane@contoso.com"},
            }
        )
        transport.downloads["drives/d1/items/i1/content"] = b"hello"
        walker = OneDriveWalker(make_context(default_permissions="Rguest", **ONLY_DRIVE))
        handle = (await collect(walker))[0]

        # Act
        fields = await walker.build_fields(handle)

        # Assert
        assert fields["contents"] == "hello"
        assert fields["filetype"] == "txt"
        assert fields["mimetype"] == "text/plain"
        assert fields["url"] == "https://contoso.sharepoint.com/Shared%20Documents/Notes.TXT"
        assert fields["roles"] == ["1u1", "1jane@contoso.com", "Rguest"]

    @pytest.mark.asyncio
    async def test_folders_are_discarded_by_default(self, make_context):
        """Test folders produce no record unless ignore_folder is off."""
        walker = OneDriveWalker(make_context())
        handle = walker.make_handle(
            ResourceKind.DRIVE_ITEM, folder_item("f1", "Reports"), drive_id="d1"
        )

        assert await walker.build_fields(handle) is None

    @pytest.mark.asyncio
    async def test_unsupported_mimetype_is_discarded(self, make_context):
        """Test the mimetype filter is a full match."""
        walker = OneDriveWalker(make_context(supported_mimetypes="text/.*"))
        handle = walker.make_handle(
            ResourceKind.DRIVE_ITEM,
            file_item("i1", "a.pdf", mime="application/pdf"),
            drive_id="d1",
            crawler_type=CRAWLER_TYPE_SHARED,
        )

        assert await walker.build_fields(handle) is None

    @pytest.mark.asyncio
    async def test_excluded_url_is_discarded(self, make_context):
        """Test the exclude pattern applies to the item URL."""
        walker = OneDriveWalker(make_context(exclude_pattern=".*\\.tmp"))
        handle = walker.make_handle(
            ResourceKind.DRIVE_ITEM,
            file_item("i1", "a.tmp"),
            drive_id="d1",
            crawler_type=CRAWLER_TYPE_SHARED,
        )

        assert await walker.build_fields(handle) is None

    @pytest.mark.asyncio
    async def test_oversized_file_is_rejected_before_download(self, make_context, transport):
        """Test the size ceiling raises without downloading."""
        walker = OneDriveWalker(make_context(max_content_length="10"))
        handle = walker.make_handle(
            ResourceKind.DRIVE_ITEM,
            file_item("i1", "big.txt", size=11),
            drive_id="d1",
            crawler_type=CRAWLER_TYPE_SHARED,
        )

        with pytest.raises(ContentTooLargeException):
            await walker.build_fields(handle)
        assert transport.download_calls == []
