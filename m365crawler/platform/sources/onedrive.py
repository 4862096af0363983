"""OneDrive walker using Microsoft Graph API.

Crawls drive items from four kinds of drive roots:
 - Shared document drives of every SharePoint site
 - The personal drive of every licensed user (the user's role is inherited)
 - The drive of every Microsoft 365 group (the group's role is inherited)
 - One explicitly configured drive (`drive_id`)

Folders are walked breadth first with an explicit worklist. Files and folders
are both emitted; folders are discarded at build time unless `ignore_folder`
is switched off.

Reference (Microsoft Graph API):
  https://learn.microsoft.com/en-us/graph/api/drive-get?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/driveitem-list-children?view=graph-rest-1.0
"""

import os
import re
from collections import deque
from typing import Any, AsyncGenerator, Dict, List, Optional
from urllib.parse import quote_plus

from m365crawler.platform.decorators import walker
from m365crawler.platform.entities._base import (
    Breadcrumb,
    RequestDescriptor,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)
from m365crawler.platform.sources._base import BaseWalker

CRAWLER_TYPE_SHARED = "shared"
CRAWLER_TYPE_USER = "user"
CRAWLER_TYPE_GROUP = "group"
CRAWLER_TYPE_DRIVE = "drive"

DEFAULT_MIMETYPE = "application/octet-stream"


def encode_url_segment(value: Optional[str]) -> Optional[str]:
    """Form-encode one path segment, with spaces as %20."""
    if not value:
        return value
    return quote_plus(value, safe="*").replace("+", "%20")


def drive_item_url(
    item: Dict[str, Any], crawler_type: str, drive_name: Optional[str] = None
) -> Optional[str]:
    """Return the browsable URL of a drive item.

    Graph returns `/_layouts/` viewer links for some items. Those are rebuilt
    from the parent path so the URL points at the document itself.
    """
    web_url = item.get("webUrl")
    if web_url is None:
        return None
    if "/_layouts/" not in web_url:
        return web_url

    base_url = web_url[: web_url.index("/_layouts/")]
    segments: List[Optional[str]] = []
    parent_path = (item.get("parentReference") or {}).get("path")
    if parent_path:
        values = parent_path.split(":", 1)
        if len(values) == 2:
            segments.extend(encode_url_segment(s) for s in values[1].split("/"))
    segments.append(encode_url_segment(item.get("name")))
    path = "/".join(s for s in segments if s and s.strip())

    if crawler_type in (CRAWLER_TYPE_SHARED, CRAWLER_TYPE_GROUP):
        return f"{base_url}/Shared%20Documents/{path}"
    if crawler_type == CRAWLER_TYPE_DRIVE:
        return f"{base_url}/{drive_name}/{path}"
    return f"{base_url}/Documents/{path}"


@walker(
    family=ResourceFamily.ONEDRIVE,
    name="OneDrive",
    config_flag="onedrive_crawler",
    labels=["File Storage"],
)
class OneDriveWalker(BaseWalker):
    """Walks OneDrive and SharePoint document drives item by item."""

    def is_container(self, item: Dict[str, Any]) -> bool:
        """Folders have children."""
        return "folder" in item

    def is_leaf(self, item: Dict[str, Any]) -> bool:
        """Files and folders both become handles; folders are usually discarded."""
        return True

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Walk every enabled drive root."""
        if self.config.shared_documents_drive_crawler:
            async for site in self.target_sites():
                async for drive in self.site_drives(site):
                    async for handle in self._walk_drive(drive, CRAWLER_TYPE_SHARED):
                        yield handle

        if self.config.user_drive_crawler:
            async for user in self.licensed_users():
                drive = await self._owned_drive(f"users/{user['id']}/drive", user)
                if drive is None:
                    continue
                roles = [self.context.permissions.encoder.user(user["id"])]
                async for handle in self._walk_drive(drive, CRAWLER_TYPE_USER, roles):
                    yield handle

        if self.config.group_drive_crawler:
            async for group in self.unified_groups():
                drive = await self._owned_drive(f"groups/{group['id']}/drive", group)
                if drive is None:
                    continue
                roles = [self.context.permissions.encoder.group(group["id"])]
                async for handle in self._walk_drive(drive, CRAWLER_TYPE_GROUP, roles):
                    yield handle

        if self.config.drive_id:
            drive = await self._owned_drive(f"drives/{self.config.drive_id}", None)
            if drive is not None:
                async for handle in self._walk_drive(drive, CRAWLER_TYPE_DRIVE):
                    yield handle

    async def _owned_drive(self, path: str, owner: Optional[Dict[str, Any]]) -> Optional[Dict]:
        """Fetch a drive root; owners without a drive are skipped quietly."""
        label = f"drive of {owner.get('displayName')} ({owner.get('id')})" if owner else path
        return await self._get_branch_root(RequestDescriptor(path=path), label)

    async def _walk_drive(
        self, drive: Dict[str, Any], crawler_type: str, roles: Optional[List[str]] = None
    ) -> AsyncGenerator[ResourceHandle, None]:
        drive_id = drive["id"]
        drive_crumb = Breadcrumb(entity_id=drive_id, name=drive.get("name") or "", type="drive")
        context = {
            "drive_id": drive_id,
            "drive_name": drive.get("name"),
            "crawler_type": crawler_type,
            "roles": list(roles or []),
        }
        self.logger.debug(f"Walking drive {drive.get('name')} ({drive_id}) as {crawler_type}")

        folders: deque = deque([(f"drives/{drive_id}/root/children", [drive_crumb])])
        while folders:
            path, breadcrumbs = folders.popleft()
            async for item in self._iterate_branch(RequestDescriptor(path=path), path):
                if self.is_leaf(item):
                    yield self.make_handle(
                        ResourceKind.DRIVE_ITEM, item, breadcrumbs=breadcrumbs, **context
                    )
                if self.is_container(item):
                    crumb = Breadcrumb(
                        entity_id=item["id"], name=item.get("name") or "", type="folder"
                    )
                    folders.append(
                        (f"drives/{drive_id}/items/{item['id']}/children", [*breadcrumbs, crumb])
                    )

    def _supported(self, mimetype: str) -> bool:
        return any(re.fullmatch(pattern, mimetype) for pattern in self.config.supported_mimetypes)

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a drive item."""
        item = handle.data
        ctx = handle.context
        is_folder = self.is_container(item)
        if self.config.ignore_folder and is_folder:
            return None

        file_facet = item.get("file") or {}
        mimetype = file_facet.get("mimeType") or DEFAULT_MIMETYPE
        if not self._supported(mimetype):
            self.logger.debug(f"Unsupported mimetype {mimetype}: {item.get('name')}")
            return None

        url = drive_item_url(item, ctx.get("crawler_type"), ctx.get("drive_name"))
        if not self.matches_patterns(url):
            self.logger.debug(f"Not a target url: {url}")
            return None

        size = item.get("size")
        self.context.content.check_size(size, item.get("webUrl"))
        self.logger.info(f"Crawling OneDrive item - URL: {url}, Size: {size}")

        contents = ""
        if file_facet:
            contents = await self.context.content.fetch_text(
                RequestDescriptor(path=f"drives/{ctx['drive_id']}/items/{item['id']}/content"),
                name=item.get("name") or item["id"],
                size=size,
                mime_type=mimetype,
                url=url,
            )

        permissions = self.context.permissions
        roles = await permissions.drive_item_roles(ctx["drive_id"], item["id"])
        parent = item.get("parentReference") or {}
        name = item.get("name") or ""
        return {
            "id": item.get("id"),
            "name": name,
            "description": item.get("description") or "",
            "contents": contents,
            "mimetype": mimetype,
            "filetype": os.path.splitext(name)[1].lstrip(".").lower() or None,
            "created": item.get("createdDateTime"),
            "last_modified": item.get("lastModifiedDateTime"),
            "size": size,
            "web_url": item.get("webUrl"),
            "url": url,
            "ctag": item.get("cTag"),
            "etag": item.get("eTag"),
            "webdav_url": item.get("webDavUrl"),
            "createdby_user": (item.get("createdBy") or {}).get("user"),
            "last_modifiedby_user": (item.get("lastModifiedBy") or {}).get("user"),
            "hashes": file_facet.get("hashes"),
            "parent_id": parent.get("id"),
            "parent_name": parent.get("name"),
            "parent_path": parent.get("path"),
            "drive_id": ctx["drive_id"],
            "crawler_type": ctx.get("crawler_type"),
            "roles": permissions.finalize(roles, ctx.get("roles") or []),
        }
