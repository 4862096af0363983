"""SharePoint site and document library walkers.

Both families produce metadata records rather than file content:
 - one record per site (root sites and sub-sites), whose text carries the
   names and descriptions of the site's document libraries
 - one record per document library

File content inside document libraries is crawled by the OneDrive walker's
shared documents root.

Reference (Microsoft Graph API):
  https://learn.microsoft.com/en-us/graph/api/site-list-subsites?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/drive-list?view=graph-rest-1.0
"""

from typing import Any, AsyncGenerator, Dict, Optional

from m365crawler.platform.decorators import walker
from m365crawler.platform.entities._base import (
    Breadcrumb,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)
from m365crawler.platform.sources._base import BaseWalker
from m365crawler.platform.sources.onedrive import encode_url_segment

DOCUMENT_LIBRARY = "documentLibrary"
STANDARD_LIBRARY_NAMES = ("Documents", "Shared Documents")


def document_library_url(site: Dict[str, Any], drive: Dict[str, Any]) -> str:
    """Return the canonical URL of a document library."""
    site_url = site.get("webUrl") or ""
    name = drive.get("name") or ""
    if name in STANDARD_LIBRARY_NAMES:
        return f"{site_url}/Shared%20Documents"
    return f"{site_url}/{encode_url_segment(name)}"


def _site_crumb(site: Dict[str, Any]) -> Breadcrumb:
    return Breadcrumb(entity_id=site["id"], name=site.get("displayName") or "", type="site")


@walker(
    family=ResourceFamily.SHAREPOINT_SITE,
    name="SharePoint Sites",
    config_flag="sharepoint_site_crawler",
    labels=["Knowledge Base"],
)
class SharePointSiteWalker(BaseWalker):
    """Emits one record per SharePoint site."""

    def _is_target_site_type(self, site: Dict[str, Any]) -> bool:
        if not self.config.site_type_filter:
            return True
        return self.site_type(site) in self.config.site_type_filter

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield every non-excluded site that passes the site type filter."""
        async for site in self.target_sites():
            if not self._is_target_site_type(site):
                self.logger.debug(f"Site type filtered out: {site.get('webUrl')}")
                continue
            yield self.make_handle(ResourceKind.SITE, site, name=site.get("displayName"))

    async def _library_summary(self, site: Dict[str, Any]) -> str:
        parts = []
        async for drive in self.site_drives(site):
            if drive.get("driveType") != DOCUMENT_LIBRARY or self.is_system_library(drive):
                continue
            for value in (drive.get("name"), drive.get("description")):
                if value and value.strip():
                    parts.append(value)
        return " ".join(parts)

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a site."""
        site = handle.data
        url = site.get("webUrl")
        self.logger.info(f"Crawling URL: {url}")

        parts = [
            value
            for value in (site.get("displayName"), site.get("description"), url)
            if value and value.strip()
        ]
        libraries = await self._library_summary(site)
        if libraries:
            parts.append(libraries)

        permissions = self.context.permissions
        roles = await permissions.site_roles(site["id"])
        return {
            "id": site.get("id"),
            "name": site.get("displayName"),
            "description": site.get("description"),
            "url": url,
            "created": site.get("createdDateTime"),
            "modified": site.get("lastModifiedDateTime"),
            "type": self.site_type(site),
            "content": " ".join(parts),
            "roles": permissions.finalize(roles),
        }


@walker(
    family=ResourceFamily.SHAREPOINT_DOCLIB,
    name="SharePoint Document Libraries",
    config_flag="sharepoint_doclib_crawler",
    labels=["File Storage"],
)
class SharePointDocLibWalker(BaseWalker):
    """Emits one record per document library."""

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield the document libraries of every non-excluded site."""
        async for site in self.target_sites():
            async for drive in self.site_drives(site):
                if drive.get("driveType") != DOCUMENT_LIBRARY:
                    continue
                if self.config.ignore_system_libraries and self.is_system_library(drive):
                    self.logger.debug(f"Skipping system library: {drive.get('webUrl')}")
                    continue
                yield self.make_handle(
                    ResourceKind.DOCUMENT_LIBRARY,
                    drive,
                    breadcrumbs=[_site_crumb(site)],
                    site={
                        "id": site["id"],
                        "displayName": site.get("displayName"),
                        "webUrl": site.get("webUrl"),
                    },
                )

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a document library."""
        drive = handle.data
        site = handle.context["site"]
        url = document_library_url(site, drive)
        self.logger.info(f"Crawling document library: {url}")

        parts = [
            value
            for value in (drive.get("name"), drive.get("description"), site.get("displayName"))
            if value and value.strip()
        ]
        permissions = self.context.permissions
        roles = await permissions.drive_roles(drive["id"])
        return {
            "id": drive.get("id"),
            "name": drive.get("name"),
            "description": drive.get("description"),
            "web_url": drive.get("webUrl"),
            "url": url,
            "created": drive.get("createdDateTime"),
            "modified": drive.get("lastModifiedDateTime"),
            "type": drive.get("driveType"),
            "site_name": site.get("displayName"),
            "site_url": site.get("webUrl"),
            "content": " ".join(parts),
            "roles": permissions.finalize(roles),
        }

