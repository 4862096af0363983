"""SharePoint site page walker.

One record per modern site page. The page listing does not carry the canvas,
so each page is fetched again with `canvasLayout` expanded at build time and
its web parts are flattened to text.

Reference (Microsoft Graph API):
  https://learn.microsoft.com/en-us/graph/api/basesitepage-list?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/sitepage-get?view=graph-rest-1.0
"""

import re
from typing import Any, AsyncGenerator, Dict, List, Optional

from m365crawler.platform.decorators import walker
from m365crawler.platform.entities._base import (
    Breadcrumb,
    RequestDescriptor,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)
from m365crawler.platform.sources._base import BaseWalker
from m365crawler.platform.utils.html_utils import strip_html

SITE_PAGE_TYPE = "#microsoft.graph.sitePage"
TEXT_WEB_PART = "#microsoft.graph.textWebPart"
STANDARD_WEB_PART = "#microsoft.graph.standardWebPart"

SYSTEM_PAGE_MARKERS = (
    "/_layouts/",
    "/_catalogs/",
    "/forms/",
    "/_api/",
    "/sitepages/forms/",
    "/sitepages/devhome.aspx",
)

_GUID = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)
_DIGITS = re.compile(r"\d+")
_SHORT_TOKEN = re.compile(r"[a-zA-Z0-9]+")


def is_guid_or_id(text: str) -> bool:
    """Whether a web part string looks like an identifier rather than prose."""
    if not text or not text.strip():
        return False
    if _GUID.fullmatch(text) or _DIGITS.fullmatch(text):
        return True
    return len(text) < 10 and _SHORT_TOKEN.fullmatch(text) is not None


def page_type(page: Dict[str, Any]) -> str:
    """Return "news" for news posts, "article" for other site pages, else "page"."""
    odata_type = page.get("@odata.type")
    if odata_type and odata_type != SITE_PAGE_TYPE:
        return "page"
    if (page.get("promotionKind") or "").lower() == "newspost":
        return "news"
    return "article"


def is_system_page(page: Dict[str, Any]) -> bool:
    """Whether a page URL points at SharePoint infrastructure."""
    url = (page.get("webUrl") or "").lower()
    return any(marker in url for marker in SYSTEM_PAGE_MARKERS)


def collect_data_strings(data: Any, parts: List[str]) -> None:
    """Append the prose strings found anywhere in standard web part data."""
    if isinstance(data, dict):
        for value in data.values():
            collect_data_strings(value, parts)
    elif isinstance(data, list):
        for value in data:
            collect_data_strings(value, parts)
    elif isinstance(data, str):
        text = data.strip()
        if len(text) > 5 and not is_guid_or_id(text):
            cleaned = strip_html(text)
            if len(cleaned) > 5:
                parts.append(cleaned)


def web_part_text(web_part: Dict[str, Any]) -> str:
    """Flatten one web part to text."""
    if not web_part:
        return ""
    odata_type = web_part.get("@odata.type")
    if odata_type == TEXT_WEB_PART or (odata_type is None and "innerHtml" in web_part):
        text = strip_html(web_part.get("innerHtml") or "")
        return text if len(text) > 2 else ""
    if odata_type == STANDARD_WEB_PART or "data" in web_part:
        parts: List[str] = []
        collect_data_strings(web_part.get("data"), parts)
        return " ".join(parts)
    return ""


def canvas_text(canvas: Optional[Dict[str, Any]]) -> List[str]:
    """Return the text of every web part, horizontal sections first."""
    if not canvas:
        return []
    web_parts: List[Dict[str, Any]] = []
    for section in canvas.get("horizontalSections") or []:
        for column in section.get("columns") or []:
            web_parts.extend(column.get("webparts") or [])
    vertical = canvas.get("verticalSection") or {}
    web_parts.extend(vertical.get("webparts") or [])

    texts = [web_part_text(web_part) for web_part in web_parts]
    return [text for text in texts if text]


def page_content(page: Dict[str, Any]) -> str:
    """Assemble the text of a page: title, description, then canvas content."""
    parts = [value for value in (page.get("title"), page.get("description")) if value]
    parts.extend(canvas_text(page.get("canvasLayout")))
    return "\n\n".join(parts).strip()


@walker(
    family=ResourceFamily.SHAREPOINT_PAGE,
    name="SharePoint Pages",
    config_flag="sharepoint_page_crawler",
    labels=["Knowledge Base"],
)
class SharePointPageWalker(BaseWalker):
    """Walks the site pages of every non-excluded site."""

    def is_target_page(self, page: Dict[str, Any]) -> bool:
        """Apply the system page rule, the page type filter and the URL patterns."""
        if self.config.ignore_system_pages and is_system_page(page):
            self.logger.debug(f"Skipping system page: {page.get('webUrl')}")
            return False
        if self.config.page_type_filter and page_type(page) not in self.config.page_type_filter:
            return False
        url = page.get("webUrl")
        if url is not None and not self.matches_patterns(url, search=True):
            return False
        return True

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield one handle per target page."""
        async for site in self.target_sites():
            request = RequestDescriptor(path=f"sites/{site['id']}/pages")
            crumb = Breadcrumb(
                entity_id=site["id"], name=site.get("displayName") or "", type="site"
            )
            async for page in self._iterate_branch(request, f"pages of site {site['id']}"):
                if not self.is_target_page(page):
                    continue
                yield self.make_handle(
                    ResourceKind.PAGE,
                    page,
                    name=page.get("title") or page.get("name"),
                    breadcrumbs=[crumb],
                    site={
                        "id": site["id"],
                        "displayName": site.get("displayName"),
                        "webUrl": site.get("webUrl"),
                    },
                )

    async def _full_page(self, site_id: str, page: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch the page again with its canvas layout expanded."""
        full_page = await self.context.transport.call(
            RequestDescriptor(
                path=f"sites/{site_id}/pages/{page['id']}/microsoft.graph.sitePage",
                params={"$expand": "canvasLayout"},
            )
        )
        return full_page or page

    async def _roles(self, site_id: str, page_id: str) -> List[str]:
        permissions = self.context.permissions
        roles = await permissions.page_roles(site_id, page_id)
        if not roles:
            self.logger.debug(f"No page permissions for {page_id}; using site permissions")
            roles = await permissions.site_roles(site_id)
        return roles

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a site page."""
        site = handle.context["site"]
        url = handle.data.get("webUrl")
        self.logger.info(f"Crawling page {handle.resource_id} of site {site['id']}: {url}")

        page = await self._full_page(site["id"], handle.data)
        created_by = (page.get("createdBy") or {}).get("user") or {}
        roles = await self._roles(site["id"], page["id"])
        return {
            "id": page.get("id"),
            "title": page.get("title"),
            "description": page.get("description") or "",
            "content": page_content(page),
            "web_url": url,
            "url": url,
            "type": page_type(page),
            "promotion_state": page.get("promotionKind"),
            "created": page.get("createdDateTime"),
            "modified": page.get("lastModifiedDateTime"),
            "author": created_by.get("displayName"),
            "site": {"id": site["id"], "name": site.get("displayName"), "url": site.get("webUrl")},
            "roles": self.context.permissions.finalize(roles),
        }
