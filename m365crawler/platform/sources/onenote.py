"""OneNote walker using Microsoft Graph API.

One record per notebook. Notebooks are discovered under the root site, every
licensed user and every Microsoft 365 group; the notebook text is assembled at
build time from its sections and pages.

Reference (Microsoft Graph API):
  https://learn.microsoft.com/en-us/graph/api/onenote-list-notebooks?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/page-get?view=graph-rest-1.0
"""

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


@walker(
    family=ResourceFamily.ONENOTE,
    name="OneNote",
    config_flag="onenote_crawler",
    labels=["Notes"],
)
class OneNoteWalker(BaseWalker):
    """Walks OneNote notebooks of sites, users and groups."""

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield one handle per notebook."""
        if self.config.site_note_crawler:
            site = await self._get_branch_root(RequestDescriptor(path="sites/root"), "root site")
            if site:
                async for handle in self._notebooks(f"sites/{site['id']}", site, []):
                    yield handle

        if self.config.user_note_crawler:
            async for user in self.licensed_users():
                roles = [self.context.permissions.encoder.user(user["id"])]
                async for handle in self._notebooks(f"users/{user['id']}", user, roles):
                    yield handle

        if self.config.group_note_crawler:
            async for group in self.unified_groups():
                roles = [self.context.permissions.encoder.group(group["id"])]
                async for handle in self._notebooks(f"groups/{group['id']}", group, roles):
                    yield handle

    async def _notebooks(
        self, owner_path: str, owner: Dict[str, Any], roles: List[str]
    ) -> AsyncGenerator[ResourceHandle, None]:
        request = RequestDescriptor(path=f"{owner_path}/onenote/notebooks")
        crumb = Breadcrumb(
            entity_id=owner.get("id") or owner_path,
            name=owner.get("displayName") or "",
            type=owner_path.split("/", 1)[0],
        )
        async for notebook in self._iterate_branch(request, f"notebooks of {owner_path}"):
            yield self.make_handle(
                ResourceKind.NOTEBOOK,
                notebook,
                name=notebook.get("displayName"),
                breadcrumbs=[crumb],
                owner_path=owner_path,
                roles=roles,
            )

    async def _page_contents(self, owner_path: str, page: Dict[str, Any]) -> str:
        title = page.get("title") or ""
        text = await self.context.content.fetch_text(
            RequestDescriptor(path=f"{owner_path}/onenote/pages/{page['id']}/content"),
            name=title or page["id"],
            mime_type="text/html",
        )
        return f"{title}\n{text}"

    async def _section_contents(self, owner_path: str, section: Dict[str, Any]) -> str:
        pages = await self.context.paginator.collect(
            RequestDescriptor(path=f"{owner_path}/onenote/sections/{section['id']}/pages")
        )
        pages.reverse()
        parts = [await self._page_contents(owner_path, page) for page in pages]
        return f"{section.get('displayName') or ''}\n" + "\n".join(parts)

    async def notebook_contents(self, owner_path: str, notebook_id: str) -> str:
        """Assemble the text of a notebook.

        Graph lists sections and pages newest first; both lists are reversed so
        the text reads in creation order.
        """
        sections = await self.context.paginator.collect(
            RequestDescriptor(path=f"{owner_path}/onenote/notebooks/{notebook_id}/sections")
        )
        sections.reverse()
        parts = [await self._section_contents(owner_path, section) for section in sections]
        return "\n".join(parts)

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a notebook."""
        notebook = handle.data
        url = ((notebook.get("links") or {}).get("oneNoteWebUrl") or {}).get("href")
        self.logger.info(f"Crawling notebook URL: {url} (Name: {notebook.get('displayName')})")

        contents = await self.notebook_contents(handle.context["owner_path"], handle.resource_id)
        return {
            "id": notebook.get("id"),
            "name": notebook.get("displayName"),
            "contents": contents,
            "size": len(contents),
            "created": notebook.get("createdDateTime"),
            "last_modified": notebook.get("lastModifiedDateTime"),
            "web_url": url,
            "url": url,
            "roles": self.context.permissions.finalize([], handle.context.get("roles") or []),
        }
