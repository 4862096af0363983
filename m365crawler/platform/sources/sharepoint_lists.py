"""SharePoint list walker.

One record per list item of a generic (custom) list. Lists are discovered on
every site that is not excluded, or taken from `list_id` on the configured
`site_id`.

Reference (Microsoft Graph API):
  https://learn.microsoft.com/en-us/graph/api/list-list?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/listitem-list?view=graph-rest-1.0
"""

from typing import Any, AsyncGenerator, Dict, Optional

from m365crawler.core.exceptions import CrawlingException
from m365crawler.platform.decorators import walker
from m365crawler.platform.entities._base import (
    Breadcrumb,
    RequestDescriptor,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)
from m365crawler.platform.sources._base import BaseWalker
from m365crawler.platform.utils.error_utils import get_error_message

GENERIC_LIST = "genericList"

TITLE_FIELDS = ("Title", "LinkTitle", "FileLeafRef")
CONTENT_FIELDS = ("Body", "Description", "Comments", "Notes")

SYSTEM_LIST_NAMES = frozenset(
    {
        "master page gallery",
        "style library",
        "user information list",
        "appdata",
        "appfiles",
        "composed looks",
        "converted forms",
        "form templates",
        "list template gallery",
        "solution gallery",
        "theme gallery",
        "web part gallery",
        "workflow history",
        "workflow tasks",
        "taxonomyhiddenlist",
        "sharing links",
    }
)
SYSTEM_LIST_TEMPLATES = frozenset(
    {
        "catalog",
        "masterPageCatalog",
        "userInformation",
        "webPartCatalog",
        "listTemplateCatalog",
        "solutionCatalog",
        "themeCatalog",
        "designCatalog",
        "workflowHistory",
        "accessRequest",
        "sharingLinks",
    }
)
SYSTEM_FIELDS = frozenset({"id", "contenttype", "version", "attachments"})


def list_template(sp_list: Dict[str, Any]) -> Optional[str]:
    """Return the template name of a list, if Graph reported one."""
    return (sp_list.get("list") or {}).get("template")


def is_system_list(sp_list: Dict[str, Any]) -> bool:
    """Whether a list is a SharePoint system or gallery list."""
    if sp_list.get("system") is not None:
        return True
    if list_template(sp_list) in SYSTEM_LIST_TEMPLATES:
        return True
    name = (sp_list.get("displayName") or sp_list.get("name") or "").strip().lower()
    return name in SYSTEM_LIST_NAMES or name.startswith("_catalogs")


def is_system_field(name: Optional[str]) -> bool:
    """Whether a list field is SharePoint bookkeeping rather than user data."""
    if not name or not name.strip():
        return True
    lowered = name.lower()
    return lowered.startswith("_") or lowered.startswith("ows") or lowered in SYSTEM_FIELDS


def first_field_value(fields: Optional[Dict[str, Any]], *names: str) -> Optional[str]:
    """Return the first non-blank value among `names`."""
    if not fields:
        return None
    for name in names:
        value = fields.get(name)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def content_from_fields(fields: Optional[Dict[str, Any]]) -> str:
    """Concatenate the values of every user field."""
    if not fields:
        return ""
    values = []
    for name, value in fields.items():
        if value is None or is_system_field(name):
            continue
        text = str(value).strip()
        if text and text != "null":
            values.append(text)
    return " ".join(values)


@walker(
    family=ResourceFamily.SHAREPOINT_LIST,
    name="SharePoint Lists",
    config_flag="sharepoint_list_crawler",
    labels=["Knowledge Base"],
)
class SharePointListWalker(BaseWalker):
    """Walks the items of SharePoint generic lists."""

    def is_container(self, item: Dict[str, Any]) -> bool:
        """Lists contain items; items are leaves."""
        return "list" in item and "fields" not in item

    def is_target_list(self, sp_list: Dict[str, Any]) -> bool:
        """Apply the list exclusion, template filter and system list rules."""
        if (sp_list.get("id") or "") in self.config.exclude_list_id:
            return False
        template = list_template(sp_list)
        if self.config.list_template_filter and template is not None:
            if template not in self.config.list_template_filter:
                return False
        if self.config.ignore_system_lists and is_system_list(sp_list):
            return False
        return True

    async def _lists(self) -> AsyncGenerator[tuple, None]:
        if self.config.list_id:
            site = await self._get_branch_root(
                RequestDescriptor(path=f"sites/{self.config.site_id or 'root'}"),
                f"site {self.config.site_id or 'root'}",
            )
            if site is None:
                return
            sp_list = await self._get_branch_root(
                RequestDescriptor(path=f"sites/{site['id']}/lists/{self.config.list_id}"),
                f"list {self.config.list_id}",
            )
            if sp_list is None:
                return
            # the system rule also applies to an explicitly configured list
            if self.config.ignore_system_lists and is_system_list(sp_list):
                self.logger.debug(f"Skipping system list {sp_list.get('displayName')}")
                return
            yield site, sp_list
            return

        async for site in self.target_sites():
            request = RequestDescriptor(path=f"sites/{site['id']}/lists")
            async for sp_list in self._iterate_branch(request, f"lists of site {site['id']}"):
                if self.is_target_list(sp_list):
                    yield site, sp_list
                else:
                    self.logger.debug(
                        f"Skipped list: {sp_list.get('displayName')} ({sp_list.get('id')})"
                    )

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield one handle per list item whose title passes the patterns."""
        async for site, sp_list in self._lists():
            crumbs = [
                Breadcrumb(entity_id=site["id"], name=site.get("displayName") or "", type="site"),
                Breadcrumb(
                    entity_id=sp_list["id"], name=sp_list.get("displayName") or "", type="list"
                ),
            ]
            request = RequestDescriptor(
                path=f"sites/{site['id']}/lists/{sp_list['id']}/items",
                params={"expand": "fields"},
            )
            async for item in self._iterate_branch(request, f"items of list {sp_list['id']}"):
                if not self.is_leaf(item):
                    continue
                title = first_field_value(item.get("fields"), *TITLE_FIELDS)
                if title and not self.matches_patterns(title):
                    self.logger.debug(f"Not a target list item: {title}")
                    continue
                yield self.make_handle(
                    ResourceKind.LIST_ITEM,
                    item,
                    name=title,
                    breadcrumbs=crumbs,
                    site={
                        "id": site["id"],
                        "displayName": site.get("displayName"),
                        "webUrl": site.get("webUrl"),
                    },
                    list={
                        "id": sp_list["id"],
                        "displayName": sp_list.get("displayName"),
                        "description": sp_list.get("description"),
                        "webUrl": sp_list.get("webUrl"),
                        "template": list_template(sp_list),
                    },
                )

    async def _refresh_fields(
        self, site_id: str, sp_list: Dict[str, Any], item_id: str
    ) -> Optional[Dict[str, Any]]:
        """Fetch one item again with its fields expanded."""
        try:
            item = await self._get(
                RequestDescriptor(
                    path=f"sites/{site_id}/lists/{sp_list['id']}/items/{item_id}",
                    params={"expand": "fields"},
                ),
                f"list item {item_id}",
            )
        except Exception as e:
            self.logger.warning(
                f"Failed to refresh list item fields for item {item_id} in list "
                f"{sp_list.get('displayName')}: {get_error_message(e)}"
            )
            if not self.context.ignore_error:
                raise CrawlingException(
                    f"Failed to refresh list item fields for item: {item_id}"
                ) from e
            return None
        return (item or {}).get("fields")

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a list item."""
        item = handle.data
        site = handle.context["site"]
        sp_list = handle.context["list"]
        template = sp_list.get("template")
        if template is None:
            self.logger.warning(
                f"List template type is unknown for list {sp_list.get('displayName')}; "
                f"skipping item {item.get('id')}"
            )
            return None
        if template != GENERIC_LIST:
            self.logger.debug(f"Skipping non-generic list item {item.get('id')} ({template})")
            return None

        list_url = sp_list.get("webUrl")
        url = f"{list_url}/DispForm.aspx?ID={item['id']}" if list_url else item.get("webUrl")
        self.logger.info(f"Crawling list item {item['id']} of list {sp_list['id']}: {url}")

        fields = item.get("fields")
        if not fields:
            fields = await self._refresh_fields(site["id"], sp_list, item["id"])

        content = first_field_value(fields, *CONTENT_FIELDS) or content_from_fields(fields)
        permissions = self.context.permissions
        roles = await permissions.site_roles(site["id"])
        return {
            "id": item.get("id"),
            "title": first_field_value(fields, *TITLE_FIELDS),
            "content": content,
            "created": item.get("createdDateTime"),
            "modified": item.get("lastModifiedDateTime"),
            "url": url,
            "web_url": item.get("webUrl"),
            "content_type": (item.get("contentType") or {}).get("name") or "",
            "fields": fields,
            "site": {"id": site["id"], "name": site.get("displayName"), "url": site.get("webUrl")},
            "list": {
                "name": sp_list.get("displayName"),
                "description": sp_list.get("description") or "",
                "url": list_url,
                "template_type": template,
            },
            "roles": permissions.finalize(roles),
        }
