"""Crawl configuration schema."""

import re
from typing import Optional

from pydantic import Field, field_validator

from m365crawler.platform.configs._base import BaseConfig

GUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.I)

COMPOSITE_SITE_MARKER = ".sharepoint.com,"


def parse_exclusion_ids(value: Optional[str]) -> set[str]:
    """Parse an exclusion list into a set of ids.

    Three formats are accepted, checked in this order:

    1. Semicolon separated: ``a,b;c,d,e`` yields ``{"a,b", "c,d,e"}``. Composite
       SharePoint site ids (``host,siteGuid,webGuid``) contain commas, so groups
       are kept whole.
    2. A single composite site id: a value containing ``.sharepoint.com,`` and a
       GUID is one id.
    3. Legacy comma separated: ``a,b,c`` yields ``{"a", "b", "c"}``.

    Entries are trimmed and empty entries dropped. Callers match with equality.

    Args:
        value: The raw parameter value.

    Returns:
        The set of excluded ids.
    """
    if value is None or not str(value).strip():
        return set()
    value = str(value)

    if ";" in value:
        parts = value.split(";")
    elif COMPOSITE_SITE_MARKER in value and GUID_PATTERN.search(value):
        parts = [value]
    else:
        parts = value.split(",")

    return {part.strip() for part in parts if part.strip()}


def _split_list(value) -> list[str]:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class CrawlConfig(BaseConfig):
    """Microsoft 365 crawl parameters."""

    # Runtime
    number_of_threads: int = Field(
        default=1, title="Number of Threads", description="Requested size of the crawl worker pool"
    )
    ignore_error: bool = Field(
        default=False,
        title="Ignore Errors",
        description=(
            "Swallow content extraction failures and keep crawling after unexpected "
            "per-item errors. When false, an unexpected per-item error aborts the crawl."
        ),
    )
    max_content_length: int = Field(
        default=-1,
        title="Max Content Length",
        description="Maximum size in bytes of downloaded content. Negative means unlimited.",
    )
    cache_size: int = Field(
        default=10000, title="Cache Size", description="Capacity of each identity cache"
    )
    include_pattern: Optional[str] = Field(
        default=None, title="Include Pattern", description="Regex an item must match"
    )
    exclude_pattern: Optional[str] = Field(
        default=None, title="Exclude Pattern", description="Regex that rejects an item"
    )
    default_permissions: list[str] = Field(
        default_factory=list,
        title="Default Permissions",
        description=(
            "Comma separated roles added to every record. Entries starting with "
            "{user} or {group} are encoded, others are taken verbatim."
        ),
    )

    # Families
    onedrive_crawler: bool = Field(default=True, title="Crawl OneDrive")
    onenote_crawler: bool = Field(default=True, title="Crawl OneNote")
    sharepoint_site_crawler: bool = Field(default=True, title="Crawl SharePoint Sites")
    sharepoint_doclib_crawler: bool = Field(default=True, title="Crawl Document Libraries")
    sharepoint_list_crawler: bool = Field(default=True, title="Crawl SharePoint Lists")
    sharepoint_page_crawler: bool = Field(default=True, title="Crawl SharePoint Pages")
    teams_crawler: bool = Field(default=True, title="Crawl Teams")

    # OneDrive
    shared_documents_drive_crawler: bool = Field(default=True, title="Crawl Shared Documents")
    user_drive_crawler: bool = Field(default=True, title="Crawl User Drives")
    group_drive_crawler: bool = Field(default=True, title="Crawl Group Drives")
    drive_id: Optional[str] = Field(default=None, title="Drive ID")
    ignore_folder: bool = Field(
        default=True, title="Ignore Folders", description="Do not emit records for folders"
    )
    supported_mimetypes: list[str] = Field(
        default_factory=lambda: [".*"],
        title="Supported Mimetypes",
        description="Comma separated regexes; a file's mimetype must fully match one",
    )

    # OneNote
    site_note_crawler: bool = Field(default=True, title="Crawl Site Notebooks")
    user_note_crawler: bool = Field(default=True, title="Crawl User Notebooks")
    group_note_crawler: bool = Field(default=True, title="Crawl Group Notebooks")

    # SharePoint
    site_id: Optional[str] = Field(default=None, title="Site ID")
    exclude_site_id: set[str] = Field(default_factory=set, title="Excluded Site IDs")
    site_type_filter: list[str] = Field(
        default_factory=list, title="Site Type Filter", description="root and/or subsite"
    )
    list_id: Optional[str] = Field(default=None, title="List ID")
    exclude_list_id: set[str] = Field(default_factory=set, title="Excluded List IDs")
    list_template_filter: list[str] = Field(default_factory=list, title="List Template Filter")
    ignore_system_lists: bool = Field(default=True, title="Ignore System Lists")
    ignore_system_libraries: bool = Field(default=True, title="Ignore System Libraries")
    ignore_system_pages: bool = Field(default=True, title="Ignore System Pages")
    page_type_filter: list[str] = Field(
        default_factory=list, title="Page Type Filter", description="news and/or article"
    )

    # Teams
    team_id: Optional[str] = Field(default=None, title="Team ID")
    exclude_team_ids: set[str] = Field(default_factory=set, title="Excluded Team IDs")
    include_visibility: list[str] = Field(
        default_factory=list, title="Include Visibility", description="public and/or private"
    )
    channel_id: Optional[str] = Field(default=None, title="Channel ID")
    chat_id: Optional[str] = Field(default=None, title="Chat ID")
    ignore_replies: bool = Field(default=False, title="Ignore Replies")
    append_attachment: bool = Field(default=True, title="Append Attachments")
    ignore_system_events: bool = Field(default=True, title="Ignore System Events")
    title_dateformat: str = Field(default="%Y/%m/%dT%H:%M:%S", title="Title Date Format")
    title_timezone_offset: str = Field(default="Z", title="Title Timezone Offset")

    @field_validator("exclude_site_id", "exclude_list_id", "exclude_team_ids", mode="before")
    def _parse_exclusions(cls, value):
        if isinstance(value, str):
            return parse_exclusion_ids(value)
        return value

    @field_validator(
        "default_permissions",
        "supported_mimetypes",
        "site_type_filter",
        "list_template_filter",
        "page_type_filter",
        "include_visibility",
        mode="before",
    )
    def _parse_lists(cls, value):
        """Convert comma separated string input to a list."""
        return _split_list(value)

    @field_validator("include_visibility", "site_type_filter", "page_type_filter", mode="after")
    def _lowercase(cls, value: list[str]) -> list[str]:
        return [item.lower() for item in value]
