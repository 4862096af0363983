"""Entity schemas."""

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")


class ResourceFamily(str, Enum):
    """Families of Microsoft 365 resources the crawler walks."""

    ONEDRIVE = "onedrive"
    ONENOTE = "onenote"
    SHAREPOINT_SITE = "sharepoint_site"
    SHAREPOINT_DOCLIB = "sharepoint_doclib"
    SHAREPOINT_LIST = "sharepoint_list"
    SHAREPOINT_PAGE = "sharepoint_page"
    TEAMS = "teams"


class ResourceKind(str, Enum):
    """Kind of leaf resource turned into a record."""

    DRIVE_ITEM = "drive_item"
    NOTEBOOK = "notebook"
    SITE = "site"
    DOCUMENT_LIBRARY = "document_library"
    LIST_ITEM = "list_item"
    PAGE = "page"
    CHANNEL_MESSAGE = "channel_message"
    CHAT_MESSAGE = "chat_message"


class Breadcrumb(BaseModel):
    """Breadcrumb for tracking ancestry."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str
    type: str


class ResourceHandle(BaseModel):
    """A discovered resource, consumed by exactly one crawl task."""

    model_config = ConfigDict(frozen=True)

    resource_id: str = Field(..., description="ID of the resource in Microsoft Graph.")
    family: ResourceFamily
    kind: ResourceKind
    name: Optional[str] = Field(None, description="Display name, used as the stats label.")
    breadcrumbs: List[Breadcrumb] = Field(
        default_factory=list, description="Ancestry from the branch root down to the parent."
    )
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "Parent data needed to build the record: drive, site, list or team payloads, "
            "the drive crawler type, and roles inherited from the owning principal."
        ),
    )
    data: Dict[str, Any] = Field(default_factory=dict, description="Raw Graph payload.")

    @property
    def label(self) -> str:
        """Label used for stats and failure-log entries."""
        return self.name or self.resource_id


class RequestDescriptor(BaseModel):
    """A Graph request: a path relative to the API base, or an absolute URL."""

    path: Optional[str] = None
    url: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None

    @model_validator(mode="after")
    def _require_target(self) -> "RequestDescriptor":
        if not self.path and not self.url:
            raise ValueError("RequestDescriptor needs a path or a url")
        return self


class Page(BaseModel, Generic[T]):
    """One page of a Graph collection."""

    items: List[T] = Field(default_factory=list)
    cursor: Optional[str] = Field(
        None, description="Opaque next-page link; absent or empty at the end of the collection."
    )

    @property
    def has_next(self) -> bool:
        """Whether another page follows."""
        return bool(self.cursor)


class CrawlStats(BaseModel):
    """Counters for one crawl run."""

    begun: int = 0
    prepared: int = 0
    evaluated: int = 0
    finished: int = 0
    discarded: int = 0
    access_exception: int = 0
    exception: int = 0
    done: int = 0
