"""Base walker class."""

import re
from abc import abstractmethod
from collections import deque
from datetime import datetime
from typing import Any, AsyncGenerator, ClassVar, Dict, List, Optional, Tuple, Type

from m365crawler.core.exceptions import AccessDeniedException, NotFoundException
from m365crawler.core.logging import ContextualLogger, logger
from m365crawler.platform.entities._base import (
    Breadcrumb,
    RequestDescriptor,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)
from m365crawler.platform.sync.context import CrawlContext
from m365crawler.platform.utils.error_utils import get_error_message

SYSTEM_LIBRARY_MARKERS = (
    "/_catalogs/",
    "/forms/",
    "/style%20library/",
    "/style library/",
    "/formservertemplates/",
)
SYSTEM_LIBRARY_NAMES = frozenset(
    {"form templates", "style library", "formservertemplates", "_catalogs"}
)


class BaseWalker:
    """Base class for all resource walkers.

    A walker enumerates one resource family as an async stream of handles. It
    never schedules work itself: the orchestrator consumes `walk()` and hands
    each handle to the dispatcher, and later calls `build_fields` for it.

    Enumeration failures are contained per branch. A branch whose root does not
    exist is skipped quietly; any other failure is logged and only that branch
    is abandoned.
    """

    _family: ClassVar[ResourceFamily]
    _name: ClassVar[str] = ""
    _config_flag: ClassVar[str] = ""
    _labels: ClassVar[List[str]] = []

    def __init__(self, context: CrawlContext):
        """Initialize the walker with the crawl context."""
        self.context = context
        self.config = context.config
        self._logger: Optional[ContextualLogger] = None
        self._patterns: Dict[str, Optional[re.Pattern]] = {}

    @property
    def logger(self):
        """Get the logger for this walker, falling back to the context logger."""
        if self._logger is not None:
            return self._logger
        return self.context.logger or logger

    def set_logger(self, logger: ContextualLogger) -> None:
        """Set a contextual logger for this walker."""
        self._logger = logger

    @classmethod
    def family(cls) -> ResourceFamily:
        """The resource family this walker enumerates."""
        return cls._family

    @classmethod
    def is_enabled(cls, config) -> bool:
        """Whether the family flag is switched on in `config`."""
        return bool(getattr(config, cls._config_flag, True))

    # Interface

    @abstractmethod
    def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield every leaf handle of the family."""
        pass

    def is_container(self, item: Dict[str, Any]) -> bool:
        """Whether a raw item has children to enumerate."""
        return False

    def is_leaf(self, item: Dict[str, Any]) -> bool:
        """Whether a raw item becomes a record."""
        return not self.is_container(item)

    @abstractmethod
    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the resource-specific fields of a record, or None to discard it."""
        pass

    # Enumeration helpers

    async def _iterate_branch(
        self,
        request: RequestDescriptor,
        label: str,
        quiet: Tuple[Type[Exception], ...] = (NotFoundException,),
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield the items of one collection, containing its failures.

        Exceptions listed in `quiet` are logged at debug; any other failure is
        logged as a warning. Either way the branch ends and siblings continue.
        """
        try:
            async for item in self.context.paginator.iterate(request):
                yield item
        except quiet as e:
            self.logger.debug(f"Skipping {label}: {e}")
        except Exception as e:
            self.logger.warning(f"Failed to enumerate {label}: {get_error_message(e)}")

    async def _get(self, request: RequestDescriptor, label: str) -> Optional[Dict[str, Any]]:
        """Fetch a single object; a missing object yields None."""
        try:
            return await self.context.transport.call(request)
        except NotFoundException:
            self.logger.debug(f"{label} not found")
            return None

    async def _get_branch_root(
        self, request: RequestDescriptor, label: str, missing_ok: bool = True
    ) -> Optional[Dict[str, Any]]:
        """Fetch the single object a branch starts from, containing its failures.

        A missing root is logged at debug, any other failure as a warning; both
        yield None so only this branch is abandoned. With `missing_ok=False` a
        missing root raises NotFoundException instead.
        """
        try:
            return await self.context.transport.call(request)
        except NotFoundException:
            if not missing_ok:
                raise
            self.logger.debug(f"{label} not found")
            return None
        except Exception as e:
            self.logger.warning(f"Failed to get {label}: {get_error_message(e)}")
            return None

    async def licensed_users(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield users holding at least one license."""
        request = RequestDescriptor(
            path="users",
            params={"$select": "id,displayName,mail,userPrincipalName,assignedLicenses"},
        )
        async for user in self._iterate_branch(request, "users"):
            if user.get("assignedLicenses"):
                yield user

    async def unified_groups(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield Microsoft 365 (unified) groups."""
        request = RequestDescriptor(
            path="groups",
            params={
                "$filter": "groupTypes/any(c:c eq 'Unified')",
                "$select": "id,displayName,mail,mailNickname",
            },
        )
        async for group in self._iterate_branch(request, "groups"):
            yield group

    async def sites(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield the configured site, or every site and its sub-sites breadth first."""
        if self.config.site_id:
            site = await self._get_branch_root(
                RequestDescriptor(path=f"sites/{self.config.site_id}"),
                f"site {self.config.site_id}",
            )
            if site:
                yield site
            return

        seen: set = set()
        pending: deque = deque()
        async for site in self._iterate_branch(RequestDescriptor(path="sites"), "sites"):
            if site.get("id") and site["id"] not in seen:
                seen.add(site["id"])
                pending.append(site["id"])
                yield site

        while pending:
            parent_id = pending.popleft()
            children = RequestDescriptor(path=f"sites/{parent_id}/sites")
            async for child in self._iterate_branch(
                children,
                f"sub-sites of {parent_id}",
                quiet=(NotFoundException, AccessDeniedException),
            ):
                if child.get("id") and child["id"] not in seen:
                    seen.add(child["id"])
                    pending.append(child["id"])
                    yield child

    async def target_sites(self) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield the sites that are not excluded."""
        async for site in self.sites():
            if self.is_excluded_site(site):
                self.logger.info(f"Skipping excluded site: {site.get('id')}")
                continue
            yield site

    async def site_drives(self, site: Dict[str, Any]) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield the drives of a site."""
        request = RequestDescriptor(path=f"sites/{site['id']}/drives")
        async for drive in self._iterate_branch(request, f"drives of site {site.get('id')}"):
            yield drive

    # Filters

    def is_excluded_site(self, site: Dict[str, Any]) -> bool:
        """Whether a site id is in the exclusion list (exact match)."""
        return (site.get("id") or "") in self.config.exclude_site_id

    @staticmethod
    def site_type(site: Dict[str, Any]) -> str:
        """Return "root" for site collection roots and "subsite" otherwise."""
        collection = site.get("siteCollection") or {}
        return "root" if collection.get("root") is not None else "subsite"

    @staticmethod
    def is_system_library(drive: Dict[str, Any]) -> bool:
        """Whether a document library is a SharePoint system library."""
        url = (drive.get("webUrl") or "").lower()
        name = (drive.get("name") or "").lower()
        if any(marker in url for marker in SYSTEM_LIBRARY_MARKERS):
            return True
        return name in SYSTEM_LIBRARY_NAMES

    def _pattern(self, key: str) -> Optional[re.Pattern]:
        if key not in self._patterns:
            value = getattr(self.config, key, None)
            self._patterns[key] = re.compile(value) if value else None
        return self._patterns[key]

    def matches_patterns(self, value: Optional[str], search: bool = False) -> bool:
        """Apply include_pattern and exclude_pattern to `value`.

        Full matches by default; `search=True` accepts a match anywhere.
        """
        value = value or ""
        include = self._pattern("include_pattern")
        exclude = self._pattern("exclude_pattern")
        match = (lambda p: p.search(value)) if search else (lambda p: p.fullmatch(value))
        if include is not None and not match(include):
            return False
        if exclude is not None and match(exclude):
            return False
        return True

    # Handle construction

    def make_handle(
        self,
        kind: ResourceKind,
        data: Dict[str, Any],
        name: Optional[str] = None,
        breadcrumbs: Optional[List[Breadcrumb]] = None,
        **context: Any,
    ) -> ResourceHandle:
        """Wrap a raw Graph object into a handle for this walker's family."""
        return ResourceHandle(
            resource_id=str(data.get("id") or ""),
            family=self._family,
            kind=kind,
            name=name or data.get("name") or data.get("displayName"),
            breadcrumbs=breadcrumbs or [],
            context=context,
            data=data,
        )

    @staticmethod
    def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
        """Parse an ISO 8601 timestamp from Graph (which uses a Z suffix)."""
        if not dt_str:
            return None
        try:
            if dt_str.endswith("Z"):
                dt_str = dt_str[:-1] + "+00:00"
            return datetime.fromisoformat(dt_str)
        except (ValueError, TypeError):
            return None
