"""Module for crawl context."""

from typing import Any, Dict, Optional

from m365crawler.core.logging import ContextualLogger
from m365crawler.platform.collaborators._base import (
    BaseExtractor,
    BaseFailureLog,
    BaseFieldMapper,
    BaseSink,
    BaseTransport,
)
from m365crawler.platform.configs.config import CrawlConfig
from m365crawler.platform.sync.content import ContentFetcher
from m365crawler.platform.sync.identity import IdentityResolver
from m365crawler.platform.sync.paginator import CursorPaginator
from m365crawler.platform.sync.permissions import PermissionAggregator
from m365crawler.platform.sync.stats import CrawlStatsTracker


class CrawlContext:
    """Context container for a crawl run.

    Contains every component a walker or the record builder needs:
    - config - the typed crawl parameters
    - transport, paginator - Graph access
    - resolver - the identity resolver and its caches
    - permissions - the permission aggregator
    - content - the content fetcher (download, size check, extraction)
    - sink, failure_log, mapper - the injected collaborators
    - stats - the per-item lifecycle tracker
    - script_map - field-mapping expressions handed to the mapper
    - defaults - the default field map every record starts from
    - logger - contextual logger with crawl metadata
    """

    config: CrawlConfig
    transport: BaseTransport
    paginator: CursorPaginator
    resolver: IdentityResolver
    permissions: PermissionAggregator
    content: ContentFetcher
    extractor: BaseExtractor
    sink: BaseSink
    failure_log: BaseFailureLog
    mapper: BaseFieldMapper
    stats: CrawlStatsTracker
    script_map: Dict[str, str]
    defaults: Dict[str, Any]
    logger: ContextualLogger

    def __init__(
        self,
        config: CrawlConfig,
        transport: BaseTransport,
        paginator: CursorPaginator,
        resolver: IdentityResolver,
        permissions: PermissionAggregator,
        content: ContentFetcher,
        extractor: BaseExtractor,
        sink: BaseSink,
        failure_log: BaseFailureLog,
        mapper: BaseFieldMapper,
        stats: CrawlStatsTracker,
        logger: ContextualLogger,
        script_map: Optional[Dict[str, str]] = None,
        defaults: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the crawl context."""
        self.config = config
        self.transport = transport
        self.paginator = paginator
        self.resolver = resolver
        self.permissions = permissions
        self.content = content
        self.extractor = extractor
        self.sink = sink
        self.failure_log = failure_log
        self.mapper = mapper
        self.stats = stats
        self.logger = logger
        self.script_map = dict(script_map or {})
        self.defaults = dict(defaults or {})

    @property
    def ignore_error(self) -> bool:
        """Whether unexpected per-item errors are logged and skipped."""
        return self.config.ignore_error
