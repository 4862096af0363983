"""Module for crawl factory that creates context and orchestrator instances."""

import time
import uuid
from typing import Any, Dict, Mapping, Optional

from m365crawler.core.logging import ContextualLogger, LoggerConfigurator, logger
from m365crawler.platform.collaborators._base import (
    BaseExtractor,
    BaseFailureLog,
    BaseFieldMapper,
    BaseSink,
    BaseTransport,
)
from m365crawler.platform.configs.config import CrawlConfig
from m365crawler.platform.sync.content import ContentFetcher
from m365crawler.platform.sync.context import CrawlContext
from m365crawler.platform.sync.identity import IdentityResolver
from m365crawler.platform.sync.orchestrator import CrawlOrchestrator
from m365crawler.platform.sync.paginator import CursorPaginator
from m365crawler.platform.sync.permissions import PermissionAggregator, RoleEncoder
from m365crawler.platform.sync.stats import CrawlStatsTracker
from m365crawler.platform.sync.worker_pool import CrawlTaskDispatcher


class CrawlFactory:
    """Factory for crawl orchestrators."""

    @classmethod
    def create_orchestrator(
        cls,
        params: Mapping[str, Any],
        transport: BaseTransport,
        extractor: BaseExtractor,
        sink: BaseSink,
        failure_log: BaseFailureLog,
        mapper: BaseFieldMapper,
        script_map: Optional[Dict[str, str]] = None,
        defaults: Optional[Dict[str, Any]] = None,
        crawl_id: Optional[str] = None,
    ) -> CrawlOrchestrator:
        """Create a dedicated orchestrator instance for one crawl run.

        Args:
            params: The flat crawl parameter map
            transport: Graph transport
            extractor: Binary to text extractor
            sink: Record sink
            failure_log: Failure log for items that could not be crawled
            mapper: Field mapper evaluating `script_map`
            script_map: Field-mapping expressions keyed by output field
            defaults: Default field map every record starts from
            crawl_id: Identifier attached to every log line; generated when omitted

        Returns:
            A CrawlOrchestrator with its own context and dispatcher
        """
        init_start = time.time()
        context = cls.create_context(
            params=params,
            transport=transport,
            extractor=extractor,
            sink=sink,
            failure_log=failure_log,
            mapper=mapper,
            script_map=script_map,
            defaults=defaults,
            crawl_id=crawl_id,
        )
        dispatcher = CrawlTaskDispatcher(
            requested_workers=context.config.number_of_threads, logger=context.logger
        )
        logger.debug(f"Crawl orchestrator initialized in {time.time() - init_start:.2f}s")
        return CrawlOrchestrator(context=context, dispatcher=dispatcher)

    @classmethod
    def create_context(
        cls,
        params: Mapping[str, Any],
        transport: BaseTransport,
        extractor: BaseExtractor,
        sink: BaseSink,
        failure_log: BaseFailureLog,
        mapper: BaseFieldMapper,
        script_map: Optional[Dict[str, str]] = None,
        defaults: Optional[Dict[str, Any]] = None,
        crawl_id: Optional[str] = None,
        crawl_logger: Optional[ContextualLogger] = None,
    ) -> CrawlContext:
        """Create a crawl context.

        Returns:
            CrawlContext object with all required components
        """
        config = CrawlConfig.from_params(params)
        crawl_logger = crawl_logger or LoggerConfigurator.configure_logger(
            "m365crawler.platform.sync",
            dimensions={
                "crawl_id": crawl_id or str(uuid.uuid4()),
                "number_of_threads": str(config.number_of_threads),
            },
        )

        paginator = CursorPaginator(transport)
        resolver = IdentityResolver(transport, cache_size=config.cache_size)
        permissions = PermissionAggregator(
            resolver,
            paginator,
            encoder=RoleEncoder(),
            default_permissions=config.default_permissions,
            defaults=defaults,
        )
        content = ContentFetcher(
            transport,
            extractor,
            max_content_length=config.max_content_length,
            ignore_error=config.ignore_error,
            logger=crawl_logger,
        )

        return CrawlContext(
            config=config,
            transport=transport,
            paginator=paginator,
            resolver=resolver,
            permissions=permissions,
            content=content,
            extractor=extractor,
            sink=sink,
            failure_log=failure_log,
            mapper=mapper,
            stats=CrawlStatsTracker(crawl_logger),
            logger=crawl_logger,
            script_map=script_map,
            defaults=defaults,
        )
