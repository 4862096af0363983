"""Service for crawl runs."""

from typing import Any, Dict, Mapping, Optional

from m365crawler.core.logging import logger
from m365crawler.platform.collaborators._base import (
    BaseExtractor,
    BaseFailureLog,
    BaseFieldMapper,
    BaseSink,
    BaseTransport,
)
from m365crawler.platform.entities._base import CrawlStats
from m365crawler.platform.sync.factory import CrawlFactory


class CrawlService:
    """Main entry point for running a crawl."""

    async def run(
        self,
        params: Mapping[str, Any],
        transport: BaseTransport,
        extractor: BaseExtractor,
        sink: BaseSink,
        failure_log: BaseFailureLog,
        mapper: BaseFieldMapper,
        script_map: Optional[Dict[str, str]] = None,
        defaults: Optional[Dict[str, Any]] = None,
        crawl_id: Optional[str] = None,
    ) -> CrawlStats:
        """Run a crawl.

        Args:
        ----
            params (Mapping[str, Any]): The flat crawl parameter map.
            transport (BaseTransport): Graph transport; the caller owns and closes it.
            extractor (BaseExtractor): Binary to text extractor.
            sink (BaseSink): Record sink.
            failure_log (BaseFailureLog): Failure log.
            mapper (BaseFieldMapper): Field mapper.
            script_map (Optional[Dict[str, str]]): Field-mapping expressions.
            defaults (Optional[Dict[str, Any]]): Default field map.
            crawl_id (Optional[str]): Identifier attached to the crawl's log lines.

        Returns:
        -------
            CrawlStats: The counters of the finished crawl.
        """
        try:
            orchestrator = CrawlFactory.create_orchestrator(
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
            return await orchestrator.run()
        except Exception as e:
            logger.error(f"Error during crawl: {e}")
            raise e


crawl_service = CrawlService()
