"""Module for crawl orchestration."""

import asyncio
import contextlib
from typing import List, Optional, Type

from m365crawler.core.config import settings
from m365crawler.core.shared_models import CrawlStatus
from m365crawler.platform.entities._base import CrawlStats
from m365crawler.platform.locator import WalkerLocator
from m365crawler.platform.sources._base import BaseWalker
from m365crawler.platform.sync.context import CrawlContext
from m365crawler.platform.sync.record_builder import RecordBuilder
from m365crawler.platform.sync.worker_pool import CrawlTaskDispatcher
from m365crawler.platform.utils.error_utils import format_exception_chain, get_error_message


class CrawlOrchestrator:
    """Orchestrates one crawl run across every enabled resource family.

    Each walker's handle stream is consumed here and every leaf is handed to
    the dispatcher. When the dispatcher's queue is full the leaf is processed
    in this loop, which paces discovery to processing.
    """

    def __init__(
        self,
        context: CrawlContext,
        dispatcher: Optional[CrawlTaskDispatcher] = None,
        walkers: Optional[List[Type[BaseWalker]]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            context: The crawl context.
            dispatcher: Task dispatcher; sized from `number_of_threads` when omitted.
            walkers: Walker classes to run; every registered walker when omitted.
        """
        self.context = context
        self.dispatcher = dispatcher or CrawlTaskDispatcher(
            requested_workers=context.config.number_of_threads, logger=context.logger
        )
        self.builder = RecordBuilder(context)
        self._walkers = walkers

    def enabled_walkers(self) -> List[BaseWalker]:
        """Instantiate the walkers whose family flag is on."""
        classes = self._walkers if self._walkers is not None else WalkerLocator.walkers_in_order()
        walkers = []
        for walker_cls in classes:
            if not walker_cls.is_enabled(self.context.config):
                self.context.logger.debug(f"{walker_cls._name} crawler disabled")
                continue
            walker = walker_cls(self.context)
            walker.set_logger(
                walker.logger.with_prefix(f"[{walker_cls._name}] ").with_context(
                    family=walker_cls.family().value
                )
            )
            walkers.append(walker)
        return walkers

    async def run(self) -> CrawlStats:
        """Execute the crawl and return its counters."""
        final_status = CrawlStatus.FAILED
        try:
            await self._crawl()
            final_status = CrawlStatus.COMPLETED
            return self.context.stats.stats
        except asyncio.CancelledError:
            self.context.logger.info("Cancellation requested, stopping crawl...")
            await self.dispatcher.cancel()
            final_status = CrawlStatus.CANCELLED
            raise
        except Exception as e:
            self.context.logger.error(f"Crawl failed: {get_error_message(e)}")
            self.context.logger.debug(format_exception_chain(e))
            await self.dispatcher.cancel()
            final_status = CrawlStatus.FAILED
            raise
        finally:
            await self.context.stats.finalize(final_status)
            self.context.resolver.close()

    async def _crawl(self) -> None:
        walkers = self.enabled_walkers()
        self.context.logger.info(
            f"Starting crawl of {len(walkers)} families "
            f"(max workers: {self.dispatcher.max_workers})"
        )
        for walker in walkers:
            await self._walk(walker)

        drained = await self.dispatcher.shutdown(settings.CRAWLER_SHUTDOWN_TIMEOUT)
        if not drained:
            self.context.logger.warning("Crawl finished with tasks still pending")
        self.dispatcher.raise_if_failed()

    async def _walk(self, walker: BaseWalker) -> None:
        self.context.logger.info(f"Crawling {walker._name}")
        count = 0
        async with contextlib.aclosing(walker.walk()) as handles:
            async for handle in handles:
                await self.dispatcher.submit(self.builder.process, walker, handle)
                count += 1
        self.context.logger.info(f"Finished walking {walker._name}: {count} items submitted")
