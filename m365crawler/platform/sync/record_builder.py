"""Record builder: turns one resource handle into one stored record."""

import asyncio
from typing import Any, Dict

from m365crawler.core.exceptions import CrawlingAccessException, NotFoundException
from m365crawler.core.shared_models import StatsAction
from m365crawler.platform.entities._base import ResourceHandle
from m365crawler.platform.sync.context import CrawlContext
from m365crawler.platform.utils.error_utils import get_error_message, get_root_cause_name

URL_FIELD = "url"


class RecordBuilder:
    """Processes leaves: fields, mapping, merge, store, with lifecycle accounting.

    Every call opens a stats key and closes it exactly once, whatever happens.
    A failed item is either stored or written to the failure log, never both.
    """

    def __init__(self, context: CrawlContext):
        """Initialize the builder with the crawl context."""
        self.context = context
        self.logger = context.logger

    @staticmethod
    def merge(
        defaults: Dict[str, Any], fields: Dict[str, Any], mapped: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge defaults, resource fields and mapped fields; later sources win.

        Mapped values that are None are skipped.
        """
        record = dict(defaults)
        record.update(fields)
        record.update({key: value for key, value in mapped.items() if value is not None})
        return record

    async def process(self, walker, handle: ResourceHandle) -> None:
        """Build and store the record of one leaf.

        Args:
            walker: The walker that discovered the handle.
            handle: The leaf to process.

        Raises:
            Exception: An unexpected per-item error, when errors are not ignored.
        """
        stats = self.context.stats
        key = await stats.begin(handle.label, handle.data.get("webUrl"))
        try:
            fields = await walker.build_fields(handle)
            if fields is None:
                self.logger.debug(f"Discarded {handle.family.value} item: {handle.label}")
                await stats.record(key, StatsAction.DISCARDED)
                return
            await stats.record(key, StatsAction.PREPARED)

            mapped = await self.context.mapper.evaluate(
                self.context.script_map, {**self.context.config.params, **fields}
            )
            await stats.record(key, StatsAction.EVALUATED)

            record = self.merge(self.context.defaults, fields, mapped or {})
            url = record.get(URL_FIELD)
            if isinstance(url, str):
                key.url = url
            else:
                self.logger.debug(f"Record without url: {handle.label}")

            metadata = {
                "family": handle.family.value,
                "kind": handle.kind.value,
                "id": handle.resource_id,
            }
            await self.context.sink.store(metadata, record)
            await stats.record(key, StatsAction.FINISHED)
        except asyncio.CancelledError:
            raise
        except CrawlingAccessException as e:
            self.logger.warning(f"Crawling access exception at {handle.label}: {e}")
            await self.context.failure_log.record(get_root_cause_name(e), handle.label, e)
            await stats.record(key, StatsAction.ACCESS_EXCEPTION)
        except NotFoundException as e:
            self.logger.debug(f"Item disappeared before processing: {handle.label} ({e})")
            await stats.record(key, StatsAction.DISCARDED)
        except Exception as e:
            self.logger.warning(f"Crawling exception at {handle.label}: {get_error_message(e)}")
            await self.context.failure_log.record(type(e).__name__, handle.label, e)
            await stats.record(key, StatsAction.EXCEPTION)
            if not self.context.ignore_error:
                raise
        finally:
            await stats.done(key)
