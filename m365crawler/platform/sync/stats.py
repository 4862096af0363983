"""Per-item lifecycle accounting for a crawl run."""

import asyncio
import itertools
from typing import List, Optional

from pydantic import BaseModel, Field

from m365crawler.core.logging import ContextualLogger
from m365crawler.core.shared_models import CrawlStatus, StatsAction
from m365crawler.platform.entities._base import CrawlStats

STATUS_LOG_INTERVAL = 100

_TERMINAL_ACTIONS = frozenset(
    {
        StatsAction.FINISHED,
        StatsAction.DISCARDED,
        StatsAction.ACCESS_EXCEPTION,
        StatsAction.EXCEPTION,
    }
)


class StatsKey(BaseModel):
    """Handle for one item's lifecycle, created by `begin` and closed by `done`."""

    key_id: int
    label: str
    url: Optional[str] = None
    actions: List[StatsAction] = Field(default_factory=list)
    closed: bool = False

    @property
    def outcome(self) -> Optional[StatsAction]:
        """The terminal action recorded for this item, if any."""
        for action in reversed(self.actions):
            if action in _TERMINAL_ACTIONS:
                return action
        return None


class CrawlStatsTracker:
    """Tracks the lifecycle of every crawled item.

    Every leaf gets `begin`, any number of `record` calls, and exactly one
    `done`. A second `done` for the same key is logged and ignored.
    """

    def __init__(self, logger: ContextualLogger):
        """Initialize the tracker.

        Args:
            logger: Contextual logger with crawl metadata
        """
        self.stats = CrawlStats()
        self.status: CrawlStatus = CrawlStatus.RUNNING
        self.logger = logger
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._open: dict[int, StatsKey] = {}

    def __getattr__(self, name: str) -> int:
        """Get counter value for any stat."""
        if name == "stats":
            raise AttributeError(name)
        return getattr(self.stats, name)

    @property
    def open_keys(self) -> List[StatsKey]:
        """Keys that were begun but not yet closed."""
        return list(self._open.values())

    async def begin(self, label: str, url: Optional[str] = None) -> StatsKey:
        """Open the lifecycle of one item."""
        async with self._lock:
            key = StatsKey(key_id=next(self._ids), label=label, url=url)
            self._open[key.key_id] = key
            self.stats.begun += 1
            return key

    async def record(self, key: StatsKey, action: StatsAction) -> None:
        """Record a lifecycle transition."""
        async with self._lock:
            if key.closed:
                self.logger.warning(f"Stats action {action.value} after done for {key.label}")
                return
            key.actions.append(action)
            setattr(self.stats, action.value, getattr(self.stats, action.value) + 1)

    async def done(self, key: StatsKey) -> None:
        """Close the lifecycle of one item."""
        async with self._lock:
            if key.closed:
                self.logger.warning(f"Stats key for {key.label} closed twice; ignoring")
                return
            key.closed = True
            self._open.pop(key.key_id, None)
            self.stats.done += 1
            if self.stats.done % STATUS_LOG_INTERVAL == 0:
                self.logger.info(f"Crawl progress: {self._summary()}")

    def _summary(self) -> str:
        s = self.stats
        return (
            f"Total: {s.done} | Finished: {s.finished} | Discarded: {s.discarded} | "
            f"Access errors: {s.access_exception} | Errors: {s.exception}"
        )

    async def finalize(self, status: CrawlStatus) -> None:
        """Log the final summary with the crawl status.

        Args:
            status: The final status of the crawl
        """
        async with self._lock:
            self.status = status
            status_map = {
                CrawlStatus.COMPLETED: ("Crawl completed successfully", "info"),
                CrawlStatus.CANCELLED: ("Crawl cancelled", "info"),
                CrawlStatus.FAILED: ("Crawl failed", "error"),
            }
            status_text, log_level = status_map.get(
                status, (f"Crawl ended with status: {status.value}", "warning")
            )

            message = f"{status_text} - {self._summary()}"
            if self._open:
                message += f" | Unclosed: {len(self._open)}"

            if log_level == "error":
                self.logger.error(message)
            elif log_level == "warning":
                self.logger.warning(message)
            else:
                self.logger.info(message)

    def to_dict(self) -> dict:
        """Convert the counters to a dictionary."""
        return self.stats.model_dump()
