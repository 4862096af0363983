"""Shared models for the crawler."""

from enum import Enum


class CrawlStatus(str, Enum):
    """Final status of a crawl run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StatsAction(str, Enum):
    """Lifecycle states a crawled item passes through."""

    PREPARED = "prepared"
    EVALUATED = "evaluated"
    FINISHED = "finished"
    DISCARDED = "discarded"
    ACCESS_EXCEPTION = "access_exception"
    EXCEPTION = "exception"


class UserType(str, Enum):
    """Classification of a directory principal id."""

    USER = "user"
    GROUP = "group"
    UNKNOWN = "unknown"
