"""Base classes for the collaborators a crawl is wired with.

The crawler core never talks to the network, the index or the mapping language
directly. It is handed one instance of each of these interfaces.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

from m365crawler.core.logging import ContextualLogger
from m365crawler.core.logging import logger as default_logger
from m365crawler.platform.entities._base import RequestDescriptor


class _LoggingCollaborator(ABC):
    """Collaborator with an overridable contextual logger."""

    def __init__(self):
        """Initialize the collaborator."""
        self._logger: Optional[ContextualLogger] = None

    @property
    def logger(self):
        """Get the logger for this collaborator, falling back to default if not set."""
        if self._logger is not None:
            return self._logger
        return default_logger

    def set_logger(self, logger: ContextualLogger) -> None:
        """Set a contextual logger for this collaborator."""
        self._logger = logger


class BaseTransport(_LoggingCollaborator):
    """Authenticated access to Microsoft Graph.

    Implementations raise NotFoundException for 404, AccessDeniedException for
    401/403, RateLimitedException for 429, ServiceUnavailableException for 503
    and ExternalServiceError for anything else that fails.
    """

    @abstractmethod
    async def call(self, request: RequestDescriptor) -> Dict[str, Any]:
        """Execute a JSON request and return the decoded body."""
        pass

    @abstractmethod
    async def download(self, request: RequestDescriptor) -> bytes:
        """Download raw content."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


class BaseExtractor(_LoggingCollaborator):
    """Turns downloaded bytes (or markup) into plain text."""

    @abstractmethod
    async def extract(
        self,
        data: bytes,
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        max_length: int = -1,
    ) -> str:
        """Extract text; raises ExtractionFailedException on failure."""
        pass


class BaseSink(_LoggingCollaborator):
    """Receives finished records."""

    @abstractmethod
    async def store(self, metadata: Mapping[str, Any], record: Dict[str, Any]) -> None:
        """Store one record."""
        pass


class BaseFailureLog(_LoggingCollaborator):
    """Durable log of items that could not be crawled."""

    @abstractmethod
    async def record(self, error_kind: str, label: str, cause: BaseException) -> None:
        """Record one failed item."""
        pass


class BaseFieldMapper(_LoggingCollaborator):
    """Evaluates configured field-mapping expressions against a record context."""

    @abstractmethod
    async def evaluate(
        self, expressions: Mapping[str, str], context: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Return the mapped fields. Values of None are ignored by the caller."""
        pass
