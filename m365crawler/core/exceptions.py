"""Shared exceptions module."""

from typing import Optional


class CrawlerException(Exception):
    """Base exception for the Microsoft 365 crawler."""

    pass


class NotFoundException(CrawlerException):
    """Exception raised when a remote resource does not exist (HTTP 404)."""

    def __init__(self, message: Optional[str] = "Resource not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class TransientUpstreamException(CrawlerException):
    """Base for upstream failures that are worth one more attempt."""

    def __init__(self, message: Optional[str] = None, retry_after: Optional[str] = None):
        """Create a new TransientUpstreamException instance.

        Args:
        ----
            message (str, optional): The error message.
            retry_after (str, optional): Raw value of the Retry-After response header.

        """
        self.message = message
        self.retry_after = retry_after
        super().__init__(self.message)


class RateLimitedException(TransientUpstreamException):
    """Exception raised when the upstream throttles the caller (HTTP 429)."""

    def __init__(
        self, message: Optional[str] = "Too many requests", retry_after: Optional[str] = None
    ):
        """Create a new RateLimitedException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.
            retry_after (str, optional): Raw value of the Retry-After response header.

        """
        super().__init__(message, retry_after)


class ServiceUnavailableException(TransientUpstreamException):
    """Exception raised when the upstream is temporarily unavailable (HTTP 503)."""

    def __init__(
        self, message: Optional[str] = "Service unavailable", retry_after: Optional[str] = None
    ):
        """Create a new ServiceUnavailableException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.
            retry_after (str, optional): Raw value of the Retry-After response header.

        """
        super().__init__(message, retry_after)


class ExternalServiceError(CrawlerException):
    """Exception raised when the upstream fails in a way the crawler cannot classify."""

    def __init__(self, service_name: str, message: Optional[str] = "External service failed"):
        """Create a new ExternalServiceError instance.

        Args:
        ----
            service_name (str): The name of the failing service.
            message (str, optional): The error message. Has default message.

        """
        self.service_name = service_name
        self.message = message
        super().__init__(f"{service_name}: {message}")


class CrawlingException(CrawlerException):
    """Exception raised when a single item cannot be turned into a record."""

    def __init__(self, message: Optional[str] = "Failed to crawl item"):
        """Create a new CrawlingException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class CrawlingAccessException(CrawlingException):
    """Exception raised when an item is unreachable or rejected; the crawl continues."""

    def __init__(self, message: Optional[str] = "Item could not be accessed"):
        """Create a new CrawlingAccessException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class AccessDeniedException(CrawlingAccessException):
    """Exception raised when the upstream refuses access (HTTP 401/403)."""

    def __init__(self, message: Optional[str] = "Access denied"):
        """Create a new AccessDeniedException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class ContentTooLargeException(CrawlingAccessException):
    """Exception raised when an item's declared size exceeds the configured ceiling."""

    def __init__(self, size: int, max_length: int, url: Optional[str] = None):
        """Create a new ContentTooLargeException instance.

        Args:
        ----
            size (int): The declared size of the item in bytes.
            max_length (int): The configured ceiling in bytes.
            url (str, optional): The item's URL.

        """
        self.size = size
        self.max_length = max_length
        self.url = url
        super().__init__(
            f"The content length ({size} byte) is over {max_length} byte. The url is {url}"
        )


class ExtractionFailedException(CrawlerException):
    """Exception raised by an extractor that cannot turn bytes into text."""

    def __init__(self, message: Optional[str] = "Content extraction failed"):
        """Create a new ExtractionFailedException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class ConfigurationException(CrawlerException):
    """Exception raised when crawl parameters are invalid."""

    def __init__(self, message: Optional[str] = "Invalid crawl configuration"):
        """Create a new ConfigurationException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)
