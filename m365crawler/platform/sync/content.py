"""Content download and text extraction with size and error policy."""

from typing import Optional

from m365crawler.core.exceptions import (
    ContentTooLargeException,
    CrawlingAccessException,
    CrawlingException,
)
from m365crawler.core.logging import ContextualLogger
from m365crawler.core.logging import logger as default_logger
from m365crawler.platform.collaborators._base import BaseExtractor, BaseTransport
from m365crawler.platform.entities._base import RequestDescriptor
from m365crawler.platform.utils.error_utils import get_error_message


class ContentFetcher:
    """Downloads item content and runs it through the extractor."""

    def __init__(
        self,
        transport: BaseTransport,
        extractor: BaseExtractor,
        max_content_length: int = -1,
        ignore_error: bool = False,
        logger: Optional[ContextualLogger] = None,
    ):
        """Initialize the fetcher.

        Args:
            transport: Graph transport used for downloads.
            extractor: Text extractor.
            max_content_length: Size ceiling in bytes; negative disables the check.
            ignore_error: Return empty text instead of raising when extraction fails.
            logger: Contextual logger with crawl metadata.
        """
        self.transport = transport
        self.extractor = extractor
        self.max_content_length = max_content_length
        self.ignore_error = ignore_error
        self.logger = logger or default_logger

    def check_size(self, size: Optional[int], url: Optional[str] = None) -> None:
        """Reject content whose declared size exceeds the ceiling.

        Raises:
            ContentTooLargeException: If a ceiling is set and `size` exceeds it.
        """
        if self.max_content_length < 0 or size is None:
            return
        if size > self.max_content_length:
            raise ContentTooLargeException(size, self.max_content_length, url)

    async def fetch_text(
        self,
        request: RequestDescriptor,
        name: str,
        size: Optional[int] = None,
        mime_type: Optional[str] = None,
        url: Optional[str] = None,
    ) -> str:
        """Download and extract the text of one item.

        The size check runs before any download. Download and extraction
        failures yield "" when errors are ignored and raise CrawlingException
        otherwise. Access failures always propagate.
        """
        self.check_size(size, url)
        try:
            data = await self.transport.download(request)
            return await self.extractor.extract(
                data, filename=name, mime_type=mime_type, max_length=self.max_content_length
            )
        except CrawlingAccessException:
            raise
        except Exception as e:
            if not self.ignore_error:
                raise CrawlingException(f"Failed to get contents: {name}") from e
            self.logger.warning(f"Failed to get contents: {name}. {get_error_message(e)}")
            return ""
