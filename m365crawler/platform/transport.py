"""Microsoft Graph transport over httpx."""

from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from m365crawler.core.config import settings
from m365crawler.core.exceptions import (
    AccessDeniedException,
    ExternalServiceError,
    NotFoundException,
    RateLimitedException,
    ServiceUnavailableException,
)
from m365crawler.platform.collaborators._base import BaseTransport
from m365crawler.platform.entities._base import RequestDescriptor

TokenProvider = Callable[[], Awaitable[str]]


class GraphTransport(BaseTransport):
    """Authenticated Graph client.

    Token acquisition happens elsewhere: pass either a bearer token or an async
    callable returning one. Timeouts are retried; HTTP errors are mapped onto the
    crawler exception taxonomy and never retried here.
    """

    def __init__(
        self,
        token: Union[str, TokenProvider],
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the transport.

        Args:
            token: A bearer token or an async callable returning one.
            base_url: Graph API base; defaults to settings.GRAPH_BASE_URL.
            client: Optional preconfigured httpx client (owned by the caller).
            timeout: Per-request timeout in seconds.
        """
        super().__init__()
        self._token = token
        self.base_url = (base_url or settings.GRAPH_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.GRAPH_REQUEST_TIMEOUT
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)

    async def _access_token(self) -> str:
        if callable(self._token):
            return await self._token()
        return self._token

    def _url(self, request: RequestDescriptor) -> str:
        if request.url:
            return request.url
        return f"{self.base_url}/{request.path.lstrip('/')}"

    async def _headers(self, request: RequestDescriptor) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {await self._access_token()}"}
        if request.headers:
            headers.update(request.headers)
        return headers

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        """Map an HTTP error response onto a crawler exception."""
        if response.is_success:
            return

        status = response.status_code
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if status == 404:
            raise NotFoundException(f"Not found: {url}")
        if status in (401, 403):
            raise AccessDeniedException(f"Access denied ({status}): {url}")
        if status == 429:
            raise RateLimitedException(
                f"Throttled: {url}", retry_after=response.headers.get("Retry-After")
            )
        if status == 503:
            raise ServiceUnavailableException(
                f"Unavailable: {url}", retry_after=response.headers.get("Retry-After")
            )

        self.logger.error(f"HTTP status error {status} from Microsoft Graph API: {url}")
        self.logger.error(f"Error response body: {body}")
        raise ExternalServiceError("Microsoft Graph", f"HTTP {status} for {url}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.ConnectTimeout, httpx.ReadTimeout)),
        reraise=True,
    )
    async def _send(self, request: RequestDescriptor) -> httpx.Response:
        url = self._url(request)
        try:
            response = await self._client.get(
                url, headers=await self._headers(request), params=request.params
            )
        except httpx.ConnectTimeout:
            self.logger.error(f"Connection timeout accessing Microsoft Graph API: {url}")
            raise
        except httpx.ReadTimeout:
            self.logger.error(f"Read timeout accessing Microsoft Graph API: {url}")
            raise
        self.logger.debug(f"Request URL: {url} -> {response.status_code}")
        self._raise_for_status(response, url)
        return response

    async def call(self, request: RequestDescriptor) -> Dict[str, Any]:
        """Execute a GET request and return the decoded JSON body."""
        response = await self._send(request)
        if not response.content:
            return {}
        return response.json()

    async def download(self, request: RequestDescriptor) -> bytes:
        """Download raw content, following the pre-authenticated redirect."""
        response = await self._send(request)
        return response.content

    async def close(self) -> None:
        """Close the underlying client when this transport created it."""
        if self._owns_client:
            await self._client.aclose()
