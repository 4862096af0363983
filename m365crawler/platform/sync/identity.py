"""Identity resolution with bounded, single-flight caches.

Permission grants and conversation members reference principals by object id.
Turning those ids into names (and users into users vs. groups) costs one Graph
round trip each, and the same principals appear on thousands of items, so every
lookup goes through a `LoadingCache`.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, List, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from m365crawler.core.config import settings
from m365crawler.core.exceptions import NotFoundException, TransientUpstreamException
from m365crawler.core.logging import logger
from m365crawler.core.shared_models import UserType
from m365crawler.platform.collaborators._base import BaseTransport
from m365crawler.platform.entities._base import RequestDescriptor
from m365crawler.platform.sync.paginator import NEXT_LINK

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _consume_outcome(task: asyncio.Future) -> None:
    # Retrieve the exception so a load with no waiters left is not reported as unhandled.
    if not task.cancelled():
        task.exception()


class LoadingCache(Generic[K, V]):
    """Bounded LRU cache that loads missing keys exactly once.

    Concurrent misses on the same key share one in-flight load. A load that
    raises is not cached and its exception reaches every waiter. `None` is a
    valid cached value, so negative lookups are remembered.
    """

    def __init__(self, loader: Callable[[K], Awaitable[V]], maximum_size: int, name: str = ""):
        """Initialize the cache.

        Args:
            loader: Coroutine function computing the value of a missing key.
            maximum_size: Capacity; least recently used entries are evicted beyond it.
            name: Name used in log lines.
        """
        self._loader = loader
        self.maximum_size = max(1, maximum_size)
        self.name = name
        self._entries: "OrderedDict[K, V]" = OrderedDict()
        self._inflight: Dict[K, asyncio.Future] = {}
        self.load_count = 0

    def __len__(self) -> int:
        """Return the number of cached entries."""
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        """Return whether the key is cached (in-flight loads do not count)."""
        return key in self._entries

    async def get(self, key: K) -> V:
        """Return the value for `key`, loading it on a miss.

        The load runs in its own task and every caller awaits it shielded, so a
        cancelled caller (including the one that started the load) leaves the
        other waiters and the load itself untouched.
        """
        if key in self._entries:
            self._entries.move_to_end(key)
            return self._entries[key]

        pending = self._inflight.get(key)
        if pending is None:
            self.load_count += 1
            pending = asyncio.ensure_future(self._load(key))
            pending.add_done_callback(_consume_outcome)
            self._inflight[key] = pending
        return await asyncio.shield(pending)

    async def _load(self, key: K) -> V:
        try:
            value = await self._loader(key)
        finally:
            self._inflight.pop(key, None)
        self._put(key, value)
        return value

    def _put(self, key: K, value: V) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.maximum_size:
            self._entries.popitem(last=False)

    def invalidate_all(self) -> None:
        """Drop every cached entry."""
        self._entries.clear()


def parse_retry_after(
    value: Optional[str], min_wait: float = 2.0, max_wait: float = 15.0
) -> float:
    """Compute the wait, in seconds, requested by a Retry-After header.

    Accepts delta-seconds or an HTTP date. Missing or unparseable values yield
    `min_wait`; every result is clamped to [min_wait, max_wait].

    Args:
        value: The raw header value.
        min_wait: Lower clamp in seconds.
        max_wait: Upper clamp in seconds.

    Returns:
        float: Seconds to wait.
    """
    if value is None or not str(value).strip():
        return min_wait
    value = str(value).strip()

    if value.isdigit():
        seconds = float(value)
    else:
        try:
            retry_at = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return min_wait
        if retry_at is None:
            return min_wait
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        seconds = (retry_at - datetime.now(timezone.utc)).total_seconds()

    return min(max(seconds, min_wait), max_wait)


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


class IdentityResolver:
    """Resolves principal ids to names and user/group classifications.

    Four caches back the lookups: principal names, group names, user types and
    group ids by email. They live for one crawl run; `close()` empties them.
    """

    def __init__(
        self,
        transport: BaseTransport,
        cache_size: int = 10000,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
    ):
        """Initialize the resolver.

        Args:
            transport: Graph transport.
            cache_size: Capacity of each cache.
            sleep: Coroutine used to wait between attempts (tests inject a fake).
            min_wait: Lower Retry-After clamp; defaults to settings.
            max_wait: Upper Retry-After clamp; defaults to settings.
        """
        self.transport = transport
        self._sleep = sleep or asyncio.sleep
        self.min_wait = settings.IDENTITY_RETRY_MIN_WAIT if min_wait is None else min_wait
        self.max_wait = settings.IDENTITY_RETRY_MAX_WAIT if max_wait is None else max_wait

        self.principal_names: LoadingCache[str, Optional[str]] = LoadingCache(
            self._load_principal_name, cache_size, "principal_name"
        )
        self.group_names: LoadingCache[str, Optional[str]] = LoadingCache(
            self._load_group_name, cache_size, "group_name"
        )
        self.user_types: LoadingCache[str, UserType] = LoadingCache(
            self._load_user_type, cache_size, "user_type"
        )
        self.group_ids_by_email: LoadingCache[str, List[str]] = LoadingCache(
            self._load_group_ids, cache_size, "group_ids_by_email"
        )

    # Upstream calls

    def _wait_retry_after(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return parse_retry_after(getattr(error, "retry_after", None), self.min_wait, self.max_wait)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else self.min_wait
        logger.warning(f"Graph throttled identity lookup ({error}); retrying in {wait:.1f}s")

    async def _call(self, request: RequestDescriptor) -> Dict[str, Any]:
        """Call Graph, retrying once on 429/503 after the requested delay."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            wait=self._wait_retry_after,
            retry=retry_if_exception_type(TransientUpstreamException),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                return await self.transport.call(request)

    # Loaders

    async def _load_principal_name(self, principal_id: str) -> Optional[str]:
        try:
            user = await self._call(
                RequestDescriptor(
                    path=f"users/{principal_id}",
                    params={"$select": "userPrincipalName,mail,id"},
                )
            )
        except NotFoundException:
            logger.debug(f"User {principal_id} not found")
            return None
        return user.get("userPrincipalName") or user.get("mail") or None

    async def _load_group_name(self, group_id: str) -> Optional[str]:
        try:
            group = await self._call(
                RequestDescriptor(
                    path=f"groups/{group_id}",
                    params={"$select": "id,displayName,mail,mailNickname"},
                )
            )
        except NotFoundException:
            logger.debug(f"Group {group_id} not found")
            return None
        for key in ("mail", "mailNickname", "displayName"):
            value = group.get(key)
            if value and value.strip():
                return value
        return None

    async def _load_user_type(self, principal_id: str) -> UserType:
        try:
            await self._call(
                RequestDescriptor(path=f"users/{principal_id}", params={"$select": "id"})
            )
            return UserType.USER
        except NotFoundException:
            pass
        try:
            await self._call(
                RequestDescriptor(path=f"groups/{principal_id}", params={"$select": "id"})
            )
            return UserType.GROUP
        except NotFoundException:
            return UserType.UNKNOWN

    async def _load_group_ids(self, email: str) -> List[str]:
        request = RequestDescriptor(
            path="groups",
            params={"$filter": f"mail eq '{_odata_quote(email)}'", "$select": "id,mail"},
        )
        ids: List[str] = []
        try:
            body = await self._call(request)
            while True:
                for group in body.get("value") or []:
                    mail = group.get("mail") or ""
                    if group.get("id") and mail.lower() == email.lower():
                        ids.append(group["id"])
                next_link = body.get(NEXT_LINK)
                if not next_link:
                    break
                body = await self._call(RequestDescriptor(url=next_link))
        except NotFoundException:
            return []
        return ids

    # Public API

    async def resolve_principal_name(self, principal_id: Optional[str]) -> Optional[str]:
        """Resolve a user id to its user principal name (falling back to mail).

        Ids that already look like an address are returned unchanged.
        """
        if principal_id is None or not principal_id.strip():
            return None
        if "@" in principal_id:
            return principal_id
        try:
            return await self.principal_names.get(principal_id)
        except TransientUpstreamException as e:
            logger.warning(f"Still throttled resolving user {principal_id}: {e}")
        except Exception as e:
            logger.warning(f"Failed to resolve user {principal_id}: {e}")
        return None

    async def resolve_group_name(self, group_id: Optional[str]) -> Optional[str]:
        """Resolve a group id to its mail, mail nickname or display name."""
        if group_id is None or not group_id.strip():
            return None
        if "@" in group_id:
            return group_id
        try:
            return await self.group_names.get(group_id)
        except TransientUpstreamException as e:
            logger.warning(f"Still throttled resolving group {group_id}: {e}")
        except Exception as e:
            logger.warning(f"Failed to resolve group {group_id}: {e}")
        return None

    async def classify_user(self, principal_id: Optional[str]) -> UserType:
        """Classify an object id as a user, a group, or unknown."""
        if principal_id is None or not principal_id.strip():
            return UserType.UNKNOWN
        try:
            return await self.user_types.get(principal_id)
        except Exception as e:
            logger.warning(f"Failed to classify principal {principal_id}: {e}")
            return UserType.UNKNOWN

    async def group_ids_for_email(self, email: Optional[str]) -> List[str]:
        """Return the ids of the groups whose mail address is `email`."""
        if email is None or not email.strip():
            return []
        try:
            return list(await self.group_ids_by_email.get(email))
        except Exception as e:
            logger.warning(f"Failed to look up groups for {email}: {e}")
            return []

    def close(self) -> None:
        """Invalidate every cache."""
        for cache in (
            self.principal_names,
            self.group_names,
            self.user_types,
            self.group_ids_by_email,
        ):
            cache.invalidate_all()
