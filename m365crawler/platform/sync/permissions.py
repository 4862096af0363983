"""Permission aggregation: Graph grants and conversation members to role tokens."""

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from m365crawler.core.config import settings
from m365crawler.core.logging import logger
from m365crawler.core.shared_models import UserType
from m365crawler.platform.entities._base import RequestDescriptor
from m365crawler.platform.sync.identity import IdentityResolver
from m365crawler.platform.sync.paginator import CursorPaginator

USER_PLACEHOLDER = "{user}"
GROUP_PLACEHOLDER = "{group}"


class RoleEncoder:
    """Encodes principals as role tokens understood by the search index."""

    def __init__(self, user_prefix: Optional[str] = None, group_prefix: Optional[str] = None):
        """Initialize the encoder; prefixes default to settings."""
        self.user_prefix = settings.USER_ROLE_PREFIX if user_prefix is None else user_prefix
        self.group_prefix = settings.GROUP_ROLE_PREFIX if group_prefix is None else group_prefix

    def user(self, principal: str) -> str:
        """Return the role token of a user."""
        return f"{self.user_prefix}{principal}"

    def group(self, principal: str) -> str:
        """Return the role token of a group."""
        return f"{self.group_prefix}{principal}"

    def configured(self, value: str) -> Optional[str]:
        """Encode one configured default permission.

        `{user}alice` and `{group}sales` are encoded; anything else is already a token.
        """
        value = value.strip()
        if not value:
            return None
        if value.startswith(USER_PLACEHOLDER):
            return self.user(value[len(USER_PLACEHOLDER) :])
        if value.startswith(GROUP_PLACEHOLDER):
            return self.group(value[len(GROUP_PLACEHOLDER) :])
        return value


def dedupe(roles: Iterable[Optional[str]]) -> List[str]:
    """Drop blanks and duplicates, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for role in roles:
        if role and role.strip() and role not in seen:
            seen[role] = None
    return list(seen)


class PermissionAggregator:
    """Builds the role list of a record from grants, members and configured defaults."""

    def __init__(
        self,
        resolver: IdentityResolver,
        paginator: CursorPaginator,
        encoder: Optional[RoleEncoder] = None,
        default_permissions: Sequence[str] = (),
        defaults: Optional[Mapping[str, Any]] = None,
        role_field: Optional[str] = None,
    ):
        """Initialize the aggregator.

        Args:
            resolver: Identity resolver used to add name-keyed roles.
            paginator: Paginator for the permission collections.
            encoder: Role encoder; a default one is created when omitted.
            default_permissions: Configured default permissions.
            defaults: The caller's default field map.
            role_field: Field of the default map holding roles; defaults to settings.
        """
        self.resolver = resolver
        self.paginator = paginator
        self.encoder = encoder or RoleEncoder()
        self.default_permissions = list(default_permissions)
        self.defaults = dict(defaults or {})
        self.role_field = role_field or settings.ROLE_FIELD

    async def _principal_roles(self, principal_id: str, is_group: bool) -> List[str]:
        encode = self.encoder.group if is_group else self.encoder.user
        roles = [encode(principal_id)]
        if is_group:
            name = await self.resolver.resolve_group_name(principal_id)
        else:
            name = await self.resolver.resolve_principal_name(principal_id)
        if name and name.strip() and name != principal_id:
            roles.append(encode(name))
        return roles

    async def grant_roles(self, grants: Iterable[Mapping[str, Any]]) -> List[str]:
        """Turn Graph permission objects into role tokens.

        A user or group grant yields the id-keyed role plus, when it resolves to a
        different name, the name-keyed role. An organization-scoped sharing link
        yields the everyone-in-tenant group role.
        """
        roles: List[str] = []
        for grant in grants:
            granted = grant.get("grantedToV2") or grant.get("grantedTo") or {}
            user = granted.get("user") or {}
            group = granted.get("group") or {}
            if user.get("id"):
                roles.extend(await self._principal_roles(user["id"], is_group=False))
                continue
            if group.get("id"):
                roles.extend(await self._principal_roles(group["id"], is_group=True))
                continue
            link = grant.get("link") or {}
            if (link.get("scope") or "").lower() == "organization":
                roles.append(self.encoder.group(settings.EVERYONE_IN_TENANT_GROUP))
        return dedupe(roles)

    async def _typed_roles(self, principal_id: str, email: Optional[str]) -> List[str]:
        user_type = await self.resolver.classify_user(principal_id)
        names = [email, principal_id] if email else [principal_id]
        roles: List[str] = []
        if user_type in (UserType.USER, UserType.UNKNOWN):
            roles.extend(self.encoder.user(name) for name in names)
        if user_type in (UserType.GROUP, UserType.UNKNOWN):
            roles.extend(self.encoder.group(name) for name in names)
        return roles

    async def member_roles(self, members: Iterable[Mapping[str, Any]]) -> List[str]:
        """Turn channel or chat members into role tokens.

        A member with an email but no user id is looked up by group mail; when no
        group matches, both the user and the group role of the email are emitted.
        """
        roles: List[str] = []
        for member in members:
            principal_id = member.get("userId")
            email = member.get("email")
            if email and email.strip():
                if principal_id and principal_id.strip():
                    ids = [principal_id]
                else:
                    ids = await self.resolver.group_ids_for_email(email)
                if not ids:
                    roles.extend([self.encoder.user(email), self.encoder.group(email)])
                for i in ids:
                    roles.extend(await self._typed_roles(i, email))
            elif principal_id and principal_id.strip():
                roles.extend(await self._typed_roles(principal_id, None))
            else:
                logger.debug(f"No identity for member {member.get('id')}")
        return dedupe(roles)

    def default_roles(self) -> List[str]:
        """Return the configured default roles and those of the default field map."""
        roles = [self.encoder.configured(p) for p in self.default_permissions]
        existing = self.defaults.get(self.role_field)
        if isinstance(existing, str):
            roles.append(existing)
        elif isinstance(existing, (list, tuple, set)):
            roles.extend(existing)
        return dedupe(roles)

    def finalize(self, roles: Iterable[str], extra_roles: Iterable[str] = ()) -> List[str]:
        """Append inherited and default roles and deduplicate."""
        return dedupe([*roles, *extra_roles, *self.default_roles()])

    async def _collection_roles(
        self,
        request: RequestDescriptor,
        label: str,
        convert: Optional[Callable[[List[Dict[str, Any]]], Awaitable[List[str]]]] = None,
    ) -> List[str]:
        """Aggregate a paged permission or member collection.

        A failing later page keeps what was gathered; a failing first page yields
        no roles. Neither aborts the item.
        """
        convert = convert or self.grant_roles
        roles: List[str] = []
        try:
            page = await self.paginator.fetch(request)
        except Exception as e:
            logger.warning(f"Failed to retrieve permissions for {label}: {e}")
            return roles
        while True:
            roles.extend(await convert(page.items))
            if not page.has_next:
                break
            try:
                page = await self.paginator.fetch_next(page.cursor)
            except Exception as e:
                logger.warning(f"Failed to get next page of permissions for {label}: {e}")
                break
        return dedupe(roles)

    async def drive_item_roles(self, drive_id: str, item_id: str) -> List[str]:
        """Return the grant roles of a drive item."""
        return await self._collection_roles(
            RequestDescriptor(path=f"drives/{drive_id}/items/{item_id}/permissions"),
            f"drive item {drive_id}/{item_id}",
        )

    async def drive_roles(self, drive_id: str) -> List[str]:
        """Return the grant roles of a drive's root."""
        return await self._collection_roles(
            RequestDescriptor(path=f"drives/{drive_id}/root/permissions"), f"drive {drive_id}"
        )

    async def site_roles(self, site_id: str) -> List[str]:
        """Return the grant roles of a site."""
        return await self._collection_roles(
            RequestDescriptor(path=f"sites/{site_id}/permissions"), f"site {site_id}"
        )

    async def page_roles(self, site_id: str, page_id: str) -> List[str]:
        """Return the grant roles of a site page, or an empty list when unavailable."""
        return await self._collection_roles(
            RequestDescriptor(path=f"sites/{site_id}/pages/{page_id}/permissions"),
            f"page {site_id}/{page_id}",
        )

    async def channel_roles(self, team_id: str, channel_id: str) -> List[str]:
        """Return the member roles of a Teams channel."""
        return await self._collection_roles(
            RequestDescriptor(path=f"teams/{team_id}/channels/{channel_id}/members"),
            f"channel {team_id}/{channel_id}",
            convert=self.member_roles,
        )

    async def chat_roles(self, chat_id: str) -> List[str]:
        """Return the member roles of a chat."""
        return await self._collection_roles(
            RequestDescriptor(path=f"chats/{chat_id}/members"),
            f"chat {chat_id}",
            convert=self.member_roles,
        )
