"""Microsoft Teams walker using Microsoft Graph API.

Crawls channel messages (and their replies) of every active team, or of the
configured `team_id` / `channel_id`. When `chat_id` is set, that chat's
messages are consolidated into a single record.

Reference (Microsoft Graph API):
  https://learn.microsoft.com/en-us/graph/api/channel-list-messages?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/chatmessage-list-replies?view=graph-rest-1.0
  https://learn.microsoft.com/en-us/graph/api/shares-get?view=graph-rest-1.0
"""

import base64
import re
from datetime import timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

from m365crawler.core.exceptions import (
    ConfigurationException,
    CrawlerException,
    NotFoundException,
)
from m365crawler.platform.decorators import walker
from m365crawler.platform.entities._base import (
    Breadcrumb,
    RequestDescriptor,
    ResourceFamily,
    ResourceHandle,
    ResourceKind,
)
from m365crawler.platform.sources._base import BaseWalker
from m365crawler.platform.sync.context import CrawlContext
from m365crawler.platform.sync.identity import LoadingCache
from m365crawler.platform.utils.error_utils import get_error_message
from m365crawler.platform.utils.html_utils import strip_html

SYSTEM_EVENT_BODY = "<systemEventMessage/>"
TEAM_PROVISIONING_OPTION = "Team"
CHAT_URL_TEMPLATE = "https://teams.microsoft.com/_#/conversations/{chat_id}?ctx=chat"

_ATTACHMENT_TAG = re.compile(r"<attachment[^>]*></attachment>")
_OFFSET = re.compile(r"([+-])(\d{1,2})(?::?(\d{2}))?(?::?(\d{2}))?")


def parse_timezone_offset(value: Optional[str]) -> timezone:
    """Parse "Z", "+09:00", "-0530" or "+9" into a fixed-offset timezone."""
    if not value or value.strip().upper() == "Z":
        return timezone.utc
    match = _OFFSET.fullmatch(value.strip())
    if not match:
        raise ConfigurationException(f"Invalid timezone offset: {value}")
    sign, hours, minutes, seconds = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes or 0), seconds=int(seconds or 0))
    if delta > timedelta(hours=18):
        raise ConfigurationException(f"Invalid timezone offset: {value}")
    return timezone(-delta if sign == "-" else delta)


def share_id(content_url: str) -> str:
    """Encode a sharing URL as a Graph share id ("u!" + unpadded base64url)."""
    encoded = base64.urlsafe_b64encode(content_url.encode("utf-8")).decode("ascii")
    return "u!" + encoded.rstrip("=")


def body_text(message: Dict[str, Any]) -> str:
    """Return the plain text of a message body."""
    body = message.get("body") or {}
    content = body.get("content")
    if content is None:
        return ""
    content_type = (body.get("contentType") or "").lower()
    if content_type == "html":
        if "<" not in content or ">" not in content:
            return content
        return strip_html(content)
    if content_type == "text":
        return _ATTACHMENT_TAG.sub("", content).strip()
    return content


def sender_name(message: Dict[str, Any]) -> str:
    """Return the display name of whoever sent a message."""
    sender = message.get("from")
    if not sender:
        return "unknown"
    for kind in ("user", "application", "device"):
        identity = sender.get(kind)
        if identity:
            return identity.get("displayName") or ""
    return ""


def newest_first(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Sort messages by creation time, newest first."""
    return sorted(messages, key=lambda m: m.get("createdDateTime") or "", reverse=True)


def consolidate_chat(chat_id: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge the messages of a chat into one message-shaped object.

    Metadata comes from the first message; attachments, mentions and reactions
    are gathered from all of them.
    """
    first = messages[0]
    merged = {
        key: first.get(key)
        for key in (
            "channelIdentity",
            "createdDateTime",
            "deletedDateTime",
            "etag",
            "from",
            "importance",
            "lastEditedDateTime",
            "lastModifiedDateTime",
            "locale",
            "messageType",
            "policyViolation",
            "replyToId",
            "subject",
            "summary",
            "hostedContents",
            "replies",
        )
    }
    merged["id"] = chat_id
    merged["chatId"] = first.get("chatId") or chat_id
    for key in ("attachments", "mentions", "reactions"):
        merged[key] = [value for m in messages for value in (m.get(key) or [])]
    merged["webUrl"] = CHAT_URL_TEMPLATE.format(chat_id=merged["chatId"])
    return merged


@walker(
    family=ResourceFamily.TEAMS,
    name="Microsoft Teams",
    config_flag="teams_crawler",
    labels=["Communication"],
)
class TeamsWalker(BaseWalker):
    """Walks teams, channels, messages, replies and one optional chat."""

    def __init__(self, context: CrawlContext):
        """Initialize the walker; channel member roles are cached per channel."""
        super().__init__(context)
        self.title_zone = parse_timezone_offset(self.config.title_timezone_offset)
        self._channel_roles: LoadingCache[Tuple[str, str], List[str]] = LoadingCache(
            self._load_channel_roles,
            maximum_size=self.config.cache_size,
            name="channel roles",
        )

    async def _load_channel_roles(self, key: Tuple[str, str]) -> List[str]:
        team_id, channel_id = key
        return await self.context.permissions.channel_roles(team_id, channel_id)

    def is_container(self, item: Dict[str, Any]) -> bool:
        """Teams and channels contain messages."""
        return "messageType" not in item and "body" not in item

    def is_leaf(self, item: Dict[str, Any]) -> bool:
        """Messages become records, except system events when those are ignored."""
        return not self.is_container(item) and not self.is_system_event(item)

    def is_system_event(self, message: Dict[str, Any]) -> bool:
        """Whether a message is a system event that should be skipped."""
        if not self.config.ignore_system_events:
            return False
        return (message.get("body") or {}).get("content") == SYSTEM_EVENT_BODY

    def is_target_visibility(self, team: Dict[str, Any]) -> bool:
        """Apply the include_visibility filter (case-insensitive)."""
        if not self.config.include_visibility:
            return True
        return (team.get("visibility") or "").lower() in self.config.include_visibility

    @staticmethod
    def is_active_team(team: Dict[str, Any]) -> bool:
        """Whether a group has a provisioned team."""
        return TEAM_PROVISIONING_OPTION in (team.get("resourceProvisioningOptions") or [])

    def message_title(self, message: Dict[str, Any]) -> str:
        """Return "<sender> <created time>" in the configured format and offset."""
        title = sender_name(message)
        created = self._parse_datetime(message.get("createdDateTime"))
        if created is not None:
            created = created.astimezone(self.title_zone)
            title = f"{title} {created.strftime(self.config.title_dateformat)}"
        return title

    # Enumeration

    async def walk(self) -> AsyncGenerator[ResourceHandle, None]:
        """Yield channel messages and replies, then the consolidated chat."""
        async for team in self._teams():
            team_ctx = {
                "id": team["id"],
                "displayName": team.get("displayName"),
                "visibility": team.get("visibility"),
            }
            async for channel in self._channels(team):
                channel_ctx = {
                    "id": channel["id"],
                    "displayName": channel.get("displayName"),
                    "webUrl": channel.get("webUrl"),
                }
                team_name = team.get("displayName") or ""
                channel_name = channel.get("displayName") or ""
                crumbs = [
                    Breadcrumb(entity_id=team["id"], name=team_name, type="team"),
                    Breadcrumb(entity_id=channel["id"], name=channel_name, type="channel"),
                ]
                async for handle in self._channel_messages(team_ctx, channel_ctx, crumbs):
                    yield handle

        if self.config.chat_id:
            handle = await self._chat_handle(self.config.chat_id)
            if handle is not None:
                yield handle

    async def _teams(self) -> AsyncGenerator[Dict[str, Any], None]:
        if self.config.team_id:
            try:
                team = await self._get_branch_root(
                    RequestDescriptor(path=f"groups/{self.config.team_id}"),
                    f"team {self.config.team_id}",
                    missing_ok=False,
                )
            except NotFoundException as e:
                raise CrawlerException(f"Could not find a team: {self.config.team_id}") from e
            if team is not None:
                yield team
            return

        request = RequestDescriptor(
            path="groups",
            params={
                "$filter": "resourceProvisioningOptions/Any(x:x eq 'Team')",
                "$select": "id,displayName,visibility,resourceProvisioningOptions",
            },
        )
        async for team in self._iterate_branch(request, "teams"):
            if team.get("id") in self.config.exclude_team_ids:
                self.logger.debug(f"Skipping excluded team: {team.get('displayName')}")
                continue
            if not self.is_target_visibility(team):
                self.logger.debug(
                    f"Skipping team {team.get('displayName')} with visibility "
                    f"{team.get('visibility')}"
                )
                continue
            if not self.is_active_team(team):
                self.logger.debug(f"Skipping inactive team: {team.get('displayName')}")
                continue
            yield team

    async def _channels(self, team: Dict[str, Any]) -> AsyncGenerator[Dict[str, Any], None]:
        if self.config.team_id and self.config.channel_id:
            try:
                channel = await self._get_branch_root(
                    RequestDescriptor(
                        path=f"teams/{team['id']}/channels/{self.config.channel_id}"
                    ),
                    f"channel {self.config.channel_id}",
                    missing_ok=False,
                )
            except NotFoundException as e:
                raise CrawlerException(
                    f"Could not find a channel: {self.config.channel_id}"
                ) from e
            if channel is not None:
                yield channel
            return

        request = RequestDescriptor(path=f"teams/{team['id']}/channels")
        channels = [c async for c in self._iterate_branch(request, f"channels of {team['id']}")]
        channels.sort(key=lambda c: (c.get("displayName") or "").lower())
        for channel in channels:
            yield channel

    async def _message_pages(
        self, request: RequestDescriptor, label: str
    ) -> AsyncGenerator[List[Dict[str, Any]], None]:
        """Yield each page of a message collection, newest message first."""
        paginator = self.context.paginator
        try:
            page = await paginator.fetch(request)
            while True:
                yield newest_first(page.items)
                if not page.has_next:
                    return
                page = await paginator.fetch_next(page.cursor)
        except NotFoundException as e:
            self.logger.debug(f"Skipping {label}: {e}")
        except Exception as e:
            self.logger.warning(f"Failed to enumerate {label}: {get_error_message(e)}")

    async def _channel_messages(
        self, team: Dict[str, Any], channel: Dict[str, Any], crumbs: List[Breadcrumb]
    ) -> AsyncGenerator[ResourceHandle, None]:
        base = f"teams/{team['id']}/channels/{channel['id']}/messages"
        async for messages in self._message_pages(RequestDescriptor(path=base), base):
            for message in messages:
                if not self.is_leaf(message):
                    self.logger.debug(f"Skipping non-leaf message: {message.get('id')}")
                    continue
                yield self.make_handle(
                    ResourceKind.CHANNEL_MESSAGE,
                    message,
                    name=message.get("subject") or message.get("id"),
                    breadcrumbs=crumbs,
                    team=team,
                    channel=channel,
                )
                if self.config.ignore_replies:
                    continue

                parent = {"id": message["id"], "webUrl": message.get("webUrl")}
                replies = RequestDescriptor(path=f"{base}/{message['id']}/replies")
                async for reply in self._iterate_branch(replies, f"replies of {message['id']}"):
                    if not self.is_leaf(reply):
                        continue
                    yield self.make_handle(
                        ResourceKind.CHANNEL_MESSAGE,
                        reply,
                        name=reply.get("subject") or reply.get("id"),
                        breadcrumbs=crumbs,
                        team=team,
                        channel=channel,
                        parent=parent,
                    )

    async def _chat_handle(self, chat_id: str) -> Optional[ResourceHandle]:
        request = RequestDescriptor(path=f"chats/{chat_id}/messages")
        messages = [
            m
            async for m in self._iterate_branch(request, f"messages of chat {chat_id}")
            if self.is_leaf(m)
        ]
        if not messages:
            self.logger.debug(f"No messages found for chat: {chat_id}")
            return None
        self.logger.debug(f"Consolidating {len(messages)} messages of chat {chat_id}")
        return self.make_handle(
            ResourceKind.CHAT_MESSAGE,
            consolidate_chat(chat_id, messages),
            name=chat_id,
            breadcrumbs=[Breadcrumb(entity_id=chat_id, name=chat_id, type="chat")],
            messages=messages,
        )

    # Content

    async def attachment_text(self, attachment: Dict[str, Any]) -> str:
        """Return inline attachment content, or download a shared file's text."""
        if attachment.get("content") is not None:
            return str(attachment["content"])
        content_url = attachment.get("contentUrl")
        if not content_url or not content_url.strip():
            return ""
        shared = share_id(content_url)
        return await self.context.content.fetch_text(
            RequestDescriptor(path=f"shares/{shared}/driveItem/content"),
            name=attachment.get("name") or shared,
            url=content_url,
        )

    async def message_content(self, message: Dict[str, Any], append_attachment: bool) -> str:
        """Return the body text, followed by attachment names and text when enabled."""
        parts = [body_text(message)]
        if append_attachment:
            for attachment in message.get("attachments") or []:
                name = attachment.get("name")
                if name and name.strip():
                    parts.append(name)
                parts.append(await self.attachment_text(attachment))
        return "\n".join(parts)

    @staticmethod
    def _message_fields(message: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": message.get("id"),
            "attachments": message.get("attachments"),
            "body": message.get("body"),
            "channel_identity": message.get("channelIdentity"),
            "chat_id": message.get("chatId"),
            "created_date_time": message.get("createdDateTime"),
            "deleted_date_time": message.get("deletedDateTime"),
            "etag": message.get("etag"),
            "from": message.get("from"),
            "hosted_contents": message.get("hostedContents"),
            "importance": message.get("importance"),
            "last_edited_date_time": message.get("lastEditedDateTime"),
            "last_modified_date_time": message.get("lastModifiedDateTime"),
            "locale": message.get("locale"),
            "mentions": message.get("mentions"),
            "replies": message.get("replies"),
            "reply_to_id": message.get("replyToId"),
            "subject": message.get("subject"),
            "summary": message.get("summary"),
            "web_url": message.get("webUrl"),
            "url": message.get("webUrl"),
        }

    async def build_fields(self, handle: ResourceHandle) -> Optional[Dict[str, Any]]:
        """Build the record fields of a channel message or a consolidated chat."""
        message = handle.data
        permissions = self.context.permissions
        self.logger.info(f"Crawling message {message.get('id')}: {message.get('webUrl')}")

        if handle.kind == ResourceKind.CHAT_MESSAGE:
            messages = handle.context.get("messages") or []
            bodies = [await self.message_content(m, append_attachment=False) for m in messages]
            roles = await permissions.chat_roles(handle.resource_id)
            return {
                **self._message_fields(message),
                "title": self.message_title(message),
                "content": "\n".join(bodies),
                "messages": messages,
                "roles": permissions.finalize(roles),
            }

        team = handle.context["team"]
        channel = handle.context["channel"]
        content = await self.message_content(message, self.config.append_attachment)
        roles = await self._channel_roles.get((team["id"], channel["id"]))
        fields = {
            **self._message_fields(message),
            "title": self.message_title(message),
            "content": content,
            "team": team,
            "channel": channel,
            "roles": permissions.finalize(roles),
        }
        if handle.context.get("parent"):
            fields["parent"] = handle.context["parent"]
        return fields
