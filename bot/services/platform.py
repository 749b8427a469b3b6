from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

import discord

from core.errors import ExternalFailureError, ExternalNotFoundError
from services.cache import CacheBackend, get_json, set_json
from utils.constants import CHANNEL_TYPE_PRIVATE_THREAD, CHANNEL_TYPE_TEXT

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PlatformChannel:
    id: int
    type: int
    guild_id: int | None = None
    parent_id: int | None = None
    name: str = ""
    overwrite_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"


@dataclass(slots=True)
class PlatformUser:
    id: int
    username: str
    global_name: str | None = None


@dataclass(slots=True)
class PlatformMember:
    user: PlatformUser
    nick: str | None = None


class PlatformClient(Protocol):
    @property
    def self_id(self) -> int: ...
    async def self_user(self) -> PlatformUser: ...
    async def get_channel(self, channel_id: int) -> PlatformChannel: ...
    async def list_guild_channels(self, guild_id: int) -> list[PlatformChannel]: ...
    async def create_channel(
        self,
        guild_id: int,
        *,
        name: str,
        topic: str | None,
        overwrites: list[dict[str, Any]],
        parent_id: int | None,
        channel_type: int = CHANNEL_TYPE_TEXT,
        reason: str | None = None,
    ) -> PlatformChannel: ...
    async def create_private_thread(
        self, channel_id: int, *, name: str, auto_archive_duration: int, invitable: bool = True
    ) -> PlatformChannel: ...
    async def edit_channel_permissions(
        self, channel_id: int, *, principal_id: int, principal_type: int, allow: int, deny: int
    ) -> None: ...
    async def send_message(
        self,
        channel_id: int,
        *,
        content: str | None = None,
        embed: discord.Embed | None = None,
        allowed_mentions: discord.AllowedMentions | None = None,
        reference: discord.MessageReference | None = None,
    ) -> int: ...
    async def delete_message(self, channel_id: int, message_id: int) -> None: ...
    async def create_webhook(self, channel_id: int, *, name: str) -> tuple[int, str]: ...
    async def get_guild_member(self, guild_id: int, user_id: int) -> PlatformMember: ...
    async def get_user(self, user_id: int) -> PlatformUser: ...
    async def guild_premium_tier(self, guild_id: int) -> int: ...
    async def self_has_guild_permission(self, guild_id: int, permission: str) -> bool: ...


@contextmanager
def platform_errors(action: str) -> Iterator[None]:
    try:
        yield
    except discord.NotFound as exc:
        raise ExternalNotFoundError(f"{action}: {exc.text or 'not found'}", status=exc.status) from exc
    except discord.HTTPException as exc:
        raise ExternalFailureError(f"{action}: {exc.text or exc.status}", status=exc.status) from exc


def _snowflake(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def channel_from_payload(payload: dict[str, Any]) -> PlatformChannel:
    return PlatformChannel(
        id=int(payload["id"]),
        type=int(payload.get("type", CHANNEL_TYPE_TEXT)),
        guild_id=_snowflake(payload.get("guild_id")),
        parent_id=_snowflake(payload.get("parent_id")),
        name=str(payload.get("name") or ""),
        overwrite_ids=frozenset(int(ow["id"]) for ow in payload.get("permission_overwrites") or []),
    )


def user_from_payload(payload: dict[str, Any]) -> PlatformUser:
    return PlatformUser(
        id=int(payload["id"]),
        username=str(payload.get("username") or ""),
        global_name=payload.get("global_name"),
    )


def member_from_payload(payload: dict[str, Any]) -> PlatformMember:
    return PlatformMember(user=user_from_payload(payload["user"]), nick=payload.get("nick"))


class DiscordPlatform(PlatformClient):
    """PlatformClient backed by discord.py's HTTP client, with a profile cache in front of user/member reads."""

    def __init__(self, client: discord.Client, cache: CacheBackend, profile_ttl: int = 300) -> None:
        self.client = client
        self.cache = cache
        self.profile_ttl = profile_ttl

    @property
    def self_id(self) -> int:
        assert self.client.user is not None
        return self.client.user.id

    async def self_user(self) -> PlatformUser:
        me = self.client.user
        if me is None:
            raise ExternalFailureError("client is not logged in")
        return PlatformUser(id=me.id, username=me.name, global_name=me.global_name)

    async def get_channel(self, channel_id: int) -> PlatformChannel:
        with platform_errors("get channel"):
            payload = await self.client.http.get_channel(channel_id)
        return channel_from_payload(dict(payload))

    async def list_guild_channels(self, guild_id: int) -> list[PlatformChannel]:
        with platform_errors("list guild channels"):
            payloads = await self.client.http.get_all_guild_channels(guild_id)
        return [channel_from_payload(dict(payload)) for payload in payloads]

    async def create_channel(
        self,
        guild_id: int,
        *,
        name: str,
        topic: str | None,
        overwrites: list[dict[str, Any]],
        parent_id: int | None,
        channel_type: int = CHANNEL_TYPE_TEXT,
        reason: str | None = None,
    ) -> PlatformChannel:
        with platform_errors("create channel"):
            payload = await self.client.http.create_channel(
                guild_id,
                channel_type,  # type: ignore[arg-type]
                name=name,
                topic=topic,
                permission_overwrites=overwrites,
                parent_id=parent_id,
                reason=reason,
            )
        return channel_from_payload(dict(payload))

    async def create_private_thread(
        self, channel_id: int, *, name: str, auto_archive_duration: int, invitable: bool = True
    ) -> PlatformChannel:
        with platform_errors("create private thread"):
            payload = await self.client.http.start_thread_without_message(
                channel_id,
                name=name,
                auto_archive_duration=auto_archive_duration,  # type: ignore[arg-type]
                type=CHANNEL_TYPE_PRIVATE_THREAD,  # type: ignore[arg-type]
                invitable=invitable,
            )
        return channel_from_payload(dict(payload))

    async def edit_channel_permissions(
        self, channel_id: int, *, principal_id: int, principal_type: int, allow: int, deny: int
    ) -> None:
        with platform_errors("edit channel permissions"):
            await self.client.http.edit_channel_permissions(
                channel_id,
                principal_id,
                str(allow),
                str(deny),
                principal_type,  # type: ignore[arg-type]
            )

    async def send_message(
        self,
        channel_id: int,
        *,
        content: str | None = None,
        embed: discord.Embed | None = None,
        allowed_mentions: discord.AllowedMentions | None = None,
        reference: discord.MessageReference | None = None,
    ) -> int:
        channel = self.client.get_partial_messageable(channel_id)
        kwargs: dict[str, Any] = {"content": content}
        if embed is not None:
            kwargs["embed"] = embed
        if allowed_mentions is not None:
            kwargs["allowed_mentions"] = allowed_mentions
        if reference is not None:
            kwargs["reference"] = reference
        with platform_errors("send message"):
            message = await channel.send(**kwargs)
        return message.id

    async def delete_message(self, channel_id: int, message_id: int) -> None:
        with platform_errors("delete message"):
            await self.client.http.delete_message(channel_id, message_id)

    async def create_webhook(self, channel_id: int, *, name: str) -> tuple[int, str]:
        with platform_errors("create webhook"):
            payload = await self.client.http.create_webhook(channel_id, name=name)
        return int(payload["id"]), str(payload.get("token") or "")

    async def get_guild_member(self, guild_id: int, user_id: int) -> PlatformMember:
        key = f"platform:member:{guild_id}:{user_id}"
        cached = await get_json(self.cache, key)
        if cached is not None:
            return member_from_payload(cached)
        with platform_errors("get guild member"):
            payload = dict(await self.client.http.get_member(guild_id, user_id))
        await set_json(self.cache, key, {"user": dict(payload["user"]), "nick": payload.get("nick")}, self.profile_ttl)
        return member_from_payload(payload)

    async def get_user(self, user_id: int) -> PlatformUser:
        key = f"platform:user:{user_id}"
        cached = await get_json(self.cache, key)
        if cached is not None:
            return user_from_payload(cached)
        with platform_errors("get user"):
            payload = dict(await self.client.http.get_user(user_id))
        await set_json(
            self.cache,
            key,
            {"id": payload["id"], "username": payload.get("username"), "global_name": payload.get("global_name")},
            self.profile_ttl,
        )
        return user_from_payload(payload)

    async def guild_premium_tier(self, guild_id: int) -> int:
        guild = self.client.get_guild(guild_id)
        if guild is not None:
            return guild.premium_tier
        with platform_errors("get guild"):
            payload = await self.client.http.get_guild(guild_id)
        return int(payload.get("premium_tier", 0))

    async def self_has_guild_permission(self, guild_id: int, permission: str) -> bool:
        guild = self.client.get_guild(guild_id)
        if guild is None or guild.me is None:
            LOGGER.debug("Guild %s not cached; assuming %s is not granted", guild_id, permission)
            return False
        return bool(getattr(guild.me.guild_permissions, permission))
