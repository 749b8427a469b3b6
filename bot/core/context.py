from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import discord

from database.models import PermissionLevel
from services.platform import PlatformUser
from utils.embeds import make_embed

if TYPE_CHECKING:
    from core.bot import TicketBot

LOGGER = logging.getLogger(__name__)


class ReplyKind(Enum):
    SUCCESS = "success"
    ERROR = "error"

    @property
    def color(self) -> discord.Color:
        return discord.Color.green() if self is ReplyKind.SUCCESS else discord.Color.red()


class CommandContext(Protocol):
    guild_id: int
    user_id: int
    channel_id: int
    is_premium: bool

    async def permission_level(self) -> PermissionLevel: ...
    async def user(self) -> PlatformUser: ...
    def translate(self, key: str, **kwargs: Any) -> str: ...
    async def reply(self, kind: ReplyKind, title_key: str, message_key: str, **kwargs: Any) -> None: ...
    async def handle_error(self, error: BaseException) -> None: ...


class InteractionContext(CommandContext):
    def __init__(self, bot: TicketBot, interaction: discord.Interaction) -> None:
        if interaction.guild_id is None or interaction.channel_id is None:
            raise ValueError("Ticket commands require a guild channel")
        self.bot = bot
        self.interaction = interaction
        self.guild_id = interaction.guild_id
        self.user_id = interaction.user.id
        self.channel_id = interaction.channel_id
        self.is_premium = interaction.guild_id in bot.config.tickets.premium_guild_ids
        self._permission_level: PermissionLevel | None = None

    async def permission_level(self) -> PermissionLevel:
        if self._permission_level is not None:
            return self._permission_level
        member = self.interaction.user
        guild = self.interaction.guild
        if isinstance(member, discord.Member) and (
            member.guild_permissions.administrator or (guild is not None and guild.owner_id == member.id)
        ):
            level = PermissionLevel.ADMIN
        else:
            role_ids = [role.id for role in member.roles] if isinstance(member, discord.Member) else []
            level = await self.bot.permission_repo.get_level(self.guild_id, self.user_id, role_ids)
        self._permission_level = level
        return level

    async def user(self) -> PlatformUser:
        author = self.interaction.user
        return PlatformUser(id=author.id, username=author.name, global_name=author.global_name)

    def translate(self, key: str, **kwargs: Any) -> str:
        return self.bot.i18n.t(key, **kwargs)

    async def reply(self, kind: ReplyKind, title_key: str, message_key: str, **kwargs: Any) -> None:
        embed = make_embed(
            title=self.translate(title_key),
            description=self.translate(message_key, **kwargs),
            color=kind.color,
        )
        if self.interaction.response.is_done():
            await self.interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await self.interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_error(self, error: BaseException) -> None:
        await self.bot.error_reporter.report(
            error,
            guild_id=self.guild_id,
            user_id=self.user_id,
            command=getattr(self.interaction.command, "qualified_name", None),
        )
        try:
            await self.reply(ReplyKind.ERROR, "generic.error", "generic.error_occurred")
        except discord.HTTPException:
            LOGGER.warning("Could not deliver error reply to user %s", self.user_id)
