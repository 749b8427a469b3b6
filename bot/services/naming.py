from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from core.context import CommandContext
from database.models import NamingScheme, Panel
from database.repositories import GuildSettingsRepository
from services.platform import PlatformClient, PlatformMember, PlatformUser
from utils.constants import CHANNEL_NAME_MAX_LENGTH


@dataclass(slots=True, frozen=True)
class Substitutor:
    placeholder: str
    needs_user: bool
    needs_member: bool
    render: Callable[[PlatformUser | None, PlatformMember | None], str]


def _nickname(user: PlatformUser | None, member: PlatformMember | None) -> str:
    assert member is not None
    return member.nick or member.user.username


def build_substitutors(ticket_id: int, claimer_id: int | None) -> list[Substitutor]:
    return [
        Substitutor("id", False, False, lambda user, member: str(ticket_id)),
        Substitutor("id_padded", False, False, lambda user, member: f"{ticket_id:04d}"),
        Substitutor("claimed", False, False, lambda user, member: "unclaimed" if claimer_id is None else "claimed"),
        Substitutor("username", True, False, lambda user, member: user.username if user else ""),
        Substitutor("nickname", False, True, _nickname),
    ]


class NameGenerator:
    def __init__(self, platform: PlatformClient, settings_repo: GuildSettingsRepository) -> None:
        self.platform = platform
        self.settings_repo = settings_repo

    async def generate(
        self,
        ctx: CommandContext,
        panel: Panel | None,
        ticket_id: int,
        opener_id: int,
        claimer_id: int | None = None,
    ) -> str:
        if panel is None or panel.naming_scheme is None:
            name = await self._from_guild_scheme(ctx, ticket_id, opener_id)
        else:
            name = await self.substitute(
                ctx, panel.naming_scheme, opener_id, build_substitutors(ticket_id, claimer_id)
            )
        return name[:CHANNEL_NAME_MAX_LENGTH]

    async def _from_guild_scheme(self, ctx: CommandContext, ticket_id: int, opener_id: int) -> str:
        scheme = await self.settings_repo.get_naming_scheme(ctx.guild_id)
        ticket_word = ctx.translate("generic.ticket").lower()
        if scheme is NamingScheme.USERNAME:
            user = await self._fetch_user(ctx, opener_id)
            return f"{ticket_word}-{user.username}"
        return f"{ticket_word}-{ticket_id}"

    async def substitute(
        self,
        ctx: CommandContext,
        template: str,
        opener_id: int,
        substitutors: list[Substitutor],
    ) -> str:
        """Replace every known %placeholder% in ``template``; unknown ones are left as written.

        The opener's account and guild membership are only fetched when a referenced
        placeholder needs them.
        """
        active = [sub for sub in substitutors if f"%{sub.placeholder}%" in template]

        user: PlatformUser | None = None
        member: PlatformMember | None = None
        if any(sub.needs_user for sub in active):
            user = await self._fetch_user(ctx, opener_id)
        if any(sub.needs_member for sub in active):
            member = await self.platform.get_guild_member(ctx.guild_id, opener_id)

        name = template
        for sub in active:
            name = name.replace(f"%{sub.placeholder}%", sub.render(user, member))
        return name

    async def _fetch_user(self, ctx: CommandContext, user_id: int) -> PlatformUser:
        if user_id == ctx.user_id:
            return await ctx.user()
        return await self.platform.get_user(user_id)
