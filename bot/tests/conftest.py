from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import AppConfig, DiscordConfig
from database.models import GuildSettings, NamingScheme, PermissionLevel, Ticket, TicketPermissions
from services.platform import PlatformChannel, PlatformMember, PlatformUser
from services.ticket_service import TicketService, TicketServiceDeps
from utils.constants import CHANNEL_TYPE_CATEGORY, CHANNEL_TYPE_PRIVATE_THREAD, CHANNEL_TYPE_TEXT

GUILD_ID = 1000
USER_ID = 10
BOT_ID = 99
INVOKE_CHANNEL_ID = 500


class FakeContext:
    def __init__(
        self,
        guild_id: int = GUILD_ID,
        user_id: int = USER_ID,
        channel_id: int = INVOKE_CHANNEL_ID,
        level: PermissionLevel = PermissionLevel.EVERYONE,
        is_premium: bool = False,
        username: str = "alice",
    ) -> None:
        self.guild_id = guild_id
        self.user_id = user_id
        self.channel_id = channel_id
        self.is_premium = is_premium
        self.permission_level = AsyncMock(return_value=level)
        self.user = AsyncMock(return_value=PlatformUser(id=user_id, username=username))
        self.reply = AsyncMock()
        self.handle_error = AsyncMock()

    def translate(self, key: str, **kwargs: Any) -> str:
        if key == "generic.ticket":
            return "Ticket"
        return key


@pytest.fixture
def make_ctx() -> type[FakeContext]:
    return FakeContext


@pytest.fixture
def platform() -> MagicMock:
    platform = MagicMock()
    platform.self_id = BOT_ID
    platform.self_user = AsyncMock(return_value=PlatformUser(id=BOT_ID, username="Tickets Bot"))
    platform.get_channel = AsyncMock(
        side_effect=lambda channel_id: PlatformChannel(id=channel_id, type=CHANNEL_TYPE_CATEGORY)
    )
    platform.list_guild_channels = AsyncMock(return_value=[])
    platform.create_channel = AsyncMock(
        return_value=PlatformChannel(id=900, type=CHANNEL_TYPE_TEXT, guild_id=GUILD_ID, name="ticket-1")
    )
    platform.create_private_thread = AsyncMock(
        return_value=PlatformChannel(id=901, type=CHANNEL_TYPE_PRIVATE_THREAD, guild_id=GUILD_ID)
    )
    platform.edit_channel_permissions = AsyncMock()
    platform.send_message = AsyncMock(return_value=777)
    platform.delete_message = AsyncMock()
    platform.create_webhook = AsyncMock(return_value=(55, "webhook-token"))
    platform.get_guild_member = AsyncMock(
        return_value=PlatformMember(user=PlatformUser(id=USER_ID, username="alice"), nick=None)
    )
    platform.get_user = AsyncMock(return_value=PlatformUser(id=USER_ID, username="alice"))
    platform.guild_premium_tier = AsyncMock(return_value=0)
    platform.self_has_guild_permission = AsyncMock(return_value=True)
    return platform


def _allocate(guild_id: int, user_id: int, panel_id: int | None = None) -> Ticket:
    return Ticket(guild_id=guild_id, id=1, user_id=user_id, panel_id=panel_id)


@pytest.fixture
def deps(platform: MagicMock) -> TicketServiceDeps:
    settings_repo = MagicMock()
    settings_repo.get = AsyncMock(side_effect=lambda guild_id: GuildSettings(guild_id=guild_id))
    settings_repo.get_ticket_limit = AsyncMock(return_value=5)
    settings_repo.get_category = AsyncMock(return_value=0)
    settings_repo.set_category = AsyncMock()
    settings_repo.delete_category = AsyncMock()
    settings_repo.set_overflow = AsyncMock()
    settings_repo.get_naming_scheme = AsyncMock(return_value=NamingScheme.ID)
    settings_repo.get_ticket_permissions = AsyncMock(return_value=TicketPermissions())

    ticket_repo = MagicMock()
    ticket_repo.count_open_by_user = AsyncMock(return_value=0)
    ticket_repo.allocate = AsyncMock(side_effect=_allocate)
    ticket_repo.set_properties = AsyncMock()
    ticket_repo.close = AsyncMock()

    panel_repo = MagicMock()
    panel_repo.get = AsyncMock(return_value=None)
    panel_repo.get_role_mentions = AsyncMock(return_value=[])

    team_repo = MagicMock()
    team_repo.get_members_for_panel = AsyncMock(return_value=[])
    team_repo.get_roles_for_panel = AsyncMock(return_value=[])

    permission_repo = MagicMock()
    permission_repo.get_support_users = AsyncMock(return_value=[])
    permission_repo.get_support_roles = AsyncMock(return_value=[])

    return TicketServiceDeps(
        settings_repo=settings_repo,
        ticket_repo=ticket_repo,
        panel_repo=panel_repo,
        team_repo=team_repo,
        permission_repo=permission_repo,
        webhook_repo=MagicMock(create=AsyncMock()),
        ticket_member_repo=MagicMock(add=AsyncMock()),
        platform=platform,
        error_reporter=MagicMock(report=AsyncMock()),
        rate_limiter=MagicMock(take_token=AsyncMock(return_value=True)),
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(discord=DiscordConfig(token="x"))


@pytest.fixture
def service(app_config: AppConfig, deps: TicketServiceDeps) -> TicketService:
    return TicketService(config=app_config, deps=deps)
