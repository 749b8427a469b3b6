from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error
from core.extensions import load_extensions
from database.base import Database
from database.migrations.runner import run_migrations
from database.repositories import (
    GuildSettingsRepository,
    PanelRepository,
    PermissionRepository,
    SupportTeamRepository,
    TicketMemberRepository,
    TicketRepository,
    WebhookRepository,
)
from services.cache import CacheBackend, build_cache
from services.error_reporter import ErrorReporter
from services.platform import DiscordPlatform
from services.ticket_service import TicketService, TicketServiceDeps
from utils.i18n import I18N
from utils.rate_limit import DistributedRateLimiter, TicketOpenRateLimiter

LOGGER = logging.getLogger(__name__)


class TicketBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=True, users=True, replied_user=False),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )
        self.cache: CacheBackend | None = None
        self.i18n = I18N(self.root_dir / "config" / "locales", config.i18n.default_locale)
        self.error_reporter = ErrorReporter(config.webhook_log)

        # Repositories and services are initialized during setup_hook.
        self.settings_repo: GuildSettingsRepository
        self.ticket_repo: TicketRepository
        self.panel_repo: PanelRepository
        self.team_repo: SupportTeamRepository
        self.permission_repo: PermissionRepository
        self.webhook_repo: WebhookRepository
        self.ticket_member_repo: TicketMemberRepository

        self.platform: DiscordPlatform
        self.ticket_service: TicketService

    async def setup_hook(self) -> None:
        await self.database.connect()
        applied = await run_migrations(self.database)
        if applied:
            LOGGER.info("Applied migrations: %s", ", ".join(applied))
        self.cache = await build_cache(self.config.redis)

        self.settings_repo = GuildSettingsRepository(self.database)
        self.ticket_repo = TicketRepository(self.database)
        self.panel_repo = PanelRepository(self.database)
        self.team_repo = SupportTeamRepository(self.database)
        self.permission_repo = PermissionRepository(self.database)
        self.webhook_repo = WebhookRepository(self.database)
        self.ticket_member_repo = TicketMemberRepository(self.database)

        self.platform = DiscordPlatform(self, self.cache, self.config.tickets.profile_cache_ttl)
        rate_limiter = TicketOpenRateLimiter(
            DistributedRateLimiter(self.cache),
            tokens=self.config.tickets.open_rate_limit_tokens,
            window_seconds=self.config.tickets.open_rate_limit_window_seconds,
        )

        deps = TicketServiceDeps(
            settings_repo=self.settings_repo,
            ticket_repo=self.ticket_repo,
            panel_repo=self.panel_repo,
            team_repo=self.team_repo,
            permission_repo=self.permission_repo,
            webhook_repo=self.webhook_repo,
            ticket_member_repo=self.ticket_member_repo,
            platform=self.platform,
            error_reporter=self.error_reporter,
            rate_limiter=rate_limiter,
        )
        self.ticket_service = TicketService(self.config, deps)

        await load_extensions(self, self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.settings_repo.ensure_guild(guild.id)
        LOGGER.info("Joined guild %s (%s)", guild.name, guild.id)

    async def close(self) -> None:
        if hasattr(self, "ticket_service"):
            await self.ticket_service.shutdown()
        await super().close()
        await self.database.close()
        if self.cache:
            await self.cache.close()
