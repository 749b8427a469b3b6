from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import discord

from core.config import AppConfig
from core.context import CommandContext, ReplyKind
from core.errors import (
    AdmissionUnavailableError,
    BotError,
    ExternalFailureError,
    PermissionDeniedError,
    ValidationError,
)
from database.models import GuildSettings, Panel, PermissionLevel, Ticket
from database.repositories import (
    GuildSettingsRepository,
    PanelRepository,
    PermissionRepository,
    SupportTeamRepository,
    TicketMemberRepository,
    TicketRepository,
    WebhookRepository,
)
from services.access import AccessResolver, user_grant
from services.admission import AdmissionGate
from services.error_reporter import ErrorReporter
from services.naming import NameGenerator
from services.placement import PlacementCorrection, PlacementDecision, PlacementPlanner
from services.platform import PlatformChannel, PlatformClient
from utils.concurrency import join_all, pending_background_tasks, spawn_detached
from utils.constants import (
    CHANNEL_TYPE_CATEGORY,
    MESSAGE_CONTENT_MAX_LENGTH,
    NO_SUBJECT,
    SUBJECT_MAX_LENGTH,
    THREAD_CHANNEL_TYPES,
    WEBHOOK_FALLBACK_NAME,
)
from utils.embeds import make_embed, string_max, welcome_embed
from utils.rate_limit import TicketOpenRateLimiter

LOGGER = logging.getLogger(__name__)

# Thread invitations only reach members who are mentioned, so users and roles must be parsed.
THREAD_INVITE_MENTIONS = discord.AllowedMentions(everyone=False, users=True, roles=True)
PING_MENTIONS = discord.AllowedMentions(everyone=True, users=True, roles=True)

_INTERNAL_ERRORS = (AdmissionUnavailableError, ExternalFailureError)


class OpenState(Enum):
    START = "start"
    ADMISSION_CHECKED = "admission_checked"
    PLACED = "placed"
    RECORD_CREATED = "record_created"
    CHANNEL_CREATED = "channel_created"
    PERSISTED = "persisted"
    POST_PROCESSED = "post_processed"
    DONE = "done"
    ABORTED = "aborted"


class OpenAttempt:
    def __init__(self, guild_id: int, user_id: int) -> None:
        self.guild_id = guild_id
        self.user_id = user_id
        self.state = OpenState.START
        self.ticket: Ticket | None = None

    def _extra(self) -> dict[str, Any]:
        return {
            "guild_id": self.guild_id,
            "user_id": self.user_id,
            "ticket_id": self.ticket.id if self.ticket else None,
            "state": self.state.value,
        }

    def advance(self, state: OpenState) -> None:
        LOGGER.debug("Ticket open %s -> %s", self.state.value, state.value, extra=self._extra())
        self.state = state

    def abort(self, error: BaseException) -> None:
        LOGGER.debug(
            "Ticket open aborted in state %s: %r",
            self.state.value,
            error,
            extra=self._extra(),
        )
        self.state = OpenState.ABORTED


@dataclass(slots=True, frozen=True)
class SourceMessage:
    id: int
    channel_id: int
    author_id: int
    content: str


@dataclass(slots=True)
class TicketServiceDeps:
    settings_repo: GuildSettingsRepository
    ticket_repo: TicketRepository
    panel_repo: PanelRepository
    team_repo: SupportTeamRepository
    permission_repo: PermissionRepository
    webhook_repo: WebhookRepository
    ticket_member_repo: TicketMemberRepository
    platform: PlatformClient
    error_reporter: ErrorReporter
    rate_limiter: TicketOpenRateLimiter


def resolve_subject(panel: Panel | None, subject: str | None) -> str:
    if panel is not None and panel.title:
        return panel.title
    subject = (subject or "").strip()
    if not subject:
        return NO_SUBJECT
    return subject[:SUBJECT_MAX_LENGTH]


def join_mentions(tokens: list[str], limit: int = MESSAGE_CONTENT_MAX_LENGTH) -> str:
    """Join mention tokens with spaces, dropping trailing tokens that would not fit in ``limit``."""
    content = ""
    for token in tokens:
        candidate = f"{content} {token}" if content else token
        if len(candidate) > limit:
            break
        content = candidate
    return content


def build_mention_content(
    role_ids: list[int], user_ids: list[int], limit: int = MESSAGE_CONTENT_MAX_LENGTH
) -> str:
    tokens = [f"<@&{role_id}>" for role_id in role_ids]
    tokens.extend(f"<@{user_id}>" for user_id in user_ids)
    return join_mentions(tokens, limit)


class TicketService:
    def __init__(self, config: AppConfig, deps: TicketServiceDeps) -> None:
        self.config = config
        self.deps = deps
        self.admission = AdmissionGate(
            deps.settings_repo,
            deps.ticket_repo,
            deps.rate_limiter,
            config.tickets.default_ticket_limit,
        )
        self.placement = PlacementPlanner(deps.platform, deps.settings_repo)
        self.access = AccessResolver(deps.platform, deps.settings_repo, deps.permission_repo, deps.team_repo)
        self.naming = NameGenerator(deps.platform, deps.settings_repo)

    async def open_ticket(
        self,
        ctx: CommandContext,
        panel: Panel | None,
        subject: str | None,
        form_data: dict[str, str] | None = None,
    ) -> Ticket:
        """Open a ticket for the caller.

        The caller has always been replied to when this returns or raises. Any failure after the
        ticket id was allocated closes the record before the error propagates.
        """
        attempt = OpenAttempt(ctx.guild_id, ctx.user_id)
        try:
            level = await ctx.permission_level()
            await self.admission.admit(ctx.guild_id, ctx.user_id, level >= PermissionLevel.SUPPORT)
            attempt.advance(OpenState.ADMISSION_CHECKED)

            settings = await self.deps.settings_repo.get(ctx.guild_id)
            corrections: list[PlacementCorrection] = []
            try:
                placement = await self.placement.plan(ctx.guild_id, panel, settings, corrections)
            finally:
                await self.placement.apply_corrections(ctx.guild_id, corrections)
            if placement.rejection is not None:
                raise placement.rejection
            assert placement.decision is not None
            attempt.advance(OpenState.PLACED)

            subject = resolve_subject(panel, subject)
            panel_id = panel.panel_id if panel is not None else None
            attempt.ticket = await self.deps.ticket_repo.allocate(ctx.guild_id, ctx.user_id, panel_id)
            attempt.advance(OpenState.RECORD_CREATED)

            channel = await self._create_transport(ctx, panel, attempt.ticket, subject, placement.decision, settings)
            attempt.advance(OpenState.CHANNEL_CREATED)

            await self._persist(ctx, attempt.ticket, channel, subject, settings, form_data)
            attempt.advance(OpenState.PERSISTED)
        except BaseException as exc:
            attempt.abort(exc)
            if attempt.ticket is not None:
                await self._close_pending(attempt.ticket)
            if not isinstance(exc, Exception):
                raise
            error = await self._fail(ctx, exc)
            if error is exc:
                raise
            raise error from exc

        ticket = attempt.ticket
        assert ticket is not None
        await self._post_process(ctx, panel, ticket, channel)
        attempt.advance(OpenState.POST_PROCESSED)

        try:
            await ctx.reply(ReplyKind.SUCCESS, "generic.ticket", "open.success", channel=channel.mention)
        except discord.HTTPException:
            LOGGER.warning("Could not deliver ticket opened reply. guild=%s ticket=%s", ticket.guild_id, ticket.id)
        attempt.advance(OpenState.DONE)
        return ticket

    async def _create_transport(
        self,
        ctx: CommandContext,
        panel: Panel | None,
        ticket: Ticket,
        subject: str,
        decision: PlacementDecision,
        settings: GuildSettings,
    ) -> PlatformChannel:
        platform = self.deps.platform
        self_id = platform.self_id

        if decision.use_thread:
            name, principals = await join_all(
                self.naming.generate(ctx, panel, ticket.id, ctx.user_id),
                self.access.resolve(ctx.guild_id, self_id, panel),
            )
            thread = await platform.create_private_thread(
                ctx.channel_id,
                name=name,
                auto_archive_duration=settings.thread_archive_duration,
                invitable=True,
            )
            content = build_mention_content(principals.roles, principals.users)
            if content:
                await platform.send_message(thread.id, content=content, allowed_mentions=THREAD_INVITE_MENTIONS)
            return thread

        name, grants = await join_all(
            self.naming.generate(ctx, panel, ticket.id, ctx.user_id),
            self.access.build_overwrites(ctx.guild_id, ctx.user_id, self_id, panel),
        )
        return await platform.create_channel(
            ctx.guild_id,
            name=name,
            topic=subject,
            overwrites=[grant.to_payload() for grant in grants],
            parent_id=decision.parent_id,
            reason=f"Ticket #{ticket.id} opened by {ctx.user_id}",
        )

    async def _persist(
        self,
        ctx: CommandContext,
        ticket: Ticket,
        channel: PlatformChannel,
        subject: str,
        settings: GuildSettings,
        form_data: dict[str, str] | None,
    ) -> None:
        welcome_message_id = await self._send_welcome(ticket, channel, subject, settings, form_data)
        await self.deps.ticket_repo.set_properties(
            ctx.guild_id, ticket.id, channel.id, welcome_message_id, ticket.panel_id
        )
        ticket.channel_id = channel.id
        ticket.welcome_message_id = welcome_message_id

    async def _send_welcome(
        self,
        ticket: Ticket,
        channel: PlatformChannel,
        subject: str,
        settings: GuildSettings,
        form_data: dict[str, str] | None,
    ) -> int | None:
        template = settings.welcome_message or self.config.tickets.default_welcome_message
        embed = welcome_embed(subject, template.replace("%user%", f"<@{ticket.user_id}>"), form_data)
        try:
            return await self.deps.platform.send_message(
                channel.id,
                content=f"<@{ticket.user_id}>",
                embed=embed,
                allowed_mentions=discord.AllowedMentions(everyone=False, users=True, roles=False),
            )
        except Exception as exc:
            await self._report(exc, "welcome message", ticket)
            return None

    async def _post_process(
        self, ctx: CommandContext, panel: Panel | None, ticket: Ticket, channel: PlatformChannel
    ) -> None:
        if panel is not None:
            try:
                await self._send_ping(ctx, panel, ticket, channel)
            except Exception as exc:
                await self._report(exc, "ping message", ticket)

        if ctx.is_premium:
            spawn_detached(
                self._create_webhook(ticket, channel.id),
                name=f"ticket-webhook-{ticket.guild_id}-{ticket.id}",
                on_error=lambda exc: self._report(exc, "webhook provisioning", ticket),
            )

        spawn_detached(
            self._warm_profile_cache(ctx.guild_id, ctx.user_id),
            name=f"ticket-cache-warm-{ticket.guild_id}-{ctx.user_id}",
            on_error=lambda exc: self._report(exc, "profile cache warm-up", ticket),
        )

    async def _send_ping(
        self, ctx: CommandContext, panel: Panel, ticket: Ticket, channel: PlatformChannel
    ) -> None:
        role_ids = await self.deps.panel_repo.get_role_mentions(panel.panel_id)
        tokens = ["@everyone" if role_id == ctx.guild_id else f"<@&{role_id}>" for role_id in role_ids]
        if panel.mention_user:
            tokens.append(f"<@{ctx.user_id}>")
        content = join_mentions(tokens)
        if not content:
            return

        platform = self.deps.platform
        message_id = await platform.send_message(channel.id, content=content, allowed_mentions=PING_MENTIONS)
        try:
            await platform.delete_message(channel.id, message_id)
        except ExternalFailureError as exc:
            LOGGER.warning("Could not delete ping message in channel %s: %s", channel.id, exc)
            await self._report(exc, "ping delete", ticket)

    async def _create_webhook(self, ticket: Ticket, channel_id: int) -> None:
        platform = self.deps.platform
        try:
            name = (await platform.self_user()).username or WEBHOOK_FALLBACK_NAME
        except ExternalFailureError:
            name = WEBHOOK_FALLBACK_NAME
        webhook_id, token = await platform.create_webhook(channel_id, name=name)
        await self.deps.webhook_repo.create(ticket.guild_id, ticket.id, webhook_id, token)
        LOGGER.debug("Provisioned webhook %s for ticket %s/%s", webhook_id, ticket.guild_id, ticket.id)

    async def _warm_profile_cache(self, guild_id: int, user_id: int) -> None:
        await self.deps.platform.get_guild_member(guild_id, user_id)
        await self.deps.platform.get_user(user_id)

    async def _close_pending(self, ticket: Ticket) -> None:
        try:
            await self.deps.ticket_repo.close(ticket.guild_id, ticket.id)
        except Exception as exc:
            LOGGER.exception("Failed to close aborted ticket %s/%s", ticket.guild_id, ticket.id)
            await self._report(exc, "close aborted ticket", ticket)
        else:
            LOGGER.info("Closed ticket %s/%s after an aborted open", ticket.guild_id, ticket.id)

    async def _fail(self, ctx: CommandContext, exc: Exception) -> BotError:
        """Reply to the caller once and return the error to raise in place of ``exc``."""
        error = exc if isinstance(exc, BotError) else ExternalFailureError(str(exc) or type(exc).__name__)
        if error.replied:
            return error
        if isinstance(error, _INTERNAL_ERRORS):
            await ctx.handle_error(exc)
        else:
            try:
                await ctx.reply(ReplyKind.ERROR, "generic.error", error.message_key, **error.format_args)
            except discord.HTTPException:
                LOGGER.warning("Could not deliver rejection reply to user %s", ctx.user_id)
        error.replied = True
        return error

    async def _report(self, exc: BaseException, action: str, ticket: Ticket) -> None:
        await self.deps.error_reporter.report(
            exc,
            action=action,
            guild_id=ticket.guild_id,
            ticket_id=ticket.id,
            user_id=ticket.user_id,
        )

    async def start_from_message(self, ctx: CommandContext, message: SourceMessage) -> Ticket:
        """Open a ticket whose subject is an existing message, then link the two conversations."""
        try:
            settings, level = await join_all(
                self.deps.settings_repo.get(ctx.guild_id),
                ctx.permission_level(),
            )
            if level < settings.context_menu_permission_level:
                raise PermissionDeniedError(f"level {level} below {settings.context_menu_permission_level}")
            panel = None
            if settings.context_menu_panel_id is not None:
                panel = await self.deps.panel_repo.get(settings.context_menu_panel_id)
        except Exception as exc:
            error = await self._fail(ctx, exc)
            if error is exc:
                raise
            raise error from exc

        ticket = await self.open_ticket(ctx, panel, message.content)
        if ticket.channel_id is None:
            return ticket

        await self._follow_up(self._send_started_from(ctx, ticket, message), "started from message", ticket)
        if settings.context_menu_add_sender:
            await self._follow_up(self._add_message_sender(ctx, ticket, message), "add message sender", ticket)
            await self._follow_up(self._send_moved_notice(ctx, ticket, message), "moved notice", ticket)
            await self._follow_up(
                self.deps.ticket_member_repo.add(ticket.guild_id, ticket.id, message.author_id),
                "add ticket member",
                ticket,
            )
        return ticket

    async def _follow_up(self, step: Awaitable[Any], action: str, ticket: Ticket) -> None:
        """Run one post-open step; its failure is reported and does not stop the next one."""
        try:
            await step
        except Exception as exc:
            await self._report(exc, action, ticket)

    async def _send_started_from(self, ctx: CommandContext, ticket: Ticket, message: SourceMessage) -> None:
        assert ticket.channel_id is not None
        link = f"https://discord.com/channels/{ctx.guild_id}/{message.channel_id}/{message.id}"
        content = string_max(message.content, 2048).replace("`", "\\`")
        embed = make_embed(
            title=ctx.translate("generic.ticket"),
            description=ctx.translate(
                "commands.open.from",
                link=link,
                author=message.author_id,
                channel=message.channel_id,
                content=content,
            ),
            color=discord.Color.green(),
        )
        await self.deps.platform.send_message(ticket.channel_id, embed=embed)

    async def _add_message_sender(self, ctx: CommandContext, ticket: Ticket, message: SourceMessage) -> None:
        assert ticket.channel_id is not None
        if message.author_id == ticket.user_id:
            return
        platform = self.deps.platform
        channel = await platform.get_channel(ticket.channel_id)
        if channel.type in THREAD_CHANNEL_TYPES:
            LOGGER.debug("Ticket %s/%s is a thread; no overwrite for message author", ticket.guild_id, ticket.id)
            return
        if message.author_id in channel.overwrite_ids:
            return

        bundle = await self.deps.settings_repo.get_ticket_permissions(ctx.guild_id)
        grant = user_grant(message.author_id, bundle)
        await platform.edit_channel_permissions(
            channel.id,
            principal_id=grant.principal_id,
            principal_type=grant.principal_type,
            allow=grant.allow.value,
            deny=grant.deny.value,
        )

    async def _send_moved_notice(self, ctx: CommandContext, ticket: Ticket, message: SourceMessage) -> None:
        embed = make_embed(
            title=ctx.translate("generic.ticket"),
            description=ctx.translate("commands.open.from.moved", channel=ticket.channel_id),
            color=discord.Color.green(),
        )
        reference = discord.MessageReference(
            message_id=message.id,
            channel_id=message.channel_id,
            guild_id=ctx.guild_id,
            fail_if_not_exists=False,
        )
        await self.deps.platform.send_message(message.channel_id, embed=embed, reference=reference)

    async def set_default_category(self, ctx: CommandContext, channel_id: int) -> PlatformChannel:
        try:
            if await ctx.permission_level() < PermissionLevel.ADMIN:
                raise PermissionDeniedError("setting the ticket category requires admin")
            channel = await self.deps.platform.get_channel(channel_id)
            if channel.type != CHANNEL_TYPE_CATEGORY:
                raise ValidationError(f"channel {channel_id} is not a category")
            await self.deps.settings_repo.set_category(ctx.guild_id, channel.id)
        except ValidationError as exc:
            await ctx.reply(ReplyKind.ERROR, "generic.error", "setup.category.invalid")
            exc.replied = True
            raise
        except Exception as exc:
            error = await self._fail(ctx, exc)
            if error is exc:
                raise
            raise error from exc

        LOGGER.info("Default ticket category set. guild=%s category=%s", ctx.guild_id, channel.id)
        await ctx.reply(ReplyKind.SUCCESS, "generic.setup", "setup.category.complete", name=channel.name)
        return channel

    async def shutdown(self) -> None:
        """Give detached post-processing work a moment to finish."""
        tasks = pending_background_tasks()
        if tasks:
            await asyncio.wait(tasks, timeout=5)
