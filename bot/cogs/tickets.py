from __future__ import annotations

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from core.bot import TicketBot
from core.context import InteractionContext
from services.ticket_service import SourceMessage
from utils.constants import SUBJECT_MAX_LENGTH

LOGGER = logging.getLogger(__name__)


class TicketsCog(commands.Cog):
    setup_group = app_commands.Group(
        name="setup",
        description="Configure how tickets are created.",
        guild_only=True,
        default_permissions=discord.Permissions(administrator=True),
    )

    def __init__(self, bot: TicketBot) -> None:
        self.bot = bot
        self.start_ticket_menu = app_commands.ContextMenu(name="Start Ticket", callback=self.start_ticket)
        self.start_ticket_menu.guild_only = True

    async def cog_load(self) -> None:
        self.bot.tree.add_command(self.start_ticket_menu)

    async def cog_unload(self) -> None:
        self.bot.tree.remove_command(self.start_ticket_menu.name, type=self.start_ticket_menu.type)

    @app_commands.command(name="open", description="Open a new support ticket.")
    @app_commands.guild_only()
    @app_commands.describe(subject="What the ticket is about")
    async def open_command(
        self,
        interaction: discord.Interaction[TicketBot],
        subject: Optional[app_commands.Range[str, 1, SUBJECT_MAX_LENGTH]] = None,
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        ctx = InteractionContext(self.bot, interaction)
        ticket = await self.bot.ticket_service.open_ticket(ctx, None, subject)
        LOGGER.info("Ticket %s opened in guild %s by %s", ticket.id, ticket.guild_id, ticket.user_id)

    @setup_group.command(name="category", description="Set the category new ticket channels are created in.")
    @app_commands.describe(category="Channel category for new tickets")
    async def setup_category(
        self, interaction: discord.Interaction[TicketBot], category: discord.CategoryChannel
    ) -> None:
        await interaction.response.defer(ephemeral=True)
        ctx = InteractionContext(self.bot, interaction)
        await self.bot.ticket_service.set_default_category(ctx, category.id)

    async def start_ticket(self, interaction: discord.Interaction[TicketBot], message: discord.Message) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        ctx = InteractionContext(self.bot, interaction)
        source = SourceMessage(
            id=message.id,
            channel_id=message.channel.id,
            author_id=message.author.id,
            content=message.content,
        )
        ticket = await self.bot.ticket_service.start_from_message(ctx, source)
        LOGGER.info(
            "Ticket %s started from message %s in guild %s", ticket.id, message.id, ticket.guild_id
        )


async def setup(bot: TicketBot) -> None:
    await bot.add_cog(TicketsCog(bot))
