from __future__ import annotations

import logging
from typing import Any

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."
    message_key: str = "generic.error_occurred"
    replied: bool = False

    def __init__(self, detail: str | None = None, **format_args: Any) -> None:
        super().__init__(detail or self.user_message)
        self.format_args = format_args


class PermissionDeniedError(BotError):
    user_message = "You do not have permission to run this action."
    message_key = "generic.no_permission"


class ValidationError(BotError):
    user_message = "The provided input is not valid."
    message_key = "generic.invalid_argument"


class AdmissionRejectedError(BotError):
    user_message = "You cannot open a ticket right now."


class TicketLimitReachedError(AdmissionRejectedError):
    user_message = "You reached the maximum open ticket limit."
    message_key = "commands.open.ticket_limit"

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"ticket limit reached ({limit})",
            limit=limit,
            tickets="ticket" if limit == 1 else "tickets",
        )
        self.limit = limit


class OpenRateLimitedError(AdmissionRejectedError):
    user_message = "Too many tickets are being opened in this server. Try again shortly."
    message_key = "open.ratelimited"


class AdmissionUnavailableError(AdmissionRejectedError):
    user_message = "Ticket limits could not be checked. Try again later."


class CapacityExceededError(BotError):
    user_message = "There is no room left for new tickets."
    message_key = "commands.open.too_many_tickets"


class GuildChannelLimitError(CapacityExceededError):
    user_message = "This server has reached the maximum number of channels."
    message_key = "commands.open.guild_channel_limit"


class CategoryFullError(CapacityExceededError):
    user_message = "There are too many open tickets in the ticket category."
    message_key = "commands.open.too_many_tickets"


class ExternalFailureError(BotError):
    user_message = "An error occurred while talking to Discord or the database."

    def __init__(self, detail: str | None = None, *, status: int | None = None) -> None:
        super().__init__(detail)
        self.status = status


class ExternalNotFoundError(ExternalFailureError):
    user_message = "The requested resource no longer exists."


async def send_error_response(interaction: discord.Interaction[commands.Bot], message: str) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if interaction.response.is_done():
        await interaction.followup.send(embed=embed, ephemeral=True)
    else:
        await interaction.response.send_message(embed=embed, ephemeral=True)


def _unwrap(error: Exception) -> Exception:
    original = getattr(error, "original", None)
    return original if isinstance(original, Exception) else error


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    cause = _unwrap(error)
    # Ticket workflow errors are replied to where they are raised.
    if getattr(cause, "replied", False):
        return

    message = "An unexpected slash-command error occurred."
    if isinstance(cause, app_commands.CheckFailure):
        message = "You are not authorized for this command."
    elif isinstance(cause, app_commands.CommandOnCooldown):
        message = f"Cooldown active. Retry in {cause.retry_after:.1f} seconds."
    elif isinstance(cause, BotError):
        message = cause.user_message

    LOGGER.exception(
        "Slash command failed. command=%s guild=%s user=%s",
        getattr(interaction.command, "qualified_name", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
        exc_info=error,
    )
    await send_error_response(interaction, message)
