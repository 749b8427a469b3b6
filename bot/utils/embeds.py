from __future__ import annotations

from datetime import UTC, datetime

import discord

from utils.constants import EMBED_FIELD_VALUE_MAX_LENGTH


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def welcome_embed(subject: str, message: str, form_data: dict[str, str] | None = None) -> discord.Embed:
    embed = make_embed(title=subject, description=message, color=discord.Color.green())
    for label, answer in (form_data or {}).items():
        if not answer:
            continue
        embed.add_field(name=label[:256], value=answer[:EMBED_FIELD_VALUE_MAX_LENGTH], inline=False)
    return embed


def string_max(value: str, limit: int, suffix: str = "...") -> str:
    if len(value) <= limit:
        return value
    return value[: limit - len(suffix)] + suffix
