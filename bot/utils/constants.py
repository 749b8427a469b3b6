from __future__ import annotations

import discord

# Discord platform ceilings.
GUILD_CHANNEL_LIMIT = 500
CATEGORY_CHANNEL_LIMIT = 50
CHANNEL_NAME_MAX_LENGTH = 100
MESSAGE_CONTENT_MAX_LENGTH = 2000
SUBJECT_MAX_LENGTH = 256
EMBED_FIELD_VALUE_MAX_LENGTH = 1024

THREAD_MIN_PREMIUM_TIER = 2
DEFAULT_THREAD_ARCHIVE_MINUTES = 10080

CHANNEL_TYPE_TEXT = 0
CHANNEL_TYPE_CATEGORY = 4
CHANNEL_TYPE_NEWS_THREAD = 10
CHANNEL_TYPE_PUBLIC_THREAD = 11
CHANNEL_TYPE_PRIVATE_THREAD = 12
THREAD_CHANNEL_TYPES = frozenset(
    {CHANNEL_TYPE_NEWS_THREAD, CHANNEL_TYPE_PUBLIC_THREAD, CHANNEL_TYPE_PRIVATE_THREAD}
)

OVERWRITE_TYPE_ROLE = 0
OVERWRITE_TYPE_MEMBER = 1

NO_SUBJECT = "No subject given"
WEBHOOK_FALLBACK_NAME = "Tickets"

STANDARD_PERMISSIONS = discord.Permissions(
    view_channel=True,
    send_messages=True,
    add_reactions=True,
    attach_files=True,
    read_message_history=True,
    embed_links=True,
)

EVERYONE_DENY = discord.Permissions(view_channel=True)
