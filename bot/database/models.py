from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum

from utils.constants import DEFAULT_THREAD_ARCHIVE_MINUTES


class PermissionLevel(IntEnum):
    EVERYONE = 0
    SUPPORT = 1
    ADMIN = 2


class NamingScheme(str, Enum):
    ID = "id"
    USERNAME = "username"


@dataclass(slots=True)
class Ticket:
    guild_id: int
    id: int
    user_id: int
    channel_id: int | None = None
    open: bool = True
    opened_at: datetime | None = None
    panel_id: int | None = None
    welcome_message_id: int | None = None


@dataclass(slots=True)
class Panel:
    panel_id: int
    guild_id: int
    title: str = ""
    target_category: int = 0
    naming_scheme: str | None = None
    with_default_team: bool = True
    mention_user: bool = False
    team_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class GuildSettings:
    guild_id: int
    use_threads: bool = False
    thread_archive_duration: int = DEFAULT_THREAD_ARCHIVE_MINUTES
    overflow_enabled: bool = False
    overflow_category_id: int | None = None
    context_menu_permission_level: PermissionLevel = PermissionLevel.EVERYONE
    context_menu_panel_id: int | None = None
    context_menu_add_sender: bool = True
    welcome_message: str | None = None


@dataclass(slots=True)
class TicketPermissions:
    attach_files: bool = True
    embed_links: bool = True
    add_reactions: bool = True
