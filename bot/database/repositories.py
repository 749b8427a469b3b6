from __future__ import annotations

from datetime import datetime
from typing import Any

from database.base import Database
from database.models import (
    GuildSettings,
    NamingScheme,
    Panel,
    PermissionLevel,
    Ticket,
    TicketPermissions,
)
from utils.constants import DEFAULT_THREAD_ARCHIVE_MINUTES


def _as_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _optional_id(value: Any) -> int | None:
    if value is None:
        return None
    value = int(value)
    return value or None


class GuildSettingsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure_guild(self, guild_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO guild_settings(guild_id)
            VALUES (?)
            ON CONFLICT(guild_id) DO NOTHING;
            """,
            [guild_id],
        )

    async def get(self, guild_id: int) -> GuildSettings:
        row = await self.db.fetchone("SELECT * FROM guild_settings WHERE guild_id = ?;", [guild_id])
        if not row:
            return GuildSettings(guild_id=guild_id)
        return GuildSettings(
            guild_id=guild_id,
            use_threads=bool(row["use_threads"]),
            thread_archive_duration=int(row["thread_archive_duration"] or DEFAULT_THREAD_ARCHIVE_MINUTES),
            overflow_enabled=bool(row["overflow_enabled"]),
            overflow_category_id=_optional_id(row["overflow_category_id"]),
            context_menu_permission_level=PermissionLevel(int(row["context_menu_permission_level"])),
            context_menu_panel_id=_optional_id(row["context_menu_panel_id"]),
            context_menu_add_sender=bool(row["context_menu_add_sender"]),
            welcome_message=row["welcome_message"],
        )

    async def save(self, settings: GuildSettings) -> None:
        await self.ensure_guild(settings.guild_id)
        await self.db.execute(
            """
            UPDATE guild_settings
            SET use_threads = ?, thread_archive_duration = ?, overflow_enabled = ?,
                overflow_category_id = ?, context_menu_permission_level = ?,
                context_menu_panel_id = ?, context_menu_add_sender = ?, welcome_message = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [
                settings.use_threads,
                settings.thread_archive_duration,
                settings.overflow_enabled,
                settings.overflow_category_id,
                int(settings.context_menu_permission_level),
                settings.context_menu_panel_id,
                settings.context_menu_add_sender,
                settings.welcome_message,
                settings.guild_id,
            ],
        )

    async def get_ticket_limit(self, guild_id: int, default: int) -> int:
        value = await self.db.fetchval(
            "SELECT ticket_limit FROM guild_settings WHERE guild_id = ?;",
            [guild_id],
        )
        return int(value) if value is not None else default

    async def set_ticket_limit(self, guild_id: int, limit: int) -> None:
        await self.ensure_guild(guild_id)
        await self.db.execute(
            "UPDATE guild_settings SET ticket_limit = ?, updated_at = CURRENT_TIMESTAMP WHERE guild_id = ?;",
            [limit, guild_id],
        )

    async def get_category(self, guild_id: int) -> int:
        value = await self.db.fetchval(
            "SELECT category_id FROM guild_settings WHERE guild_id = ?;",
            [guild_id],
            default=0,
        )
        return int(value)

    async def set_category(self, guild_id: int, category_id: int) -> None:
        await self.ensure_guild(guild_id)
        await self.db.execute(
            "UPDATE guild_settings SET category_id = ?, updated_at = CURRENT_TIMESTAMP WHERE guild_id = ?;",
            [category_id, guild_id],
        )

    async def delete_category(self, guild_id: int) -> None:
        await self.db.execute(
            "UPDATE guild_settings SET category_id = NULL, updated_at = CURRENT_TIMESTAMP WHERE guild_id = ?;",
            [guild_id],
        )

    async def get_naming_scheme(self, guild_id: int) -> NamingScheme:
        value = await self.db.fetchval(
            "SELECT naming_scheme FROM guild_settings WHERE guild_id = ?;",
            [guild_id],
            default=NamingScheme.ID.value,
        )
        try:
            return NamingScheme(str(value))
        except ValueError:
            return NamingScheme.ID

    async def set_naming_scheme(self, guild_id: int, scheme: NamingScheme) -> None:
        await self.ensure_guild(guild_id)
        await self.db.execute(
            "UPDATE guild_settings SET naming_scheme = ?, updated_at = CURRENT_TIMESTAMP WHERE guild_id = ?;",
            [scheme.value, guild_id],
        )

    async def set_overflow(self, guild_id: int, enabled: bool, category_id: int | None) -> None:
        await self.ensure_guild(guild_id)
        await self.db.execute(
            """
            UPDATE guild_settings
            SET overflow_enabled = ?, overflow_category_id = ?, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [enabled, category_id, guild_id],
        )

    async def get_ticket_permissions(self, guild_id: int) -> TicketPermissions:
        row = await self.db.fetchone(
            "SELECT attach_files, embed_links, add_reactions FROM ticket_permissions WHERE guild_id = ?;",
            [guild_id],
        )
        if not row:
            return TicketPermissions()
        return TicketPermissions(
            attach_files=bool(row["attach_files"]),
            embed_links=bool(row["embed_links"]),
            add_reactions=bool(row["add_reactions"]),
        )

    async def set_ticket_permissions(self, guild_id: int, permissions: TicketPermissions) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_permissions(guild_id, attach_files, embed_links, add_reactions)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                attach_files = excluded.attach_files,
                embed_links = excluded.embed_links,
                add_reactions = excluded.add_reactions;
            """,
            [guild_id, permissions.attach_files, permissions.embed_links, permissions.add_reactions],
        )


class TicketRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def allocate(self, guild_id: int, user_id: int, panel_id: int | None = None) -> Ticket:
        """Reserve the next ticket id for the guild and insert an open record without a channel."""
        await self.db.execute(
            "INSERT INTO guild_settings(guild_id) VALUES (?) ON CONFLICT(guild_id) DO NOTHING;",
            [guild_id],
        )
        counter = await self.db.execute_returning(
            """
            UPDATE guild_settings
            SET ticket_counter = ticket_counter + 1
            WHERE guild_id = ?
            RETURNING ticket_counter;
            """,
            [guild_id],
        )
        if not counter:
            raise RuntimeError(f"Could not allocate a ticket id for guild {guild_id}")
        ticket_id = int(counter["ticket_counter"])

        row = await self.db.execute_returning(
            """
            INSERT INTO tickets(guild_id, id, user_id, channel_id, open, panel_id)
            VALUES (?, ?, ?, NULL, TRUE, ?)
            RETURNING *;
            """,
            [guild_id, ticket_id, user_id, panel_id],
        )
        assert row is not None
        return self._row_to_ticket(row)

    async def get(self, guild_id: int, ticket_id: int) -> Ticket | None:
        row = await self.db.fetchone(
            "SELECT * FROM tickets WHERE guild_id = ? AND id = ?;",
            [guild_id, ticket_id],
        )
        if not row:
            return None
        return self._row_to_ticket(row)

    async def get_by_channel(self, channel_id: int) -> Ticket | None:
        row = await self.db.fetchone("SELECT * FROM tickets WHERE channel_id = ?;", [channel_id])
        if not row:
            return None
        return self._row_to_ticket(row)

    async def count_open_by_user(self, guild_id: int, user_id: int) -> int:
        value = await self.db.fetchval(
            """
            SELECT COUNT(*) AS open_count FROM tickets
            WHERE guild_id = ? AND user_id = ? AND open = TRUE;
            """,
            [guild_id, user_id],
            default=0,
        )
        return int(value)

    async def list_open(self, guild_id: int, limit: int = 100) -> list[Ticket]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM tickets
            WHERE guild_id = ? AND open = TRUE
            ORDER BY id DESC
            LIMIT ?;
            """,
            [guild_id, limit],
        )
        return [self._row_to_ticket(row) for row in rows]

    async def set_properties(
        self,
        guild_id: int,
        ticket_id: int,
        channel_id: int,
        welcome_message_id: int | None,
        panel_id: int | None,
    ) -> None:
        await self.db.execute(
            """
            UPDATE tickets
            SET channel_id = ?, welcome_message_id = ?, panel_id = ?
            WHERE guild_id = ? AND id = ?;
            """,
            [channel_id, welcome_message_id, panel_id, guild_id, ticket_id],
        )

    async def close(self, guild_id: int, ticket_id: int) -> None:
        await self.db.execute(
            """
            UPDATE tickets
            SET open = FALSE, closed_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ?;
            """,
            [guild_id, ticket_id],
        )

    def _row_to_ticket(self, row: dict[str, Any]) -> Ticket:
        return Ticket(
            guild_id=int(row["guild_id"]),
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            channel_id=_optional_id(row["channel_id"]),
            open=bool(row["open"]),
            opened_at=_as_datetime(row["opened_at"]),
            panel_id=_optional_id(row["panel_id"]),
            welcome_message_id=_optional_id(row["welcome_message_id"]),
        )


class PanelRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(self, panel: Panel) -> None:
        await self.db.execute(
            """
            INSERT INTO panels(
                panel_id, guild_id, title, target_category, naming_scheme,
                with_default_team, mention_user
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(panel_id) DO UPDATE SET
                title = excluded.title,
                target_category = excluded.target_category,
                naming_scheme = excluded.naming_scheme,
                with_default_team = excluded.with_default_team,
                mention_user = excluded.mention_user;
            """,
            [
                panel.panel_id,
                panel.guild_id,
                panel.title,
                panel.target_category,
                panel.naming_scheme,
                panel.with_default_team,
                panel.mention_user,
            ],
        )
        for team_id in panel.team_ids:
            await self.db.execute(
                "INSERT INTO panel_teams(panel_id, team_id) VALUES (?, ?) ON CONFLICT DO NOTHING;",
                [panel.panel_id, team_id],
            )

    async def get(self, panel_id: int) -> Panel | None:
        row = await self.db.fetchone("SELECT * FROM panels WHERE panel_id = ?;", [panel_id])
        if not row:
            return None
        team_rows = await self.db.fetchall(
            "SELECT team_id FROM panel_teams WHERE panel_id = ? ORDER BY team_id;",
            [panel_id],
        )
        return Panel(
            panel_id=int(row["panel_id"]),
            guild_id=int(row["guild_id"]),
            title=row["title"] or "",
            target_category=int(row["target_category"] or 0),
            naming_scheme=row["naming_scheme"],
            with_default_team=bool(row["with_default_team"]),
            mention_user=bool(row["mention_user"]),
            team_ids=[int(team["team_id"]) for team in team_rows],
        )

    async def add_role_mention(self, panel_id: int, role_id: int) -> None:
        await self.db.execute(
            "INSERT INTO panel_role_mentions(panel_id, role_id) VALUES (?, ?) ON CONFLICT DO NOTHING;",
            [panel_id, role_id],
        )

    async def get_role_mentions(self, panel_id: int) -> list[int]:
        rows = await self.db.fetchall(
            "SELECT role_id FROM panel_role_mentions WHERE panel_id = ? ORDER BY role_id;",
            [panel_id],
        )
        return [int(row["role_id"]) for row in rows]


class SupportTeamRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, team_id: int, guild_id: int, name: str) -> None:
        await self.db.execute(
            """
            INSERT INTO support_teams(id, guild_id, name)
            VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name;
            """,
            [team_id, guild_id, name],
        )

    async def add_member(self, team_id: int, user_id: int) -> None:
        await self.db.execute(
            "INSERT INTO support_team_members(team_id, user_id) VALUES (?, ?) ON CONFLICT DO NOTHING;",
            [team_id, user_id],
        )

    async def add_role(self, team_id: int, role_id: int) -> None:
        await self.db.execute(
            "INSERT INTO support_team_roles(team_id, role_id) VALUES (?, ?) ON CONFLICT DO NOTHING;",
            [team_id, role_id],
        )

    async def get_members_for_panel(self, panel_id: int) -> list[int]:
        rows = await self.db.fetchall(
            """
            SELECT members.user_id FROM panel_teams
            INNER JOIN support_team_members AS members ON members.team_id = panel_teams.team_id
            WHERE panel_teams.panel_id = ?
            ORDER BY panel_teams.team_id, members.user_id;
            """,
            [panel_id],
        )
        return [int(row["user_id"]) for row in rows]

    async def get_roles_for_panel(self, panel_id: int) -> list[int]:
        rows = await self.db.fetchall(
            """
            SELECT roles.role_id FROM panel_teams
            INNER JOIN support_team_roles AS roles ON roles.team_id = panel_teams.team_id
            WHERE panel_teams.panel_id = ?
            ORDER BY panel_teams.team_id, roles.role_id;
            """,
            [panel_id],
        )
        return [int(row["role_id"]) for row in rows]


class PermissionRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def set_user(self, guild_id: int, user_id: int, level: PermissionLevel) -> None:
        await self.db.execute(
            """
            INSERT INTO permissions(guild_id, user_id, is_support, is_admin)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                is_support = excluded.is_support,
                is_admin = excluded.is_admin;
            """,
            [guild_id, user_id, level >= PermissionLevel.SUPPORT, level >= PermissionLevel.ADMIN],
        )

    async def set_role(self, guild_id: int, role_id: int, level: PermissionLevel) -> None:
        await self.db.execute(
            """
            INSERT INTO role_permissions(guild_id, role_id, is_support, is_admin)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, role_id) DO UPDATE SET
                is_support = excluded.is_support,
                is_admin = excluded.is_admin;
            """,
            [guild_id, role_id, level >= PermissionLevel.SUPPORT, level >= PermissionLevel.ADMIN],
        )

    async def get_support_users(self, guild_id: int) -> list[int]:
        rows = await self.db.fetchall(
            """
            SELECT user_id FROM permissions
            WHERE guild_id = ? AND (is_support = TRUE OR is_admin = TRUE)
            ORDER BY user_id;
            """,
            [guild_id],
        )
        return [int(row["user_id"]) for row in rows]

    async def get_support_roles(self, guild_id: int) -> list[int]:
        rows = await self.db.fetchall(
            """
            SELECT role_id FROM role_permissions
            WHERE guild_id = ? AND (is_support = TRUE OR is_admin = TRUE)
            ORDER BY role_id;
            """,
            [guild_id],
        )
        return [int(row["role_id"]) for row in rows]

    async def get_level(self, guild_id: int, user_id: int, role_ids: list[int]) -> PermissionLevel:
        level = PermissionLevel.EVERYONE
        row = await self.db.fetchone(
            "SELECT is_support, is_admin FROM permissions WHERE guild_id = ? AND user_id = ?;",
            [guild_id, user_id],
        )
        if row:
            level = max(level, self._level_from_row(row))
        if role_ids:
            placeholders = ", ".join("?" for _ in role_ids)
            rows = await self.db.fetchall(
                f"""
                SELECT is_support, is_admin FROM role_permissions
                WHERE guild_id = ? AND role_id IN ({placeholders});
                """,
                [guild_id, *role_ids],
            )
            for role_row in rows:
                level = max(level, self._level_from_row(role_row))
        return level

    @staticmethod
    def _level_from_row(row: dict[str, Any]) -> PermissionLevel:
        if row["is_admin"]:
            return PermissionLevel.ADMIN
        if row["is_support"]:
            return PermissionLevel.SUPPORT
        return PermissionLevel.EVERYONE


class WebhookRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, guild_id: int, ticket_id: int, webhook_id: int, token: str) -> None:
        await self.db.execute(
            """
            INSERT INTO webhooks(guild_id, ticket_id, webhook_id, token)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, ticket_id) DO UPDATE SET
                webhook_id = excluded.webhook_id,
                token = excluded.token;
            """,
            [guild_id, ticket_id, webhook_id, token],
        )

    async def get(self, guild_id: int, ticket_id: int) -> tuple[int, str] | None:
        row = await self.db.fetchone(
            "SELECT webhook_id, token FROM webhooks WHERE guild_id = ? AND ticket_id = ?;",
            [guild_id, ticket_id],
        )
        if not row:
            return None
        return int(row["webhook_id"]), str(row["token"])


class TicketMemberRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, guild_id: int, ticket_id: int, user_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO ticket_members(guild_id, ticket_id, user_id)
            VALUES (?, ?, ?)
            ON CONFLICT DO NOTHING;
            """,
            [guild_id, ticket_id, user_id],
        )

    async def list_members(self, guild_id: int, ticket_id: int) -> list[int]:
        rows = await self.db.fetchall(
            "SELECT user_id FROM ticket_members WHERE guild_id = ? AND ticket_id = ? ORDER BY user_id;",
            [guild_id, ticket_id],
        )
        return [int(row["user_id"]) for row in rows]
