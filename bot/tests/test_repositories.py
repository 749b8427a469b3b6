from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from database.base import Database
from database.migrations.runner import run_migrations
from database.models import NamingScheme, Panel, PermissionLevel, TicketPermissions
from database.repositories import (
    GuildSettingsRepository,
    PanelRepository,
    PermissionRepository,
    SupportTeamRepository,
    TicketMemberRepository,
    TicketRepository,
    WebhookRepository,
)

GUILD_ID = 1000


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(f"sqlite:///{tmp_path / 'tickets.db'}")
    await database.connect()
    await run_migrations(database)
    yield database
    await database.close()


@pytest.mark.asyncio
async def test_migrations_are_applied_once(db: Database) -> None:
    assert await run_migrations(db) == []


@pytest.mark.asyncio
async def test_ticket_ids_are_allocated_per_guild(db: Database) -> None:
    repo = TicketRepository(db)

    first = await repo.allocate(GUILD_ID, 10)
    second = await repo.allocate(GUILD_ID, 11, panel_id=7)
    other_guild = await repo.allocate(2000, 10)

    assert (first.id, second.id, other_guild.id) == (1, 2, 1)
    assert first.channel_id is None
    assert first.open is True
    assert first.opened_at is not None
    assert second.panel_id == 7


@pytest.mark.asyncio
async def test_open_count_and_close(db: Database) -> None:
    repo = TicketRepository(db)
    ticket = await repo.allocate(GUILD_ID, 10)
    await repo.allocate(GUILD_ID, 10)
    await repo.allocate(GUILD_ID, 11)

    assert await repo.count_open_by_user(GUILD_ID, 10) == 2

    await repo.close(GUILD_ID, ticket.id)

    assert await repo.count_open_by_user(GUILD_ID, 10) == 1
    closed = await repo.get(GUILD_ID, ticket.id)
    assert closed is not None
    assert closed.open is False
    assert [t.id for t in await repo.list_open(GUILD_ID)] == [3, 2]


@pytest.mark.asyncio
async def test_set_properties_links_channel(db: Database) -> None:
    repo = TicketRepository(db)
    ticket = await repo.allocate(GUILD_ID, 10)

    await repo.set_properties(GUILD_ID, ticket.id, 900, 777, None)

    stored = await repo.get_by_channel(900)
    assert stored is not None
    assert stored.id == ticket.id
    assert stored.welcome_message_id == 777
    assert stored.panel_id is None


@pytest.mark.asyncio
async def test_guild_settings_defaults_and_category(db: Database) -> None:
    repo = GuildSettingsRepository(db)

    settings = await repo.get(GUILD_ID)
    assert settings.use_threads is False
    assert settings.context_menu_permission_level is PermissionLevel.EVERYONE
    assert await repo.get_category(GUILD_ID) == 0
    assert await repo.get_ticket_limit(GUILD_ID, 5) == 5
    assert await repo.get_naming_scheme(GUILD_ID) is NamingScheme.ID

    await repo.set_category(GUILD_ID, 2000)
    assert await repo.get_category(GUILD_ID) == 2000

    await repo.delete_category(GUILD_ID)
    assert await repo.get_category(GUILD_ID) == 0

    await repo.set_ticket_limit(GUILD_ID, 2)
    await repo.set_naming_scheme(GUILD_ID, NamingScheme.USERNAME)
    assert await repo.get_ticket_limit(GUILD_ID, 5) == 2
    assert await repo.get_naming_scheme(GUILD_ID) is NamingScheme.USERNAME


@pytest.mark.asyncio
async def test_guild_settings_save_and_overflow(db: Database) -> None:
    repo = GuildSettingsRepository(db)
    await repo.ensure_guild(GUILD_ID)
    settings = await repo.get(GUILD_ID)
    settings.use_threads = True
    settings.overflow_enabled = True
    settings.overflow_category_id = 3000
    settings.context_menu_permission_level = PermissionLevel.SUPPORT
    await repo.save(settings)

    stored = await repo.get(GUILD_ID)
    assert stored.use_threads is True
    assert stored.overflow_category_id == 3000
    assert stored.context_menu_permission_level is PermissionLevel.SUPPORT

    await repo.set_overflow(GUILD_ID, False, None)
    stored = await repo.get(GUILD_ID)
    assert stored.overflow_enabled is False
    assert stored.overflow_category_id is None


@pytest.mark.asyncio
async def test_ticket_permissions_round_trip(db: Database) -> None:
    repo = GuildSettingsRepository(db)

    assert await repo.get_ticket_permissions(GUILD_ID) == TicketPermissions()
    await repo.set_ticket_permissions(GUILD_ID, TicketPermissions(attach_files=False))
    assert (await repo.get_ticket_permissions(GUILD_ID)).attach_files is False


@pytest.mark.asyncio
async def test_permission_levels(db: Database) -> None:
    repo = PermissionRepository(db)
    await repo.set_user(GUILD_ID, 20, PermissionLevel.SUPPORT)
    await repo.set_user(GUILD_ID, 21, PermissionLevel.EVERYONE)
    await repo.set_role(GUILD_ID, 500, PermissionLevel.ADMIN)

    assert await repo.get_support_users(GUILD_ID) == [20]
    assert await repo.get_support_roles(GUILD_ID) == [500]
    assert await repo.get_level(GUILD_ID, 20, []) is PermissionLevel.SUPPORT
    assert await repo.get_level(GUILD_ID, 20, [500]) is PermissionLevel.ADMIN
    assert await repo.get_level(GUILD_ID, 99, [501]) is PermissionLevel.EVERYONE


@pytest.mark.asyncio
async def test_panel_teams_and_mentions(db: Database) -> None:
    panels = PanelRepository(db)
    teams = SupportTeamRepository(db)
    await teams.create(1, GUILD_ID, "Billing")
    await teams.add_member(1, 30)
    await teams.add_role(1, 600)
    await teams.create(2, GUILD_ID, "Other")
    await teams.add_member(2, 31)
    await panels.upsert(Panel(panel_id=7, guild_id=GUILD_ID, title="Billing", team_ids=[1]))
    await panels.add_role_mention(7, 600)

    panel = await panels.get(7)
    assert panel is not None
    assert panel.title == "Billing"
    assert panel.team_ids == [1]
    assert await teams.get_members_for_panel(7) == [30]
    assert await teams.get_roles_for_panel(7) == [600]
    assert await panels.get_role_mentions(7) == [600]
    assert await panels.get(8) is None


@pytest.mark.asyncio
async def test_webhooks_and_ticket_members(db: Database) -> None:
    webhooks = WebhookRepository(db)
    members = TicketMemberRepository(db)

    await webhooks.create(GUILD_ID, 1, 55, "token")
    await members.add(GUILD_ID, 1, 40)
    await members.add(GUILD_ID, 1, 40)

    assert await webhooks.get(GUILD_ID, 1) == (55, "token")
    assert await webhooks.get(GUILD_ID, 2) is None
    assert await members.list_members(GUILD_ID, 1) == [40]
