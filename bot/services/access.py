from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import discord

from database.models import Panel, TicketPermissions
from database.repositories import GuildSettingsRepository, PermissionRepository, SupportTeamRepository
from services.platform import PlatformClient
from utils.concurrency import join_all
from utils.constants import EVERYONE_DENY, OVERWRITE_TYPE_MEMBER, OVERWRITE_TYPE_ROLE, STANDARD_PERMISSIONS

LOGGER = logging.getLogger(__name__)


class TeamSource(Protocol):
    async def list_users(self) -> list[int]: ...
    async def list_roles(self) -> list[int]: ...


class DefaultTeamSource(TeamSource):
    """The guild's globally configured support users and roles."""

    def __init__(self, permission_repo: PermissionRepository, guild_id: int) -> None:
        self.permission_repo = permission_repo
        self.guild_id = guild_id

    async def list_users(self) -> list[int]:
        return await self.permission_repo.get_support_users(self.guild_id)

    async def list_roles(self) -> list[int]:
        return await self.permission_repo.get_support_roles(self.guild_id)


class PanelTeamSource(TeamSource):
    """Every support team attached to a panel."""

    def __init__(self, team_repo: SupportTeamRepository, panel_id: int) -> None:
        self.team_repo = team_repo
        self.panel_id = panel_id

    async def list_users(self) -> list[int]:
        return await self.team_repo.get_members_for_panel(self.panel_id)

    async def list_roles(self) -> list[int]:
        return await self.team_repo.get_roles_for_panel(self.panel_id)


@dataclass(slots=True)
class AllowedPrincipals:
    users: list[int] = field(default_factory=list)
    roles: list[int] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class AccessGrant:
    principal_id: int
    principal_type: int
    allow: discord.Permissions
    deny: discord.Permissions

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.principal_id),
            "type": self.principal_type,
            "allow": str(self.allow.value),
            "deny": str(self.deny.value),
        }


def ticket_permissions_bundle(settings: TicketPermissions) -> discord.Permissions:
    return discord.Permissions(
        view_channel=True,
        send_messages=True,
        read_message_history=True,
        attach_files=settings.attach_files,
        embed_links=settings.embed_links,
        add_reactions=settings.add_reactions,
    )


def user_grant(user_id: int, settings: TicketPermissions) -> AccessGrant:
    return AccessGrant(
        principal_id=user_id,
        principal_type=OVERWRITE_TYPE_MEMBER,
        allow=ticket_permissions_bundle(settings),
        deny=discord.Permissions.none(),
    )


class AccessResolver:
    def __init__(
        self,
        platform: PlatformClient,
        settings_repo: GuildSettingsRepository,
        permission_repo: PermissionRepository,
        team_repo: SupportTeamRepository,
    ) -> None:
        self.platform = platform
        self.settings_repo = settings_repo
        self.permission_repo = permission_repo
        self.team_repo = team_repo

    def sources_for(self, guild_id: int, panel: Panel | None) -> list[TeamSource]:
        sources: list[TeamSource] = []
        if panel is None or panel.with_default_team:
            sources.append(DefaultTeamSource(self.permission_repo, guild_id))
        if panel is not None:
            sources.append(PanelTeamSource(self.team_repo, panel.panel_id))
        return sources

    async def resolve(self, guild_id: int, self_id: int, panel: Panel | None) -> AllowedPrincipals:
        sources = self.sources_for(guild_id, panel)
        reads = []
        for source in sources:
            reads.append(source.list_users())
            reads.append(source.list_roles())
        results = await join_all(*reads)

        principals = AllowedPrincipals(users=[self_id])
        for index in range(0, len(results), 2):
            principals.users.extend(results[index])
            principals.roles.extend(results[index + 1])
        return principals

    async def build_overwrites(
        self,
        guild_id: int,
        opener_id: int,
        self_id: int,
        panel: Panel | None,
        extra_user_ids: tuple[int, ...] | list[int] = (),
    ) -> list[AccessGrant]:
        bundle, principals, can_manage_webhooks = await join_all(
            self.settings_repo.get_ticket_permissions(guild_id),
            self.resolve(guild_id, self_id, panel),
            self.platform.self_has_guild_permission(guild_id, "manage_webhooks"),
        )

        grants: list[AccessGrant] = []
        seen: set[tuple[int, int]] = set()

        def add(grant: AccessGrant) -> None:
            key = (grant.principal_type, grant.principal_id)
            if key in seen:
                return
            seen.add(key)
            grants.append(grant)

        add(
            AccessGrant(
                principal_id=guild_id,
                principal_type=OVERWRITE_TYPE_ROLE,
                allow=discord.Permissions.none(),
                deny=EVERYONE_DENY,
            )
        )
        for user_id in (opener_id, *extra_user_ids):
            add(user_grant(user_id, bundle))

        for user_id in principals.users:
            allow = discord.Permissions(STANDARD_PERMISSIONS.value)
            if user_id == self_id and can_manage_webhooks:
                allow.manage_webhooks = True
            add(AccessGrant(user_id, OVERWRITE_TYPE_MEMBER, allow, discord.Permissions.none()))

        for role_id in principals.roles:
            add(
                AccessGrant(
                    role_id,
                    OVERWRITE_TYPE_ROLE,
                    discord.Permissions(STANDARD_PERMISSIONS.value),
                    discord.Permissions.none(),
                )
            )

        LOGGER.debug("Built %s overwrites for guild %s", len(grants), guild_id)
        return grants
