from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from core.errors import (
    CapacityExceededError,
    CategoryFullError,
    ExternalNotFoundError,
    GuildChannelLimitError,
)
from database.models import GuildSettings, Panel
from database.repositories import GuildSettingsRepository
from services.platform import PlatformChannel, PlatformClient
from utils.constants import (
    CATEGORY_CHANNEL_LIMIT,
    GUILD_CHANNEL_LIMIT,
    THREAD_CHANNEL_TYPES,
    THREAD_MIN_PREMIUM_TIER,
)

LOGGER = logging.getLogger(__name__)


class PlacementCorrection(Enum):
    CLEAR_DEFAULT_CATEGORY = "clear_default_category"
    DISABLE_OVERFLOW = "disable_overflow"


@dataclass(slots=True, frozen=True)
class PlacementDecision:
    use_category: bool
    category_id: int
    use_thread: bool

    @property
    def parent_id(self) -> int | None:
        return self.category_id if self.use_category else None


@dataclass(slots=True)
class PlacementResult:
    decision: PlacementDecision | None
    rejection: CapacityExceededError | None = None
    corrections: list[PlacementCorrection] = field(default_factory=list)


THREAD_PLACEMENT = PlacementDecision(use_category=False, category_id=0, use_thread=True)
ROOT_PLACEMENT = PlacementDecision(use_category=False, category_id=0, use_thread=False)


def count_real_channels(channels: list[PlatformChannel], parent_id: int = 0) -> int:
    """Count non-thread channels, optionally only the children of one category."""
    return sum(
        1
        for channel in channels
        if channel.type not in THREAD_CHANNEL_TYPES and (parent_id == 0 or channel.parent_id == parent_id)
    )


class PlacementPlanner:
    def __init__(
        self,
        platform: PlatformClient,
        settings_repo: GuildSettingsRepository,
        guild_channel_limit: int = GUILD_CHANNEL_LIMIT,
        category_channel_limit: int = CATEGORY_CHANNEL_LIMIT,
    ) -> None:
        self.platform = platform
        self.settings_repo = settings_repo
        self.guild_channel_limit = guild_channel_limit
        self.category_channel_limit = category_channel_limit

    async def plan(
        self,
        guild_id: int,
        panel: Panel | None,
        settings: GuildSettings,
        corrections: list[PlacementCorrection] | None = None,
    ) -> PlacementResult:
        """Choose where the ticket goes.

        Corrections are appended to ``corrections`` as soon as they are found, so the caller can
        still apply them when a later read raises.
        """
        if corrections is None:
            corrections = []
        from_panel = panel is not None and panel.target_category != 0
        if from_panel:
            category_id = panel.target_category
        else:
            category_id = await self.settings_repo.get_category(guild_id)

        if category_id and not await self._category_exists(category_id):
            LOGGER.info("Ticket category %s no longer exists. guild=%s panel=%s", category_id, guild_id, from_panel)
            if not from_panel:
                corrections.append(PlacementCorrection.CLEAR_DEFAULT_CATEGORY)
            category_id = 0

        channels = await self.platform.list_guild_channels(guild_id)
        if count_real_channels(channels) >= self.guild_channel_limit:
            return PlacementResult(decision=None, rejection=GuildChannelLimitError(), corrections=corrections)

        if settings.use_threads:
            premium_tier = await self.platform.guild_premium_tier(guild_id)
            if premium_tier >= THREAD_MIN_PREMIUM_TIER:
                # Threads do not occupy category slots.
                return PlacementResult(decision=THREAD_PLACEMENT, corrections=corrections)
            LOGGER.debug("Guild %s uses threads but premium tier is %s; using channels", guild_id, premium_tier)

        if not category_id:
            return PlacementResult(decision=ROOT_PLACEMENT, corrections=corrections)

        if count_real_channels(channels, category_id) < self.category_channel_limit:
            decision = PlacementDecision(use_category=True, category_id=category_id, use_thread=False)
            return PlacementResult(decision=decision, corrections=corrections)

        return await self._plan_overflow(guild_id, settings, channels, corrections)

    async def _plan_overflow(
        self,
        guild_id: int,
        settings: GuildSettings,
        channels: list[PlatformChannel],
        corrections: list[PlacementCorrection],
    ) -> PlacementResult:
        if not settings.overflow_enabled:
            return PlacementResult(decision=None, rejection=CategoryFullError(), corrections=corrections)

        overflow_id = settings.overflow_category_id
        if overflow_id is None:
            # Overflow without a category means the guild root.
            return PlacementResult(decision=ROOT_PLACEMENT, corrections=corrections)

        if not await self._category_exists(overflow_id):
            LOGGER.info("Overflow category %s no longer exists. guild=%s", overflow_id, guild_id)
            corrections.append(PlacementCorrection.DISABLE_OVERFLOW)
            return PlacementResult(decision=None, rejection=CategoryFullError(), corrections=corrections)

        if count_real_channels(channels, overflow_id) >= self.category_channel_limit:
            return PlacementResult(decision=None, rejection=CategoryFullError(), corrections=corrections)

        decision = PlacementDecision(use_category=True, category_id=overflow_id, use_thread=False)
        return PlacementResult(decision=decision, corrections=corrections)

    async def _category_exists(self, category_id: int) -> bool:
        try:
            await self.platform.get_channel(category_id)
        except ExternalNotFoundError:
            return False
        return True

    async def apply_corrections(self, guild_id: int, corrections: list[PlacementCorrection]) -> None:
        for correction in corrections:
            if correction is PlacementCorrection.CLEAR_DEFAULT_CATEGORY:
                try:
                    await self.settings_repo.delete_category(guild_id)
                except Exception:
                    LOGGER.exception("Failed to clear stale default category. guild=%s", guild_id)
                else:
                    LOGGER.info("Cleared stale default ticket category. guild=%s", guild_id)
            elif correction is PlacementCorrection.DISABLE_OVERFLOW:
                await self.settings_repo.set_overflow(guild_id, False, None)
                LOGGER.info("Disabled overflow after its category was deleted. guild=%s", guild_id)
