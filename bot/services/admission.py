from __future__ import annotations

import logging

from core.errors import AdmissionUnavailableError, OpenRateLimitedError, TicketLimitReachedError
from database.repositories import GuildSettingsRepository, TicketRepository
from utils.concurrency import join_all
from utils.rate_limit import TicketOpenRateLimiter

LOGGER = logging.getLogger(__name__)


class AdmissionGate:
    """Per-user open-ticket limit followed by the guild-wide open-rate token."""

    def __init__(
        self,
        settings_repo: GuildSettingsRepository,
        ticket_repo: TicketRepository,
        rate_limiter: TicketOpenRateLimiter,
        default_ticket_limit: int,
    ) -> None:
        self.settings_repo = settings_repo
        self.ticket_repo = ticket_repo
        self.rate_limiter = rate_limiter
        self.default_ticket_limit = default_ticket_limit

    async def admit(self, guild_id: int, user_id: int, is_staff: bool) -> None:
        if not is_staff:
            await self._check_ticket_limit(guild_id, user_id)

        # Taken only after the limit check so one user at their limit cannot drain the guild's tokens.
        try:
            allowed = await self.rate_limiter.take_token(guild_id)
        except Exception as exc:
            LOGGER.exception("Rate limit check failed. guild=%s", guild_id)
            raise AdmissionUnavailableError("rate limit check failed") from exc
        if not allowed:
            LOGGER.info("Ticket open rate limited. guild=%s user=%s", guild_id, user_id)
            raise OpenRateLimitedError()

    async def _check_ticket_limit(self, guild_id: int, user_id: int) -> None:
        try:
            limit, open_count = await join_all(
                self.settings_repo.get_ticket_limit(guild_id, self.default_ticket_limit),
                self.ticket_repo.count_open_by_user(guild_id, user_id),
            )
        except Exception as exc:
            LOGGER.exception("Ticket limit lookup failed. guild=%s user=%s", guild_id, user_id)
            raise AdmissionUnavailableError("ticket limit lookup failed") from exc

        if open_count >= limit:
            LOGGER.info(
                "Ticket limit reached. guild=%s user=%s open=%s limit=%s",
                guild_id,
                user_id,
                open_count,
                limit,
            )
            raise TicketLimitReachedError(limit)
