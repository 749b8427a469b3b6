from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import AdmissionUnavailableError, OpenRateLimitedError, TicketLimitReachedError
from services.admission import AdmissionGate


def _gate(limit: int, open_count: int, token: bool = True) -> AdmissionGate:
    settings_repo = MagicMock()
    settings_repo.get_ticket_limit = AsyncMock(return_value=limit)
    ticket_repo = MagicMock()
    ticket_repo.count_open_by_user = AsyncMock(return_value=open_count)
    rate_limiter = MagicMock()
    rate_limiter.take_token = AsyncMock(return_value=token)
    return AdmissionGate(settings_repo, ticket_repo, rate_limiter, default_ticket_limit=5)


@pytest.mark.asyncio
async def test_admits_one_below_limit() -> None:
    gate = _gate(limit=3, open_count=2)
    await gate.admit(1, 10, is_staff=False)
    gate.rate_limiter.take_token.assert_awaited_once_with(1)


@pytest.mark.asyncio
async def test_rejects_at_limit() -> None:
    gate = _gate(limit=3, open_count=3)
    with pytest.raises(TicketLimitReachedError) as exc_info:
        await gate.admit(1, 10, is_staff=False)
    assert exc_info.value.limit == 3
    assert exc_info.value.format_args == {"limit": 3, "tickets": "tickets"}


@pytest.mark.asyncio
async def test_rate_limiter_not_reached_when_limit_rejects() -> None:
    gate = _gate(limit=1, open_count=4, token=False)
    with pytest.raises(TicketLimitReachedError) as exc_info:
        await gate.admit(1, 10, is_staff=False)
    assert exc_info.value.format_args["tickets"] == "ticket"
    gate.rate_limiter.take_token.assert_not_awaited()


@pytest.mark.asyncio
async def test_staff_skip_limit_but_take_token() -> None:
    gate = _gate(limit=1, open_count=50)
    await gate.admit(1, 10, is_staff=True)
    gate.ticket_repo.count_open_by_user.assert_not_awaited()
    gate.settings_repo.get_ticket_limit.assert_not_awaited()
    gate.rate_limiter.take_token.assert_awaited_once_with(1)


@pytest.mark.asyncio
async def test_staff_are_rate_limited_too() -> None:
    gate = _gate(limit=5, open_count=0, token=False)
    with pytest.raises(OpenRateLimitedError):
        await gate.admit(1, 10, is_staff=True)


@pytest.mark.asyncio
async def test_read_failure_fails_closed() -> None:
    gate = _gate(limit=5, open_count=0)
    gate.ticket_repo.count_open_by_user = AsyncMock(side_effect=RuntimeError("db down"))
    with pytest.raises(AdmissionUnavailableError):
        await gate.admit(1, 10, is_staff=False)
    gate.rate_limiter.take_token.assert_not_awaited()


@pytest.mark.asyncio
async def test_rate_limiter_failure_fails_closed() -> None:
    gate = _gate(limit=5, open_count=0)
    gate.rate_limiter.take_token = AsyncMock(side_effect=ConnectionError("redis down"))
    with pytest.raises(AdmissionUnavailableError):
        await gate.admit(1, 10, is_staff=False)
