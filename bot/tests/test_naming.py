from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from database.models import NamingScheme, Panel
from services.naming import NameGenerator
from services.platform import PlatformMember, PlatformUser


def _panel(scheme: str | None) -> Panel:
    return Panel(panel_id=1, guild_id=1000, naming_scheme=scheme)


@pytest.mark.asyncio
async def test_padded_id_template_without_claimer(platform, deps, make_ctx) -> None:
    ctx = make_ctx()
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("ticket-%id_padded%-%claimed%"), 7, ctx.user_id)

    assert name == "ticket-0007-unclaimed"
    ctx.user.assert_not_awaited()
    platform.get_user.assert_not_awaited()
    platform.get_guild_member.assert_not_awaited()


@pytest.mark.asyncio
async def test_claimed_and_plain_id(platform, deps, make_ctx) -> None:
    ctx = make_ctx()
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("%claimed%-%id%"), 12345, ctx.user_id, claimer_id=5)

    assert name == "claimed-12345"


@pytest.mark.asyncio
async def test_unknown_placeholders_are_left_verbatim(platform, deps, make_ctx) -> None:
    ctx = make_ctx()
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("%priority%-%id%-100%"), 3, ctx.user_id)

    assert name == "%priority%-3-100%"


@pytest.mark.asyncio
async def test_username_placeholder_reuses_caller_profile(platform, deps, make_ctx) -> None:
    ctx = make_ctx(username="bob")
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("%username%-%id%"), 2, ctx.user_id)

    assert name == "bob-2"
    ctx.user.assert_awaited_once()
    platform.get_user.assert_not_awaited()
    platform.get_guild_member.assert_not_awaited()


@pytest.mark.asyncio
async def test_username_of_other_opener_is_fetched(platform, deps, make_ctx) -> None:
    ctx = make_ctx()
    platform.get_user = AsyncMock(return_value=PlatformUser(id=77, username="carol"))
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("%username%"), 2, 77)

    assert name == "carol"
    platform.get_user.assert_awaited_once_with(77)


@pytest.mark.asyncio
async def test_nickname_falls_back_to_username(platform, deps, make_ctx) -> None:
    ctx = make_ctx()
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("%nickname%"), 1, ctx.user_id)
    assert name == "alice"

    platform.get_guild_member = AsyncMock(
        return_value=PlatformMember(user=PlatformUser(id=ctx.user_id, username="alice"), nick="Ally")
    )
    name = await generator.generate(ctx, _panel("%nickname%"), 1, ctx.user_id)
    assert name == "Ally"
    ctx.user.assert_not_awaited()


@pytest.mark.asyncio
async def test_long_usernames_are_truncated_after_substitution(platform, deps, make_ctx) -> None:
    ctx = make_ctx(username="x" * 300)
    generator = NameGenerator(platform, deps.settings_repo)

    name = await generator.generate(ctx, _panel("%username%-%username%-%id_padded%"), 9, ctx.user_id)
    assert len(name) == 100
    assert name == "x" * 100

    deps.settings_repo.get_naming_scheme = AsyncMock(return_value=NamingScheme.USERNAME)
    name = await generator.generate(ctx, None, 9, ctx.user_id)
    assert len(name) <= 100
    assert name.startswith("ticket-xxx")


@pytest.mark.asyncio
async def test_guild_scheme_by_id(platform, deps, make_ctx) -> None:
    ctx = make_ctx()
    generator = NameGenerator(platform, deps.settings_repo)

    assert await generator.generate(ctx, None, 12, ctx.user_id) == "ticket-12"
    assert await generator.generate(ctx, _panel(None), 13, ctx.user_id) == "ticket-13"
    ctx.user.assert_not_awaited()


@pytest.mark.asyncio
async def test_guild_scheme_by_username(platform, deps, make_ctx) -> None:
    ctx = make_ctx(username="dave")
    deps.settings_repo.get_naming_scheme = AsyncMock(return_value=NamingScheme.USERNAME)
    generator = NameGenerator(platform, deps.settings_repo)

    assert await generator.generate(ctx, None, 12, ctx.user_id) == "ticket-dave"
    platform.get_user.assert_not_awaited()
