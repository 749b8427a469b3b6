from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config


def _write_config(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "config.yaml"
    config_path.write_text(body.strip(), encoding="utf-8")
    return config_path


def test_load_config_reads_yaml(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
  prefix: "?"
database:
  url: "sqlite:///./data/test.db"
""",
    )

    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    cfg = load_config(config_path)

    assert cfg.discord.token == "test-token"
    assert cfg.discord.prefix == "?"
    assert cfg.database.url.startswith("sqlite:///")
    assert cfg.enabled_extensions == ["cogs.tickets"]


def test_env_overrides_token(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: yaml-token
""",
    )
    monkeypatch.setenv("DISCORD_TOKEN", "env-token")
    cfg = load_config(config_path)
    assert cfg.discord.token == "env-token"


def test_missing_token_is_rejected(tmp_path: Path, monkeypatch) -> None:
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: "${DISCORD_TOKEN}"
""",
    )
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_tickets_section_defaults_and_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.delenv("PREMIUM_GUILD_IDS", raising=False)
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
tickets:
  open_rate_limit_tokens: 3
  default_ticket_limit: 2
  premium_guild_ids: [11, 12]
""",
    )

    cfg = load_config(config_path)

    assert cfg.tickets.open_rate_limit_tokens == 3
    assert cfg.tickets.open_rate_limit_window_seconds == 30
    assert cfg.tickets.default_ticket_limit == 2
    assert cfg.tickets.premium_guild_ids == [11, 12]
    assert "%user%" in cfg.tickets.default_welcome_message


def test_premium_guilds_from_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("DISCORD_TOKEN", raising=False)
    monkeypatch.setenv("PREMIUM_GUILD_IDS", "5, 6,")
    config_path = _write_config(
        tmp_path,
        """
discord:
  token: test-token
tickets:
  premium_guild_ids: [11]
""",
    )

    cfg = load_config(config_path)

    assert cfg.tickets.premium_guild_ids == [5, 6]
