from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Header, HTTPException

if TYPE_CHECKING:
    from core.bot import TicketBot


def _auth(x_api_key: str | None, expected: str) -> None:
    if not expected:
        return
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def create_api_app(bot: TicketBot) -> FastAPI:
    app = FastAPI(title="Ticket Bot API", version="1.0.0")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/guilds/{guild_id}/tickets/open")
    async def open_tickets(
        guild_id: int, limit: int = 200, x_api_key: str | None = Header(default=None)
    ) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        tickets = await bot.ticket_repo.list_open(guild_id, limit=min(max(limit, 1), 500))
        return {
            "items": [
                {
                    "id": ticket.id,
                    "channel_id": ticket.channel_id,
                    "user_id": ticket.user_id,
                    "panel_id": ticket.panel_id,
                    "opened_at": ticket.opened_at.isoformat() if ticket.opened_at else None,
                }
                for ticket in tickets
            ]
        }

    return app
