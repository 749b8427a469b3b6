from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

import aiohttp

from core.config import WebhookLogConfig

LOGGER = logging.getLogger(__name__)


class ErrorReporter:
    """Logs internal errors and mirrors them to the configured webhook log channel."""

    def __init__(self, config: WebhookLogConfig) -> None:
        self.config = config

    async def report(self, error: BaseException, **context: Any) -> None:
        LOGGER.error(
            "Internal error: %s context=%s",
            error,
            context,
            exc_info=(type(error), error, error.__traceback__),
        )
        await self.send_webhook_log(type(error).__name__, {"error": str(error), **context}, error)

    async def send_webhook_log(
        self, title: str, payload: dict[str, Any], error: BaseException | None = None
    ) -> None:
        if not self.config.enabled or not self.config.url:
            return
        description = json.dumps(payload, indent=2, default=str)[:3000]
        if error is not None:
            trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            description += f"\n{trace[-800:]}"
        try:
            async with aiohttp.ClientSession() as session:
                await session.post(
                    self.config.url,
                    json={
                        "content": None,
                        "embeds": [
                            {
                                "title": title[:256],
                                "description": f"```\n{description}\n```",
                                "timestamp": datetime.now(UTC).isoformat(),
                            }
                        ],
                    },
                    timeout=aiohttp.ClientTimeout(total=10),
                )
        except (aiohttp.ClientError, TimeoutError):
            LOGGER.exception("Failed to send webhook error log")
