"""Telegram alert sender."""

from __future__ import annotations

import html

import structlog
from telegram import Bot
from telegram.constants import ParseMode

logger = structlog.get_logger()

SEVERITY_EMOJI = {
    "success": "✅",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
}


def format_alert(title: str, body: str, severity: str = "info") -> str:
    emoji = SEVERITY_EMOJI.get(severity, SEVERITY_EMOJI["info"])
    return f"{emoji} <b>{html.escape(title)}</b>\n\n{html.escape(body)}"


class TelegramNotifier:
    """Sends formatted alerts to one chat. A no-op when token or chat id is unset."""

    def __init__(self, token: str, chat_id: str, bot: Bot | None = None) -> None:
        self.chat_id = chat_id
        self.enabled = bool(token and chat_id)
        self.bot = bot or (Bot(token) if self.enabled else None)
        if not self.enabled:
            logger.warning("telegram_not_configured")

    async def send_alert(self, title: str, body: str, severity: str = "info") -> None:
        if not self.enabled or self.bot is None:
            logger.debug("telegram_alert_skipped", title=title)
            return
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=format_alert(title, body, severity),
                parse_mode=ParseMode.HTML,
            )
        except Exception:
            logger.exception("telegram_send_error", severity=severity, title=title)
