"""Telegram operator alerts.

Sends execution outcomes and breaker alerts to a single operator chat.
Uses a singleton pattern to share the bot instance.
"""

import asyncio
import html
import logging
from typing import Any, Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from hoparb.arbitrage.models import ExecutionResult
from hoparb.config import get_settings

logger = logging.getLogger(__name__)

# Singleton bot instance
_bot_instance: Optional[Bot] = None
_bot_lock = asyncio.Lock()


async def get_bot() -> Optional[Bot]:
    """Get or create the bot instance for alerts."""
    global _bot_instance

    if _bot_instance is not None:
        return _bot_instance

    async with _bot_lock:
        if _bot_instance is not None:
            return _bot_instance

        settings = get_settings()
        if not settings.telegram_bot_token:
            logger.warning("Telegram bot token not configured - alerts disabled")
            return None

        _bot_instance = Bot(token=settings.telegram_bot_token)
        return _bot_instance


async def close_bot() -> None:
    """Close the bot session (call on shutdown)."""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.session.close()
        _bot_instance = None


def format_execution(result: ExecutionResult) -> str:
    route = result.route
    lines = [
        f"<b>{'✅' if result.success else '⚠️'} {html.escape(route.signature)}</b>",
        f"Status: {result.status.value} ({result.executed_hops}/{route.hop_count} hops)",
        f"Input: {route.input_amount:.4f} {html.escape(route.base_asset.symbol)}",
        f"Expected net: {route.net_profit_percent:.2f}%",
    ]
    if result.realized_profit_percent is not None:
        lines.append(f"Realized: {result.realized_profit_percent:.2f}%")
    if result.error:
        lines.append(f"Error: {html.escape(result.error)}")
    for tx_id in result.transaction_ids:
        lines.append(f"<code>{html.escape(tx_id)}</code>")
    return "\n".join(lines)


def format_breaker_alert(summary: dict[str, Any], statuses: dict[str, dict[str, Any]]) -> str:
    open_names = [name for name, status in statuses.items() if status["state"] == "OPEN"]
    severity = "CRITICAL" if summary.get("critical") else "DEGRADED"
    lines = [f"<b>🚨 Circuit breakers {severity}</b>", f"Open: {summary['open']}/{summary['total']}"]
    for name in open_names:
        retry = statuses[name]["time_until_next_attempt"]
        lines.append(f"• {html.escape(name)} (retry in {retry:.0f}s)")
    return "\n".join(lines)


def format_emergency_alert(status: dict[str, Any]) -> str:
    lines = [
        f"<b>🛑 Emergency stop: {html.escape(str(status['type']))}</b>",
        html.escape(status["reason"] or "no reason given"),
        f"Consecutive failures: {status['consecutive_failures']}",
        f"Net realized: {status['realized_pnl']}",
        "Execution halted until an operator reset.",
    ]
    return "\n".join(lines)


class TelegramNotifier:
    """Service for sending operator alerts."""

    def __init__(self, chat_id: Optional[int] = None, bot: Optional[Bot] = None):
        """Initialize notifier.

        Args:
            chat_id: Operator chat (settings.telegram_alert_chat_id when None)
            bot: Bot instance (shared singleton when None)
        """
        self.chat_id = chat_id if chat_id is not None else get_settings().telegram_alert_chat_id
        self._bot = bot

    @property
    def enabled(self) -> bool:
        return self.chat_id is not None

    async def _get_bot(self) -> Optional[Bot]:
        if self._bot:
            return self._bot
        return await get_bot()

    async def send_message(self, message: str, parse_mode: Optional[str] = "HTML") -> bool:
        """Send a message to the operator chat.

        Returns:
            True if message was sent successfully
        """
        if not self.enabled:
            return False

        bot = await self._get_bot()
        if not bot:
            logger.warning("Cannot send alert - bot not initialized")
            return False

        try:
            await bot.send_message(chat_id=self.chat_id, text=message, parse_mode=parse_mode)
            return True
        except TelegramForbiddenError:
            logger.warning(f"Bot was blocked in chat {self.chat_id}")
            return False
        except TelegramBadRequest as e:
            logger.error(f"Bad request sending alert to {self.chat_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to send alert to {self.chat_id}: {e}")
            return False

    async def notify_execution(self, result: ExecutionResult) -> bool:
        return await self.send_message(format_execution(result))

    async def notify_breakers(self, summary: dict[str, Any], statuses: dict[str, dict[str, Any]]) -> bool:
        """Alert when any breaker is open."""
        if summary.get("healthy", True):
            return False
        return await self.send_message(format_breaker_alert(summary, statuses))

    async def notify_emergency(self, status: dict[str, Any]) -> bool:
        return await self.send_message(format_emergency_alert(status))
