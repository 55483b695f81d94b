"""Telegram messaging.

Sends messages to users and removes sensitive ones (exported keys) after a
delay. Uses a singleton pattern to share the bot instance.
"""

import asyncio
import logging
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramForbiddenError

from solkeeper.config import get_settings
from solkeeper.ledger.models import WithdrawalRecord, WithdrawalStatus
from solkeeper.ports import MessagingPort
from solkeeper.withdrawal.engine import format_amount

logger = logging.getLogger(__name__)

# Singleton bot instance
_bot_instance: Optional[Bot] = None
_bot_lock = asyncio.Lock()


async def get_bot() -> Optional[Bot]:
    """Get or create the bot instance."""
    global _bot_instance

    if _bot_instance is not None:
        return _bot_instance

    async with _bot_lock:
        # Double-check after acquiring lock
        if _bot_instance is not None:
            return _bot_instance

        settings = get_settings()
        if not settings.telegram_bot_token:
            logger.warning("Telegram bot token not configured - messaging disabled")
            return None

        _bot_instance = Bot(token=settings.telegram_bot_token)
        return _bot_instance


async def close_bot() -> None:
    """Close the bot session (call on shutdown)."""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.session.close()
        _bot_instance = None


class TelegramMessenger(MessagingPort):
    """Best-effort Telegram messaging for the custody flows."""

    def __init__(self, bot: Optional[Bot] = None, autodelete_seconds: Optional[float] = None):
        """Initialize with optional bot instance.

        If no bot provided, will use the singleton instance.
        """
        self._bot = bot
        self.autodelete_seconds = autodelete_seconds
        self._pending: set[asyncio.Task] = set()

    async def _get_bot(self) -> Optional[Bot]:
        """Get the bot instance."""
        if self._bot:
            return self._bot
        return await get_bot()

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = "HTML",
        **options,
    ) -> Optional[int]:
        """Send a message to a user.

        Returns:
            The message id, or None if the message was not sent
        """
        bot = await self._get_bot()
        if not bot:
            logger.warning("Cannot send message - bot not initialized")
            return None

        try:
            message = await bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=parse_mode,
                **options,
            )
            return message.message_id
        except TelegramForbiddenError:
            logger.warning(f"User {chat_id} has blocked the bot")
            return None
        except TelegramBadRequest as e:
            logger.error(f"Bad request sending to {chat_id}: {e}")
            return None
        except TelegramAPIError as e:
            logger.error(f"Failed to send message to {chat_id}: {e}")
            return None

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        """Delete a message. Already-deleted or too-old messages return False."""
        bot = await self._get_bot()
        if not bot:
            return False

        try:
            return bool(await bot.delete_message(chat_id=chat_id, message_id=message_id))
        except TelegramBadRequest as e:
            logger.warning(f"Could not delete message {message_id} in {chat_id}: {e}")
            return False
        except TelegramAPIError as e:
            logger.error(f"Failed to delete message {message_id} in {chat_id}: {e}")
            return False

    def schedule_delete(self, chat_id: int, message_id: int, delay: float) -> asyncio.Task:
        """Delete a message after ``delay`` seconds in a background task."""

        async def _delete_later() -> None:
            await asyncio.sleep(delay)
            deleted = await self.delete_message(chat_id, message_id)
            if deleted:
                logger.debug(f"Auto-deleted message {message_id} in {chat_id}")

        task = asyncio.create_task(_delete_later())
        # Keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send_sensitive(
        self,
        chat_id: int,
        text: str,
        ttl: Optional[float] = None,
        **options,
    ) -> Optional[int]:
        """Send a message that deletes itself after ``ttl`` seconds."""
        ttl = ttl if ttl is not None else self.autodelete_seconds
        if ttl is None:
            ttl = get_settings().export_autodelete_seconds

        message_id = await self.send_message(chat_id, text, **options)
        if message_id is not None:
            self.schedule_delete(chat_id, message_id, ttl)
        return message_id

    async def notify_withdrawal_complete(self, chat_id: int, record: WithdrawalRecord) -> Optional[int]:
        """Notify user of a submitted withdrawal."""
        amount_str = format_amount(record.amount)
        short_addr = f"{record.to_address[:10]}...{record.to_address[-6:]}"
        short_sig = f"{record.tx_signature[:8]}...{record.tx_signature[-8:]}"

        message = (
            f"<b>Withdrawal Sent</b>\n\n"
            f"Sent: <code>{amount_str} {record.token_symbol}</code>\n"
            f"To: <code>{short_addr}</code>\n"
            f"TX: <code>{short_sig}</code>\n"
            f"Status: {WithdrawalStatus(record.status).value}"
        )

        return await self.send_message(chat_id, message)

    async def close(self) -> None:
        """Cancel pending deletions."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()


# Global messenger instance
_messenger: Optional[TelegramMessenger] = None


def get_messenger() -> TelegramMessenger:
    """Get the global messenger instance."""
    global _messenger
    if _messenger is None:
        _messenger = TelegramMessenger(autodelete_seconds=get_settings().export_autodelete_seconds)
    return _messenger
