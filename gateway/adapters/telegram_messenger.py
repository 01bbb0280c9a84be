"""Telegram messaging adapter — implements MessagingPort.

Wraps a telegram.Bot instance to satisfy the MessagingPort protocol.
Every Bot API failure leaves this module as MessagingError.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, TelegramError, TimedOut

from gateway.ports.messaging_port import Keyboard, MessagingError, SentMessage

logger = logging.getLogger(__name__)


def _to_markup(keyboard: Keyboard | None) -> InlineKeyboardMarkup | None:
    if keyboard is None:
        return None
    return InlineKeyboardMarkup(
        [
            [InlineKeyboardButton(b.text, callback_data=b.callback_data) for b in row]
            for row in keyboard
        ]
    )


class TelegramMessenger:
    """Telegram implementation of MessagingPort."""

    def __init__(
        self,
        bot: Bot | None = None,
        token: str | None = None,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> None:
        from gateway.config import settings

        if bot is None:
            token = token or settings.TELEGRAM_BOT_TOKEN
            if not token:
                raise ValueError("TELEGRAM_BOT_TOKEN is required to create TelegramMessenger")
            bot = Bot(token)

        self._bot = bot
        self._timeout = timeout if timeout is not None else settings.SEND_TIMEOUT_SECONDS
        self._retries = retries if retries is not None else settings.SEND_RETRIES

    async def initialize(self) -> None:
        await self._bot.initialize()

    async def shutdown(self) -> None:
        await self._bot.shutdown()

    async def _call(
        self,
        op: str,
        func: Callable[..., Awaitable[Any]],
        ignore_not_modified: bool = False,
        **kwargs: Any,
    ) -> Any:
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await func(
                    read_timeout=self._timeout,
                    connect_timeout=self._timeout,
                    **kwargs,
                )
            except BadRequest as exc:
                # BadRequest subclasses NetworkError but is never worth retrying
                if ignore_not_modified and "not modified" in exc.message.lower():
                    logger.debug("%s: message not modified, treating as success", op)
                    return None
                raise MessagingError(f"{op} rejected by Telegram: {exc.message}") from exc
            except (TimedOut, NetworkError) as exc:
                if attempt >= attempts:
                    raise MessagingError(
                        f"{op} failed after {attempts} attempt(s): {exc}"
                    ) from exc
                logger.warning("%s attempt %d failed (%s), retrying", op, attempt, exc)
            except TelegramError as exc:
                raise MessagingError(f"{op} failed: {exc}") from exc
        return None

    async def send_message(
        self, chat_id: int, text: str, keyboard: Keyboard | None = None
    ) -> SentMessage:
        message = await self._call(
            "send_message",
            self._bot.send_message,
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.HTML,
            reply_markup=_to_markup(keyboard),
        )
        return SentMessage(chat_id=chat_id, message_id=message.message_id)

    async def edit_message(
        self, chat_id: int, message_id: int, text: str, keyboard: Keyboard | None = None
    ) -> None:
        await self._call(
            "edit_message",
            self._bot.edit_message_text,
            ignore_not_modified=True,
            text=text,
            chat_id=chat_id,
            message_id=message_id,
            parse_mode=ParseMode.HTML,
            reply_markup=_to_markup(keyboard),
        )

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None:
        await self._call(
            "answer_callback",
            self._bot.answer_callback_query,
            callback_query_id=callback_id,
            text=text,
        )
