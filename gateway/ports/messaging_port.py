"""Messaging port — abstract interface for talking to chat users.

Core modules depend on this protocol, never on a specific messaging provider.
Message text uses HTML markup; keyboards are rows of inline buttons.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class MessagingError(Exception):
    """Raised when any messaging provider operation fails."""


@dataclass(frozen=True)
class Button:
    text: str
    callback_data: str


@dataclass(frozen=True)
class SentMessage:
    chat_id: int
    message_id: int


Keyboard = list[list[Button]]


class MessagingPort(Protocol):
    """Abstract messaging interface used by core modules.

    Passing an empty keyboard to edit_message removes the buttons;
    passing None leaves the message without any.
    """

    async def send_message(
        self, chat_id: int, text: str, keyboard: Keyboard | None = None
    ) -> SentMessage: ...

    async def edit_message(
        self, chat_id: int, message_id: int, text: str, keyboard: Keyboard | None = None
    ) -> None: ...

    async def answer_callback(self, callback_id: str, text: str | None = None) -> None: ...
