"""
Task Gateway — Task Action State Machine.

Handles inline-button callbacks on task messages (done / delay / comment) and
the free-text reply that completes a pending comment.

  Active --done--> Completed (terminal, buttons cleared)
  Active --delay--> Active (due + 1 day)
  Active --comment--> AwaitingComment --free text--> Active (note appended)

Every callback is answered exactly once, including on failure, so the
client never shows a stuck spinner.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from gateway.config import settings
from gateway.core import messages
from gateway.data.models import COMMAND_PENDING_COMMENT
from gateway.ports.messaging_port import MessagingError

if TYPE_CHECKING:
    from gateway.core.dispatcher import NotificationDispatcher
    from gateway.data.db import AccountDB, PendingCommandDB, TaskDB
    from gateway.data.models import LinkedAccount, Task
    from gateway.ports.messaging_port import Keyboard, MessagingPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Callback decoding
# ---------------------------------------------------------------------------


class TaskAction(Enum):
    DONE = "done"
    DELAY = "delay"
    COMMENT = "comment"


@dataclass(frozen=True)
class TaskCallback:
    action: TaskAction
    task_id: str


@dataclass(frozen=True)
class UnknownCallback:
    data: str


def decode_callback(data: str | None) -> TaskCallback | UnknownCallback:
    """Decode "<action>_<taskId>". The task id is everything after the first underscore."""
    raw = data or ""
    action, sep, task_id = raw.partition("_")
    if not sep or not task_id:
        return UnknownCallback(raw)
    try:
        return TaskCallback(TaskAction(action), task_id)
    except ValueError:
        return UnknownCallback(raw)


# ---------------------------------------------------------------------------
# Service types
# ---------------------------------------------------------------------------


@dataclass
class IncomingCallback:
    callback_id: str
    telegram_user_id: int
    data: str | None
    chat_id: int | None = None      # chat of the message carrying the button
    message_id: int | None = None


class CallbackOutcome(Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    DELAYED = "delayed"
    COMMENT_REQUESTED = "comment_requested"
    NOT_LINKED = "not_linked"
    UNKNOWN_ACTION = "unknown_action"
    TASK_NOT_FOUND = "task_not_found"
    FAILED = "failed"


class _Acknowledger:
    """Answers one callback query at most once."""

    def __init__(self, messenger: MessagingPort, callback_id: str) -> None:
        self._messenger = messenger
        self._callback_id = callback_id
        self.answered = False

    async def answer(self, text: str | None = None) -> None:
        if self.answered:
            return
        self.answered = True
        try:
            await self._messenger.answer_callback(self._callback_id, text)
        except MessagingError as exc:
            logger.warning("Failed to answer callback %s: %s", self._callback_id, exc)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TaskActionService:
    """Drives task transitions from chat."""

    def __init__(
        self,
        messenger: MessagingPort,
        accounts: AccountDB,
        commands: PendingCommandDB,
        tasks: TaskDB,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._messenger = messenger
        self._accounts = accounts
        self._commands = commands
        self._tasks = tasks
        self._dispatcher = dispatcher

    async def handle_callback(
        self, callback: IncomingCallback, now: datetime | None = None,
    ) -> CallbackOutcome:
        now = now or datetime.now(timezone.utc)
        ack = _Acknowledger(self._messenger, callback.callback_id)
        try:
            return await self._handle_callback(callback, ack, now)
        except sqlite3.Error as exc:
            logger.error(
                "Callback %r from user %d failed: %s",
                callback.data, callback.telegram_user_id, exc,
            )
            return CallbackOutcome.FAILED
        finally:
            # Covers every failure path, including ones that propagate
            await ack.answer(messages.ANSWER_FAILED)

    async def _handle_callback(
        self, callback: IncomingCallback, ack: _Acknowledger, now: datetime,
    ) -> CallbackOutcome:
        decoded = decode_callback(callback.data)
        if isinstance(decoded, UnknownCallback):
            logger.info("Unknown callback data %r", decoded.data)
            await ack.answer(messages.ANSWER_UNKNOWN)
            return CallbackOutcome.UNKNOWN_ACTION

        account = self._accounts.find_by_telegram_user(callback.telegram_user_id)
        if account is None or not account.is_telegram_connected:
            await ack.answer(messages.ANSWER_NOT_LINKED)
            return CallbackOutcome.NOT_LINKED

        task = self._tasks.get_task(decoded.task_id)
        if task is None:
            await ack.answer(messages.ANSWER_NOT_FOUND)
            return CallbackOutcome.TASK_NOT_FOUND

        if decoded.action is TaskAction.DONE:
            newly_completed = self._tasks.mark_completed(task.id, now)
            await ack.answer(messages.ANSWER_DONE if newly_completed else messages.ANSWER_ALREADY_DONE)
            task = self._tasks.get_task(task.id) or task
            await self._edit(callback, task, messages.render_completed(task), [])
            if newly_completed:
                logger.info("Task %s completed by %s via Telegram", task.id, account.id)
                await self._notify_completed(task, account)
                return CallbackOutcome.COMPLETED
            return CallbackOutcome.ALREADY_COMPLETED

        if decoded.action is TaskAction.DELAY:
            if task.is_completed:
                await ack.answer(messages.ANSWER_ALREADY_DONE)
                await self._edit(callback, task, messages.render_completed(task), [])
                return CallbackOutcome.ALREADY_COMPLETED
            task.due_date = task.due_date + timedelta(days=1)
            self._tasks.set_due_date(task.id, task.due_date)
            await ack.answer(messages.ANSWER_DELAYED)
            await self._edit(
                callback, task, messages.render_task(task), messages.task_keyboard(task.id),
            )
            return CallbackOutcome.DELAYED

        # COMMENT: only the newest marker per user stays live
        self._commands.supersede(callback.telegram_user_id, COMMAND_PENDING_COMMENT, now)
        self._commands.add_command(
            telegram_user_id=callback.telegram_user_id,
            telegram_chat_id=callback.chat_id or account.telegram_chat_id,
            command=COMMAND_PENDING_COMMENT,
            payload={"message_id": callback.message_id},
            task_id=task.id,
            now=now,
        )
        await ack.answer(messages.ANSWER_COMMENT_PROMPT)
        return CallbackOutcome.COMMENT_REQUESTED

    async def _edit(
        self, callback: IncomingCallback, task: Task, text: str, keyboard: Keyboard,
    ) -> None:
        chat_id = callback.chat_id or task.telegram_chat_id
        message_id = callback.message_id or task.telegram_message_id
        if chat_id is None or message_id is None:
            logger.info("No message to edit for task %s", task.id)
            return
        try:
            await self._messenger.edit_message(chat_id, message_id, text, keyboard)
        except MessagingError as exc:
            logger.warning("Failed to edit message %d in chat %d: %s", message_id, chat_id, exc)

    async def _notify_completed(self, task: Task, completed_by: LinkedAccount) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.notify_task_completed(task, completed_by)
        except (MessagingError, sqlite3.Error) as exc:
            logger.error("Failed to notify assigner of task %s: %s", task.id, exc)

    async def handle_free_text(
        self,
        telegram_user_id: int,
        chat_id: int,
        text: str,
        sent_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Attach `text` to the task awaiting a comment, or reply with help.

        Returns True when a comment was recorded.
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(minutes=settings.PENDING_COMMENT_TTL_MINUTES)

        pending = self._commands.latest_pending_comment(telegram_user_id, since)
        if pending is None or not pending.task_id or not text:
            await self._send_help(chat_id, text)
            return False

        if not self._commands.mark_processed(pending.id, now):
            logger.info("Pending comment #%d already consumed", pending.id)
            await self._send_help(chat_id, text)
            return False

        stamp = (sent_at or now).astimezone(ZoneInfo(settings.TIMEZONE)).strftime("%Y-%m-%d %H:%M")
        if not self._tasks.append_note(pending.task_id, f"[Telegram {stamp}] {text}"):
            await self._messenger.send_message(chat_id, messages.ANSWER_NOT_FOUND)
            return False

        logger.info("Comment added to task %s by Telegram user %d", pending.task_id, telegram_user_id)
        await self._messenger.send_message(chat_id, messages.COMMENT_ADDED_TEXT)
        return True

    async def _send_help(self, chat_id: int, text: str) -> None:
        reply = messages.HELP_TEXT
        if "done" in (text or "").lower():
            reply = messages.DONE_HINT_TEXT + reply
        await self._messenger.send_message(chat_id, reply)
