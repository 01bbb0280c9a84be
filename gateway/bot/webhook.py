"""
Task Gateway — Webhook Ingress.

Single entrypoint for Telegram Updates. Routes button callbacks to the task
action state machine and messages to the command handlers, and always
produces an acknowledgment body: a failure status would only make Telegram
redeliver the same update.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from telegram import CallbackQuery, Message, Update

from gateway.config import settings
from gateway.core import messages
from gateway.core.assignments import AssignmentService
from gateway.core.commands import (
    AssignCommand,
    ConnectCommand,
    InvalidAssign,
    MyTasksCommand,
    StartCommand,
    parse_command,
)
from gateway.core.dispatcher import NotificationDispatcher
from gateway.core.linking import AccountLinkingService
from gateway.core.task_actions import IncomingCallback, TaskActionService
from gateway.data.db import (
    AccountDB,
    NotificationDB,
    PendingCommandDB,
    ReminderDB,
    TaskDB,
    UpdateLogDB,
)
from gateway.ports.messaging_port import MessagingError, MessagingPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class GatewayComponents:
    messenger: MessagingPort
    accounts: AccountDB
    commands: PendingCommandDB
    tasks: TaskDB
    reminders: ReminderDB
    notifications: NotificationDB
    updates: UpdateLogDB
    linking: AccountLinkingService
    dispatcher: NotificationDispatcher
    actions: TaskActionService
    assignments: AssignmentService


def build_components(
    db_path: str | None = None,
    messenger: MessagingPort | None = None,
) -> GatewayComponents:
    """Create stores and services sharing one database file."""
    if messenger is None:
        from gateway.adapters.telegram_messenger import TelegramMessenger
        messenger = TelegramMessenger()

    accounts = AccountDB(db_path)
    commands = PendingCommandDB(db_path)
    tasks = TaskDB(db_path)
    reminders = ReminderDB(db_path)
    notifications = NotificationDB(db_path)
    updates = UpdateLogDB(db_path)

    dispatcher = NotificationDispatcher(messenger, accounts, tasks, reminders, notifications)
    return GatewayComponents(
        messenger=messenger,
        accounts=accounts,
        commands=commands,
        tasks=tasks,
        reminders=reminders,
        notifications=notifications,
        updates=updates,
        linking=AccountLinkingService(accounts, commands),
        dispatcher=dispatcher,
        actions=TaskActionService(messenger, accounts, commands, tasks, dispatcher),
        assignments=AssignmentService(messenger, accounts, tasks),
    )


# ---------------------------------------------------------------------------
# Ingress
# ---------------------------------------------------------------------------


def _parse_update(raw: bytes | str | dict[str, Any]) -> Update | None:
    """Deserialize a webhook body into a telegram.Update, or None if it is not one."""
    try:
        data = raw if isinstance(raw, dict) else json.loads(raw)
        if not isinstance(data, dict) or not isinstance(data.get("update_id"), int):
            raise ValueError("update_id missing")
        return Update.de_json(data, None)
    except (TypeError, KeyError, ValueError) as exc:
        logger.warning("Malformed update ignored: %s", exc)
        return None


class WebhookGateway:
    """Turns one raw Update into handler calls. Never raises."""

    def __init__(self, components: GatewayComponents) -> None:
        self._c = components

    async def handle_payload(self, raw: bytes | str | dict[str, Any]) -> dict[str, Any]:
        update = _parse_update(raw)
        if update is None:
            return {"ok": True, "error": "malformed update"}

        try:
            if not self._c.updates.claim(update.update_id):
                logger.info("Duplicate update %d ignored", update.update_id)
                return {"ok": True, "duplicate": True}

            if update.callback_query is not None:
                await self._handle_callback(update.callback_query)
            elif update.message is not None and update.message.text is not None:
                await self._handle_message(update.message)
            else:
                logger.debug("Update %d has nothing to handle", update.update_id)
        except Exception:
            logger.exception("Failed to process update %d", update.update_id)
            return {"ok": True, "error": "internal error"}

        return {"ok": True}

    async def _handle_callback(self, query: CallbackQuery) -> None:
        callback = IncomingCallback(
            callback_id=query.id,
            telegram_user_id=query.from_user.id,
            data=query.data,
            chat_id=query.message.chat.id if query.message else None,
            message_id=query.message.message_id if query.message else None,
        )
        outcome = await self._c.actions.handle_callback(callback)
        logger.info("Callback %r from user %d: %s", query.data, query.from_user.id, outcome.value)

    async def _handle_message(self, message: Message) -> None:
        user = message.from_user
        chat_id = message.chat.id
        if user is None:
            logger.debug("Message %d without sender ignored", message.message_id)
            return

        command = parse_command(message.text or "")
        try:
            if isinstance(command, StartCommand):
                await self._c.messenger.send_message(chat_id, messages.WELCOME_TEXT)
            elif isinstance(command, ConnectCommand):
                await self._cmd_connect(chat_id, user.id, user.username)
            elif isinstance(command, MyTasksCommand):
                await self._c.assignments.list_my_tasks(user.id, chat_id)
            elif isinstance(command, (AssignCommand, InvalidAssign)):
                await self._c.assignments.assign(user.id, chat_id, command)
            else:
                await self._c.actions.handle_free_text(
                    user.id, chat_id, command.text, sent_at=message.date,
                )
        except sqlite3.Error as exc:
            logger.error("Command %s from user %d failed: %s", command.command, user.id, exc)
            await self._c.messenger.send_message(chat_id, messages.GENERIC_FAILURE_TEXT)
        except MessagingError as exc:
            logger.error("Reply to chat %d failed: %s", chat_id, exc)

    async def _cmd_connect(self, chat_id: int, telegram_user_id: int, username: str | None) -> None:
        result = self._c.linking.issue_connection_code(chat_id, telegram_user_id, username)
        if result.already_connected:
            text = messages.render_already_connected(result.account)
        else:
            text = messages.render_connection_code(result.code, settings.CONNECT_CODE_TTL_MINUTES)
        await self._c.messenger.send_message(chat_id, text)
