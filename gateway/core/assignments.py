"""
Task Gateway — /mytasks and /assign.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from gateway.config import settings
from gateway.core import messages
from gateway.core.commands import InvalidAssign, resolve_due_date
from gateway.ports.messaging_port import MessagingError

if TYPE_CHECKING:
    from gateway.core.commands import AssignCommand
    from gateway.data.db import AccountDB, TaskDB
    from gateway.data.models import Task
    from gateway.ports.messaging_port import MessagingPort

logger = logging.getLogger(__name__)


class AssignmentService:
    """Lists a member's tasks and lets admins create tasks from chat."""

    def __init__(self, messenger: MessagingPort, accounts: AccountDB, tasks: TaskDB) -> None:
        self._messenger = messenger
        self._accounts = accounts
        self._tasks = tasks

    async def list_my_tasks(self, telegram_user_id: int, chat_id: int) -> list[Task]:
        """Send one interactive message per active task, earliest due first."""
        account = self._accounts.find_by_telegram_user(telegram_user_id)
        if account is None or not account.is_telegram_connected:
            await self._messenger.send_message(chat_id, messages.CONNECT_FIRST_TEXT)
            return []

        tasks = self._tasks.list_active_for_assignee(account.id, limit=settings.MYTASKS_LIMIT)
        if not tasks:
            await self._messenger.send_message(chat_id, messages.NO_TASKS_TEXT)
            return []

        for task in tasks:
            sent = await self._messenger.send_message(
                chat_id, messages.render_task(task), messages.task_keyboard(task.id),
            )
            self._tasks.set_telegram_message(task.id, sent.chat_id, sent.message_id)
        return tasks

    async def assign(
        self,
        telegram_user_id: int,
        chat_id: int,
        command: AssignCommand | InvalidAssign,
        now: datetime | None = None,
    ) -> Task | None:
        """Create a team task for the named assignee.

        Checks run in order: sender linked, sender is admin, syntax valid,
        assignee connected. Each failure is a chat reply, not an exception.
        """
        now = now or datetime.now(timezone.utc)

        assigner = self._accounts.find_by_telegram_user(telegram_user_id)
        if assigner is None or not assigner.is_telegram_connected:
            await self._messenger.send_message(chat_id, messages.CONNECT_FIRST_TEXT)
            return None
        if not assigner.is_admin:
            await self._messenger.send_message(chat_id, messages.NOT_ADMIN_TEXT)
            return None
        if isinstance(command, InvalidAssign):
            await self._messenger.send_message(chat_id, messages.render_assign_usage())
            return None

        assignee = self._accounts.find_by_username(command.assignee)
        if assignee is None:
            await self._messenger.send_message(
                chat_id, messages.render_assignee_not_found(command.assignee),
            )
            return None

        task = self._tasks.add_task(
            title=command.title,
            due_date=resolve_due_date(command.due_expr or "today", now=now),
            assigned_to=assignee.id,
            assigned_by=assigner.id,
            priority=command.priority or "medium",
            credit_points=settings.DEFAULT_TASK_CREDITS,
            now=now,
        )
        logger.info("Task %s assigned to %s by %s", task.id, assignee.id, assigner.id)

        await self._messenger.send_message(
            chat_id, messages.render_assign_confirmation(task, assignee),
        )

        if assignee.can_receive_messages:
            try:
                sent = await self._messenger.send_message(
                    assignee.telegram_chat_id,
                    messages.render_new_assignment(task, assigner),
                    messages.task_keyboard(task.id),
                )
            except MessagingError as exc:
                logger.error("Failed to notify assignee %s of task %s: %s", assignee.id, task.id, exc)
            else:
                self._tasks.set_telegram_message(task.id, sent.chat_id, sent.message_id)
        return task
