"""
Task Gateway — Notification Dispatcher.

Scheduled flows, triggered from outside (cron hitting /jobs/* or the CLI):

Reminder sweep: tasks due roughly 24h and 6h from now get one reminder per
window, deduplicated through ReminderDB so retried or overlapping sweeps
never send twice.

Daily summary: same-day task counts pushed to every connected admin. Sends
are not deduplicated; the scheduler is expected to fire once a day.

Also notifies the assigner when a task is completed from chat.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from gateway.config import settings
from gateway.core import messages
from gateway.ports.messaging_port import MessagingError

if TYPE_CHECKING:
    from gateway.data.db import AccountDB, NotificationDB, ReminderDB, TaskDB
    from gateway.data.models import LinkedAccount, Task
    from gateway.ports.messaging_port import MessagingPort

logger = logging.getLogger(__name__)

# (hours before due, label shown to the user)
REMINDER_WINDOWS = ((24, "24 hours"), (6, "6 hours"))
WINDOW_BAND = timedelta(minutes=30)
# An unsent claim is only taken over once the task has left the window band,
# so a send whose bookkeeping failed is never repeated for the same window.
CLAIM_STALE_AFTER = 2 * WINDOW_BAND + timedelta(minutes=5)

REMINDER_SENT = "sent"
REMINDER_SKIPPED = "skipped"
REMINDER_UNRECORDED = "unrecorded"

TYPE_TASK_REMINDER = "task_reminder"
TYPE_DAILY_SUMMARY = "daily_summary"
TYPE_TASK_COMPLETED = "task_completed"


@dataclass
class SweepResult:
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    unrecorded: int = 0


def reminder_key(hours: int, task_id: str) -> str:
    return f"telegram_reminder_{hours}h_{task_id}"


def local_day_bounds(now: datetime, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    """Start and end (exclusive) of the local calendar day containing `now`."""
    tz = tz or ZoneInfo(settings.TIMEZONE)
    day = now.astimezone(tz).date()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


class NotificationDispatcher:
    """Sends reminders, summaries and completion notices."""

    def __init__(
        self,
        messenger: MessagingPort,
        accounts: AccountDB,
        tasks: TaskDB,
        reminders: ReminderDB,
        notifications: NotificationDB,
    ) -> None:
        self._messenger = messenger
        self._accounts = accounts
        self._tasks = tasks
        self._reminders = reminders
        self._notifications = notifications

    # ------------------------------------------------------------------
    # Reminder sweep
    # ------------------------------------------------------------------

    async def run_reminder_sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        result = SweepResult()

        for hours, label in REMINDER_WINDOWS:
            target = now + timedelta(hours=hours)
            candidates = self._tasks.list_due_between(target - WINDOW_BAND, target + WINDOW_BAND)
            logger.info("Reminder window %dh: %d candidate task(s)", hours, len(candidates))

            for task in candidates:
                try:
                    outcome = await self._send_reminder(task, hours, label, now)
                    if outcome == REMINDER_SENT:
                        result.sent += 1
                    elif outcome == REMINDER_UNRECORDED:
                        result.unrecorded += 1
                    else:
                        result.skipped += 1
                except Exception as exc:
                    result.failed += 1
                    logger.error("Failed to send %dh reminder for task %s: %s", hours, task.id, exc)

        logger.info(
            "Reminder sweep done: %d sent, %d skipped, %d failed, %d unrecorded",
            result.sent, result.skipped, result.failed, result.unrecorded,
        )
        return result

    async def _send_reminder(self, task: Task, hours: int, label: str, now: datetime) -> str:
        if not task.assigned_to:
            return REMINDER_SKIPPED
        assignee = self._accounts.get_account(task.assigned_to)
        if assignee is None or not assignee.can_receive_messages:
            return REMINDER_SKIPPED

        key = reminder_key(hours, task.id)
        if self._reminders.is_sent(task.id, key):
            return REMINDER_SKIPPED
        if not self._reminders.claim(task.id, assignee.id, key, now, CLAIM_STALE_AFTER):
            logger.info("Reminder %s claimed by another sweep", key)
            return REMINDER_SKIPPED

        try:
            sent = await self._messenger.send_message(
                assignee.telegram_chat_id,
                messages.render_reminder(task, label, now),
                messages.reminder_keyboard(task.id),
            )
        except MessagingError:
            self._reminders.release(task.id, key)
            raise

        day_start, day_end = local_day_bounds(now)
        try:
            self._reminders.mark_sent(task.id, key, now)
            self._tasks.set_telegram_message(task.id, sent.chat_id, sent.message_id)
            self._record_once(
                assignee,
                TYPE_TASK_REMINDER,
                f"Reminder ({label}): {task.title}",
                f"Task due in {label}",
                day_start,
                day_end,
                now,
            )
        except sqlite3.Error as exc:
            # The claim row stays unsent and blocks a resend for this window.
            logger.error("Sent %dh reminder for task %s but could not record it: %s", hours, task.id, exc)
            return REMINDER_UNRECORDED

        logger.info("Sent %dh reminder for task %s to %s", hours, task.id, assignee.id)
        return REMINDER_SENT

    # ------------------------------------------------------------------
    # Daily summary
    # ------------------------------------------------------------------

    async def run_daily_summary(self, now: datetime | None = None) -> int:
        """Send today's counts to each connected admin. Returns the number sent."""
        now = now or datetime.now(timezone.utc)
        day_start, day_end = local_day_bounds(now)
        stats = self._tasks.daily_stats(day_start)
        text = messages.render_daily_summary(stats, day_start.date())
        title = f"Daily summary {day_start.date().isoformat()}"

        sent = 0
        for admin in self._accounts.list_connected_admins():
            try:
                await self._messenger.send_message(admin.telegram_chat_id, text)
                sent += 1
                self._record_once(admin, TYPE_DAILY_SUMMARY, title, text, day_start, day_end, now)
            except Exception as exc:
                logger.error("Failed to send daily summary to %s: %s", admin.id, exc)

        logger.info("Daily summary sent to %d admin(s)", sent)
        return sent

    # ------------------------------------------------------------------
    # Completion notice
    # ------------------------------------------------------------------

    async def notify_task_completed(
        self, task: Task, completed_by: LinkedAccount, now: datetime | None = None,
    ) -> bool:
        """Tell the assigner a task was completed. At most once per task title per day."""
        now = now or datetime.now(timezone.utc)
        if not task.assigned_by or task.assigned_by == completed_by.id:
            return False
        assigner = self._accounts.get_account(task.assigned_by)
        if assigner is None or not assigner.can_receive_messages:
            return False

        day_start, day_end = local_day_bounds(now)
        title = f"Task completed: {task.title}"
        if self._notifications.exists_between(
            assigner.id, TYPE_TASK_COMPLETED, title, day_start, day_end,
        ):
            logger.info("Completion notice for task %s already sent today", task.id)
            return False

        text = messages.render_completion_notice(task, completed_by)
        await self._messenger.send_message(assigner.telegram_chat_id, text)
        self._notifications.add_notification(
            assigner.id, title=title, message=text, type_=TYPE_TASK_COMPLETED, now=now,
        )
        return True

    def _record_once(
        self,
        account: LinkedAccount,
        type_: str,
        title: str,
        message: str,
        day_start: datetime,
        day_end: datetime,
        now: datetime,
    ) -> None:
        if self._notifications.exists_between(account.id, type_, title, day_start, day_end):
            return
        self._notifications.add_notification(
            account.id, title=title, message=message, type_=type_, now=now,
        )
