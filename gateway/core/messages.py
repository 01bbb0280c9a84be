"""
Task Gateway — Chat texts and keyboards.

All outbound text is HTML (Telegram parse mode); user-supplied values are
escaped before they are embedded.
"""

from __future__ import annotations

import html
from datetime import date, datetime
from zoneinfo import ZoneInfo

from gateway.config import settings
from gateway.core.commands import ASSIGN_USAGE
from gateway.data.models import DailyStats, LinkedAccount, Task
from gateway.ports.messaging_port import Button, Keyboard

WELCOME_TEXT = (
    "👋 <b>Welcome to the task bot!</b>\n\n"
    "Commands:\n"
    "/connect - Link your Telegram to your account\n"
    "/mytasks - View your pending tasks\n"
    "/assign @username Task title - Assign a task (admins)"
)

HELP_TEXT = (
    "I didn't understand that. Available commands:\n"
    "/connect - Link your account\n"
    "/mytasks - View your tasks\n"
    "/assign @username Task title due: tomorrow priority: high"
)

DONE_HINT_TEXT = "To complete a task, use /mytasks and press ✅ Mark Done.\n\n"

CONNECT_FIRST_TEXT = "🔗 Please connect your account first using /connect"
NOT_ADMIN_TEXT = "⛔ Only admins can assign tasks."
NO_TASKS_TEXT = "🎉 You have no pending tasks!"
COMMENT_ADDED_TEXT = "💬 Comment added to task"
GENERIC_FAILURE_TEXT = "❌ Something went wrong, please try again."

# Callback answers
ANSWER_DONE = "✅ Task marked as complete!"
ANSWER_ALREADY_DONE = "✅ Task already completed"
ANSWER_DELAYED = "⏳ Task delayed by 1 day"
ANSWER_COMMENT_PROMPT = "Reply to this message with your comment"
ANSWER_NOT_LINKED = "Please connect your account first"
ANSWER_UNKNOWN = "Unknown action"
ANSWER_NOT_FOUND = "Task not found"
ANSWER_FAILED = "Something went wrong, please try again"


def _esc(value: str | None) -> str:
    return html.escape(value or "", quote=False)


def format_due(value: datetime) -> str:
    local = value.astimezone(ZoneInfo(settings.TIMEZONE))
    return local.strftime("%a %d %b %Y, %H:%M")


def truncate(text: str, limit: int = 100) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


# ---------------------------------------------------------------------------
# Keyboards
# ---------------------------------------------------------------------------


def task_keyboard(task_id: str) -> Keyboard:
    return [
        [Button("✅ Mark Done", f"done_{task_id}"), Button("⏳ Delay", f"delay_{task_id}")],
        [Button("💬 Comment", f"comment_{task_id}")],
    ]


def reminder_keyboard(task_id: str) -> Keyboard:
    return [
        [
            Button("✅ Mark Done", f"done_{task_id}"),
            Button("⏳ Request Extension", f"delay_{task_id}"),
        ],
    ]


# ---------------------------------------------------------------------------
# Task views
# ---------------------------------------------------------------------------


def render_task(task: Task) -> str:
    """Active task card (pending / in-progress)."""
    lines = [f"📋 <b>{_esc(task.title)}</b>", ""]
    if task.description:
        lines.append(_esc(truncate(task.description)))
    lines.append(f"📅 Due: {format_due(task.due_date)}")
    lines.append(f"⚡ Priority: {_esc(task.priority)}")
    lines.append(f"💎 Credits: {task.credit_points}")
    return "\n".join(lines)


def render_completed(task: Task) -> str:
    return (
        f"✅ <s>{_esc(task.title)}</s>\n\n"
        f"<i>Completed</i>\n"
        f"💎 Credits earned: {task.credit_points}"
    )


def render_new_assignment(task: Task, assigner: LinkedAccount) -> str:
    return (
        f"📌 <b>New task from {_esc(assigner.full_name)}</b>\n\n"
        + render_task(task)
    )


def render_assign_confirmation(task: Task, assignee: LinkedAccount) -> str:
    return (
        f"✅ Task <b>{_esc(task.title)}</b> assigned to {_esc(assignee.full_name)}\n"
        f"📅 Due: {format_due(task.due_date)}\n"
        f"⚡ Priority: {_esc(task.priority)}"
    )


def render_assignee_not_found(handle: str) -> str:
    return (
        f"❌ No connected user with username @{_esc(handle)}.\n"
        "They need to link their account with /connect first."
    )


def render_assign_usage() -> str:
    return "❌ Invalid format.\n\n" + _esc(ASSIGN_USAGE)


def render_reminder(task: Task, label: str, now: datetime) -> str:
    hours_left = max(0, round((task.due_date - now).total_seconds() / 3600))
    lines = [f"⏰ <b>Reminder: due in {label}</b>", "", f"📋 <b>{_esc(task.title)}</b>"]
    if task.description:
        lines.append(_esc(truncate(task.description)))
    lines.append("")
    lines.append(f"📅 Due: {format_due(task.due_date)}")
    lines.append(f"⏳ Time left: ~{hours_left} hours")
    lines.append(f"💎 Credits: {task.credit_points}")
    return "\n".join(lines)


def render_completion_notice(task: Task, completed_by: LinkedAccount) -> str:
    return (
        "✅ <b>Task Completed</b>\n\n"
        f"{_esc(completed_by.full_name)} completed <b>{_esc(task.title)}</b>\n"
        f"💎 Credits: {task.credit_points}"
    )


def render_daily_summary(stats: DailyStats, day: date) -> str:
    return (
        "📊 <b>Daily Team Summary</b>\n"
        f"{day.strftime('%A, %d %B %Y')}\n\n"
        f"🆕 New tasks today: {stats.created_today}\n"
        f"✅ Completed today: {stats.completed_today}\n"
        f"⚠️ Overdue: {stats.overdue}\n"
        f"📋 Active: {stats.active}"
    )


# ---------------------------------------------------------------------------
# Account linking
# ---------------------------------------------------------------------------


def render_connection_code(code: str, ttl_minutes: int) -> str:
    return (
        "🔗 <b>Connect your account</b>\n\n"
        f"Your connection code: <code>{code}</code>\n\n"
        "Enter this code in the app under Settings → Telegram.\n"
        f"The code expires in {ttl_minutes} minutes."
    )


def render_already_connected(account: LinkedAccount) -> str:
    return f"✅ You're already connected as <b>{_esc(account.full_name)}</b>."
