"""
Task Gateway — Data Models.

Rows the gateway reads and writes. Accounts and tasks are owned by the
task-tracking application; the gateway only touches the fields listed here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# Task statuses
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_OVERDUE = "overdue"

ACTIVE_STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS)

# PendingCommand kinds
COMMAND_CONNECT = "connect"
COMMAND_PENDING_COMMENT = "pending_comment"

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"


@dataclass
class LinkedAccount:
    """An internal account, optionally bound to a Telegram identity."""

    id: str
    full_name: str
    role: str = ROLE_MEMBER
    telegram_user_id: int | None = None    # unique across accounts
    telegram_chat_id: int | None = None
    telegram_username: str | None = None   # display only
    is_telegram_connected: bool = False
    telegram_connected_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def can_receive_messages(self) -> bool:
        return self.is_telegram_connected and self.telegram_chat_id is not None


@dataclass
class PendingCommand:
    """A short-lived command issued from chat and consumed exactly once.

    `connect` payload:          {"code": "123456", "username": "...", "issued_at": "..."}
    `pending_comment` payload:  {"message_id": 42}
    """

    id: int
    telegram_user_id: int
    telegram_chat_id: int
    command: str
    payload: dict = field(default_factory=dict)
    task_id: str | None = None
    processed: bool = False
    processed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class Task:
    """The subset of a task row the gateway touches."""

    id: str
    title: str
    due_date: datetime
    status: str = STATUS_PENDING
    description: str = ""
    priority: str = "medium"
    assigned_to: str | None = None
    assigned_by: str | None = None
    credit_points: int = 0
    notes: str | None = None
    task_type: str = "team"
    telegram_message_id: int | None = None
    telegram_chat_id: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED


@dataclass
class ReminderRecord:
    """Dedup record for one reminder window of one task.

    `message` holds the dedup key, e.g. "telegram_reminder_24h_<task id>".
    """

    id: int
    task_id: str
    user_id: str
    message: str
    is_sent: bool
    reminder_time: datetime


@dataclass
class Notification:
    """Append-only delivery/audit record."""

    id: int
    user_id: str
    title: str
    message: str
    type: str
    channel: str = "telegram"
    status: str = "sent"
    created_at: datetime | None = None


@dataclass
class DailyStats:
    """Same-day aggregate counts for the admin summary."""

    created_today: int = 0
    completed_today: int = 0
    overdue: int = 0
    active: int = 0
