"""
Task Gateway — SQLite storage.

All cross-invocation state lives here: linked accounts, pending chat commands,
task fields touched from chat, reminder dedup records, notifications and the
inbound update log. Handlers keep no in-process state between requests, so the
conditional updates and unique indexes below are the only synchronization point.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from gateway.data.models import (
    ACTIVE_STATUSES,
    COMMAND_CONNECT,
    COMMAND_PENDING_COMMENT,
    ROLE_ADMIN,
    ROLE_MEMBER,
    STATUS_COMPLETED,
    STATUS_OVERDUE,
    STATUS_PENDING,
    DailyStats,
    LinkedAccount,
    Notification,
    PendingCommand,
    ReminderRecord,
    Task,
)

logger = logging.getLogger(__name__)


def to_db_time(value: datetime) -> str:
    """Serialize a datetime as a UTC ISO string with second precision.

    Naive datetimes are taken as UTC. A fixed format keeps string comparison
    in SQL equivalent to time comparison.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def from_db_time(raw: str | None) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromisoformat(raw)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _SQLiteStore:
    """Shared connection handling; subclasses create their own tables."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from gateway.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


class AccountDB(_SQLiteStore):
    """Internal accounts and their Telegram binding."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id                     TEXT PRIMARY KEY,
                    full_name              TEXT    NOT NULL,
                    role                   TEXT    NOT NULL DEFAULT 'member',
                    telegram_user_id       INTEGER,
                    telegram_chat_id       INTEGER,
                    telegram_username      TEXT,
                    is_telegram_connected  INTEGER NOT NULL DEFAULT 0,
                    telegram_connected_at  TEXT
                )
            """)
            # One internal account per Telegram user; NULLs don't collide
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_profiles_telegram_user "
                "ON profiles (telegram_user_id)"
            )
        logger.debug("Profiles table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> LinkedAccount:
        return LinkedAccount(
            id=row["id"],
            full_name=row["full_name"],
            role=row["role"],
            telegram_user_id=row["telegram_user_id"],
            telegram_chat_id=row["telegram_chat_id"],
            telegram_username=row["telegram_username"],
            is_telegram_connected=bool(row["is_telegram_connected"]),
            telegram_connected_at=from_db_time(row["telegram_connected_at"]),
        )

    def add_account(
        self,
        full_name: str,
        role: str = ROLE_MEMBER,
        account_id: str | None = None,
    ) -> LinkedAccount:
        """Insert an unlinked account (normally done by the owning account system)."""
        account_id = account_id or str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO profiles (id, full_name, role) VALUES (?, ?, ?)",
                (account_id, full_name, role),
            )
        logger.info("Account added: %s '%s' (%s)", account_id, full_name, role)
        return LinkedAccount(id=account_id, full_name=full_name, role=role)

    def get_account(self, account_id: str) -> LinkedAccount | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE id = ?", (account_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def find_by_telegram_user(self, telegram_user_id: int) -> LinkedAccount | None:
        """Return the account bound to this Telegram user, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM profiles WHERE telegram_user_id = ?",
                (telegram_user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def find_by_username(self, username: str) -> LinkedAccount | None:
        """Case-insensitive lookup of a connected account by Telegram username."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM profiles
                WHERE LOWER(telegram_username) = LOWER(?)
                  AND is_telegram_connected = 1
                """,
                (username.lstrip("@"),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def link_telegram(
        self,
        account_id: str,
        telegram_user_id: int,
        telegram_chat_id: int,
        telegram_username: str | None,
        now: datetime | None = None,
    ) -> bool:
        """Bind a Telegram identity to an account.

        Returns False if the account doesn't exist. Raises sqlite3.IntegrityError
        if the Telegram user is already bound to a different account.
        """
        now = now or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE profiles
                SET telegram_user_id = ?, telegram_chat_id = ?, telegram_username = ?,
                    is_telegram_connected = 1, telegram_connected_at = ?
                WHERE id = ?
                """,
                (telegram_user_id, telegram_chat_id, telegram_username,
                 to_db_time(now), account_id),
            )
        linked = cursor.rowcount > 0
        if linked:
            logger.info("Account %s linked to Telegram user %d", account_id, telegram_user_id)
        return linked

    def unlink_telegram(self, account_id: str) -> bool:
        """Clear every Telegram field on an account."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE profiles
                SET telegram_user_id = NULL, telegram_chat_id = NULL,
                    telegram_username = NULL, is_telegram_connected = 0,
                    telegram_connected_at = NULL
                WHERE id = ? AND is_telegram_connected = 1
                """,
                (account_id,),
            )
        unlinked = cursor.rowcount > 0
        if unlinked:
            logger.info("Account %s disconnected from Telegram", account_id)
        return unlinked

    def list_connected_admins(self) -> list[LinkedAccount]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM profiles
                WHERE role = ? AND is_telegram_connected = 1
                  AND telegram_chat_id IS NOT NULL
                ORDER BY full_name
                """,
                (ROLE_ADMIN,),
            ).fetchall()
        return [self._row_to_account(r) for r in rows]


class PendingCommandDB(_SQLiteStore):
    """Commands issued from chat that are consumed later (codes, pending comments)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS telegram_commands (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    telegram_user_id  INTEGER NOT NULL,
                    telegram_chat_id  INTEGER NOT NULL,
                    command           TEXT    NOT NULL,
                    task_id           TEXT,
                    payload           TEXT    NOT NULL DEFAULT '{}',
                    processed         INTEGER NOT NULL DEFAULT 0,
                    processed_at      TEXT,
                    created_at        TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_commands_user "
                "ON telegram_commands (telegram_user_id, command, processed)"
            )
        logger.debug("Telegram commands table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_command(row: sqlite3.Row) -> PendingCommand:
        return PendingCommand(
            id=row["id"],
            telegram_user_id=row["telegram_user_id"],
            telegram_chat_id=row["telegram_chat_id"],
            command=row["command"],
            payload=json.loads(row["payload"] or "{}"),
            task_id=row["task_id"],
            processed=bool(row["processed"]),
            processed_at=from_db_time(row["processed_at"]),
            created_at=from_db_time(row["created_at"]),
        )

    def add_command(
        self,
        telegram_user_id: int,
        telegram_chat_id: int,
        command: str,
        payload: dict | None = None,
        task_id: str | None = None,
        now: datetime | None = None,
    ) -> PendingCommand:
        now = now or _utcnow()
        payload = payload or {}
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO telegram_commands
                    (telegram_user_id, telegram_chat_id, command, task_id, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (telegram_user_id, telegram_chat_id, command, task_id,
                 json.dumps(payload), to_db_time(now)),
            )
            command_id = cursor.lastrowid
        logger.info(
            "Pending command #%d '%s' stored for Telegram user %d",
            command_id, command, telegram_user_id,
        )
        return PendingCommand(
            id=command_id,
            telegram_user_id=telegram_user_id,
            telegram_chat_id=telegram_chat_id,
            command=command,
            payload=payload,
            task_id=task_id,
            created_at=from_db_time(to_db_time(now)),
        )

    def get_command(self, command_id: int) -> PendingCommand | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM telegram_commands WHERE id = ?", (command_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_command(row)

    def find_connect_by_code(
        self, code: str, issued_after: datetime,
    ) -> PendingCommand | None:
        """Newest unprocessed connect command carrying this code (case-insensitive)."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM telegram_commands
                WHERE command = ? AND processed = 0 AND created_at >= ?
                  AND UPPER(json_extract(payload, '$.code')) = UPPER(?)
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (COMMAND_CONNECT, to_db_time(issued_after), code.strip()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_command(row)

    def latest_pending_comment(
        self, telegram_user_id: int, since: datetime,
    ) -> PendingCommand | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM telegram_commands
                WHERE telegram_user_id = ? AND command = ? AND processed = 0
                  AND created_at >= ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (telegram_user_id, COMMAND_PENDING_COMMENT, to_db_time(since)),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_command(row)

    def list_unprocessed(self, telegram_user_id: int, command: str) -> list[PendingCommand]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM telegram_commands
                WHERE telegram_user_id = ? AND command = ? AND processed = 0
                ORDER BY created_at, id
                """,
                (telegram_user_id, command),
            ).fetchall()
        return [self._row_to_command(r) for r in rows]

    def mark_processed(self, command_id: int, now: datetime | None = None) -> bool:
        """Consume a command. Only the first caller gets True."""
        now = now or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE telegram_commands SET processed = 1, processed_at = ?
                WHERE id = ? AND processed = 0
                """,
                (to_db_time(now), command_id),
            )
        return cursor.rowcount == 1

    def supersede(
        self, telegram_user_id: int, command: str, now: datetime | None = None,
    ) -> int:
        """Mark every outstanding command of this kind for the user as processed."""
        now = now or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE telegram_commands SET processed = 1, processed_at = ?
                WHERE telegram_user_id = ? AND command = ? AND processed = 0
                """,
                (to_db_time(now), telegram_user_id, command),
            )
        return cursor.rowcount

    def purge_stale(self, connect_before: datetime, comment_before: datetime) -> int:
        """Delete consumed commands and unconsumed ones past their lifetime."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM telegram_commands
                WHERE processed = 1
                   OR (command = ? AND created_at < ?)
                   OR (command = ? AND created_at < ?)
                """,
                (COMMAND_CONNECT, to_db_time(connect_before),
                 COMMAND_PENDING_COMMENT, to_db_time(comment_before)),
            )
        purged = cursor.rowcount
        if purged:
            logger.info("Purged %d stale Telegram commands", purged)
        return purged


class TaskDB(_SQLiteStore):
    """Task rows, limited to the fields the chat gateway reads and writes."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id                   TEXT PRIMARY KEY,
                    title                TEXT    NOT NULL,
                    description          TEXT    NOT NULL DEFAULT '',
                    status               TEXT    NOT NULL DEFAULT 'pending',
                    priority             TEXT    NOT NULL DEFAULT 'medium',
                    due_date             TEXT    NOT NULL,
                    assigned_to          TEXT,
                    assigned_by          TEXT,
                    credit_points        INTEGER NOT NULL DEFAULT 0,
                    notes                TEXT,
                    task_type            TEXT    NOT NULL DEFAULT 'team',
                    telegram_message_id  INTEGER,
                    telegram_chat_id     INTEGER,
                    created_at           TEXT    NOT NULL,
                    completed_at         TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks (status, due_date)"
            )
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            due_date=from_db_time(row["due_date"]),
            assigned_to=row["assigned_to"],
            assigned_by=row["assigned_by"],
            credit_points=row["credit_points"],
            notes=row["notes"],
            task_type=row["task_type"],
            telegram_message_id=row["telegram_message_id"],
            telegram_chat_id=row["telegram_chat_id"],
            created_at=from_db_time(row["created_at"]),
            completed_at=from_db_time(row["completed_at"]),
        )

    def add_task(
        self,
        title: str,
        due_date: datetime,
        assigned_to: str | None = None,
        assigned_by: str | None = None,
        priority: str = "medium",
        credit_points: int = 0,
        description: str = "",
        status: str = STATUS_PENDING,
        now: datetime | None = None,
        task_id: str | None = None,
    ) -> Task:
        """Insert a task. Ids are uuid4 strings, which never contain underscores."""
        now = now or _utcnow()
        task_id = task_id or str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks
                    (id, title, description, status, priority, due_date,
                     assigned_to, assigned_by, credit_points, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (task_id, title, description, status, priority, to_db_time(due_date),
                 assigned_to, assigned_by, credit_points, to_db_time(now)),
            )
        logger.info("Task added: %s '%s' due %s", task_id, title, to_db_time(due_date))
        return self.get_task(task_id)

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_active_for_assignee(self, account_id: str, limit: int = 10) -> list[Task]:
        placeholders = ", ".join("?" for _ in ACTIVE_STATUSES)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM tasks
                WHERE assigned_to = ? AND status IN ({placeholders})
                ORDER BY due_date
                LIMIT ?
                """,
                (account_id, *ACTIVE_STATUSES, limit),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_due_between(self, start: datetime, end: datetime) -> list[Task]:
        """Non-terminal tasks with start <= due_date <= end."""
        placeholders = ", ".join("?" for _ in ACTIVE_STATUSES)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM tasks
                WHERE status IN ({placeholders})
                  AND due_date >= ? AND due_date <= ?
                ORDER BY due_date
                """,
                (*ACTIVE_STATUSES, to_db_time(start), to_db_time(end)),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def mark_completed(self, task_id: str, now: datetime | None = None) -> bool:
        """Complete a task. Returns False if it was already completed (or missing)."""
        now = now or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks SET status = ?, completed_at = ?
                WHERE id = ? AND status != ?
                """,
                (STATUS_COMPLETED, to_db_time(now), task_id, STATUS_COMPLETED),
            )
        completed = cursor.rowcount == 1
        if completed:
            logger.info("Task %s marked completed", task_id)
        return completed

    def set_due_date(self, task_id: str, due_date: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET due_date = ? WHERE id = ?",
                (to_db_time(due_date), task_id),
            )
        logger.info("Task %s due date set to %s", task_id, to_db_time(due_date))

    def append_note(self, task_id: str, entry: str) -> bool:
        """Append a note entry in a single statement (no read-modify-write)."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks
                SET notes = CASE
                    WHEN notes IS NULL OR notes = '' THEN ?
                    ELSE notes || char(10) || char(10) || ?
                END
                WHERE id = ?
                """,
                (entry, entry, task_id),
            )
        return cursor.rowcount == 1

    def set_telegram_message(self, task_id: str, chat_id: int, message_id: int) -> None:
        """Remember the last chat message showing this task, for later edits."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE tasks SET telegram_chat_id = ?, telegram_message_id = ? WHERE id = ?",
                (chat_id, message_id, task_id),
            )

    def daily_stats(self, day_start: datetime) -> DailyStats:
        since = to_db_time(day_start)
        placeholders = ", ".join("?" for _ in ACTIVE_STATUSES)
        with self._connect() as conn:
            created = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE created_at >= ?", (since,)
            ).fetchone()[0]
            completed = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE status = ? AND completed_at >= ?",
                (STATUS_COMPLETED, since),
            ).fetchone()[0]
            overdue = conn.execute(
                "SELECT COUNT(*) FROM tasks WHERE status = ?", (STATUS_OVERDUE,)
            ).fetchone()[0]
            active = conn.execute(
                f"SELECT COUNT(*) FROM tasks WHERE status IN ({placeholders})",
                ACTIVE_STATUSES,
            ).fetchone()[0]
        return DailyStats(
            created_today=created,
            completed_today=completed,
            overdue=overdue,
            active=active,
        )


class ReminderDB(_SQLiteStore):
    """Per-(task, window) reminder records guarding against duplicate sends."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminders (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id        TEXT    NOT NULL,
                    user_id        TEXT    NOT NULL,
                    message        TEXT    NOT NULL,
                    is_sent        INTEGER NOT NULL DEFAULT 0,
                    reminder_time  TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_reminders_key "
                "ON reminders (task_id, message)"
            )
        logger.debug("Reminders table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReminderRecord:
        return ReminderRecord(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            message=row["message"],
            is_sent=bool(row["is_sent"]),
            reminder_time=from_db_time(row["reminder_time"]),
        )

    def is_sent(self, task_id: str, key: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM reminders WHERE task_id = ? AND message = ? AND is_sent = 1",
                (task_id, key),
            ).fetchone()
        return row is not None

    def claim(
        self,
        task_id: str,
        user_id: str,
        key: str,
        now: datetime | None = None,
        stale_after: timedelta = timedelta(minutes=10),
    ) -> bool:
        """Reserve a reminder key before sending. Only one claimant wins.

        Unsent claims older than `stale_after` belong to an invocation that
        died mid-send and are taken over.
        """
        now = now or _utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                DELETE FROM reminders
                WHERE task_id = ? AND message = ? AND is_sent = 0 AND reminder_time < ?
                """,
                (task_id, key, to_db_time(now - stale_after)),
            )
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO reminders (task_id, user_id, message, is_sent, reminder_time)
                VALUES (?, ?, ?, 0, ?)
                """,
                (task_id, user_id, key, to_db_time(now)),
            )
        return cursor.rowcount == 1

    def mark_sent(self, task_id: str, key: str, now: datetime | None = None) -> None:
        now = now or _utcnow()
        with self._connect() as conn:
            conn.execute(
                "UPDATE reminders SET is_sent = 1, reminder_time = ? WHERE task_id = ? AND message = ?",
                (to_db_time(now), task_id, key),
            )

    def release(self, task_id: str, key: str) -> None:
        """Drop an unsent claim so a later sweep can retry."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM reminders WHERE task_id = ? AND message = ? AND is_sent = 0",
                (task_id, key),
            )

    def list_for_task(self, task_id: str) -> list[ReminderRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reminders WHERE task_id = ? ORDER BY id", (task_id,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]


class NotificationDB(_SQLiteStore):
    """Append-only notification log with same-day duplicate checks."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     TEXT NOT NULL,
                    title       TEXT NOT NULL,
                    message     TEXT NOT NULL,
                    type        TEXT NOT NULL,
                    channel     TEXT NOT NULL DEFAULT 'telegram',
                    status      TEXT NOT NULL DEFAULT 'sent',
                    created_at  TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_notifications_dedup "
                "ON notifications (user_id, type, title, created_at)"
            )
        logger.debug("Notifications table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            type=row["type"],
            channel=row["channel"],
            status=row["status"],
            created_at=from_db_time(row["created_at"]),
        )

    def exists_between(
        self, user_id: str, type_: str, title: str, start: datetime, end: datetime,
    ) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM notifications
                WHERE user_id = ? AND type = ? AND title = ?
                  AND created_at >= ? AND created_at < ?
                LIMIT 1
                """,
                (user_id, type_, title, to_db_time(start), to_db_time(end)),
            ).fetchone()
        return row is not None

    def add_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type_: str,
        channel: str = "telegram",
        status: str = "sent",
        now: datetime | None = None,
    ) -> Notification:
        now = now or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notifications (user_id, title, message, type, channel, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, title, message, type_, channel, status, to_db_time(now)),
            )
            notification_id = cursor.lastrowid
        return Notification(
            id=notification_id,
            user_id=user_id,
            title=title,
            message=message,
            type=type_,
            channel=channel,
            status=status,
            created_at=from_db_time(to_db_time(now)),
        )

    def list_for_user(self, user_id: str) -> list[Notification]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM notifications WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [self._row_to_notification(r) for r in rows]


class UpdateLogDB(_SQLiteStore):
    """Log of inbound Telegram update ids, used to drop redeliveries."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS telegram_updates (
                    update_id    INTEGER PRIMARY KEY,
                    received_at  TEXT NOT NULL
                )
            """)
        logger.debug("Telegram updates table initialized at %s", self._db_path)

    def claim(self, update_id: int, now: datetime | None = None) -> bool:
        """Record an update id. False means it was already seen."""
        now = now or _utcnow()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO telegram_updates (update_id, received_at) VALUES (?, ?)",
                (update_id, to_db_time(now)),
            )
        return cursor.rowcount == 1

    def purge_before(self, cutoff: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM telegram_updates WHERE received_at < ?",
                (to_db_time(cutoff),),
            )
        return cursor.rowcount
