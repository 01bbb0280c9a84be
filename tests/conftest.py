"""Shared test fixtures and configuration.

Sets up fake environment variables so gateway.config doesn't sys.exit(),
and provides temp-file stores and a mocked messenger.
"""

import os
import tempfile

# Patch env vars BEFORE any gateway imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("DATABASE_PATH", os.path.join(tempfile.gettempdir(), "gateway-tests.db"))
os.environ["TIMEZONE"] = "UTC"
os.environ["DEFAULT_DUE_HOUR"] = "17"
os.environ["WEBHOOK_SECRET_TOKEN"] = "webhook-test-secret"
os.environ["JOBS_SECRET"] = "jobs-test-secret"

import itertools
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from gateway.ports.messaging_port import SentMessage

# Fixed reference time used across tests: Wednesday 2025-03-12 09:00 UTC
NOW = datetime(2025, 3, 12, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_path(tmp_path):
    """Return a temporary SQLite DB path shared by all stores in a test."""
    return str(tmp_path / "gateway.db")


@pytest.fixture
def accounts(db_path):
    from gateway.data.db import AccountDB
    return AccountDB(db_path=db_path)


@pytest.fixture
def commands(db_path):
    from gateway.data.db import PendingCommandDB
    return PendingCommandDB(db_path=db_path)


@pytest.fixture
def tasks(db_path):
    from gateway.data.db import TaskDB
    return TaskDB(db_path=db_path)


@pytest.fixture
def reminders(db_path):
    from gateway.data.db import ReminderDB
    return ReminderDB(db_path=db_path)


@pytest.fixture
def notifications(db_path):
    from gateway.data.db import NotificationDB
    return NotificationDB(db_path=db_path)


@pytest.fixture
def update_log(db_path):
    from gateway.data.db import UpdateLogDB
    return UpdateLogDB(db_path=db_path)


@pytest.fixture
def messenger():
    """A MessagingPort double. send_message returns increasing message ids."""
    counter = itertools.count(100)
    mock = MagicMock()

    async def _send(chat_id, text, keyboard=None):
        return SentMessage(chat_id=chat_id, message_id=next(counter))

    mock.send_message = AsyncMock(side_effect=_send)
    mock.edit_message = AsyncMock(return_value=None)
    mock.answer_callback = AsyncMock(return_value=None)
    mock.initialize = AsyncMock()
    mock.shutdown = AsyncMock()
    return mock


@pytest.fixture
def make_linked(accounts):
    """Factory: create an account already linked to a Telegram user."""

    def _make(name, telegram_user_id, username=None, role="member", chat_id=None):
        account = accounts.add_account(name, role=role)
        accounts.link_telegram(
            account.id,
            telegram_user_id=telegram_user_id,
            telegram_chat_id=chat_id or telegram_user_id,
            telegram_username=username,
            now=NOW,
        )
        return accounts.get_account(account.id)

    return _make
