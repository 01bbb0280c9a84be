"""Tests for gateway.core.dispatcher — reminder sweep, daily summary, completion notice."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from gateway.core.dispatcher import (
    NotificationDispatcher,
    local_day_bounds,
    reminder_key,
)
from gateway.ports.messaging_port import MessagingError, SentMessage


@pytest.fixture
def dispatcher(messenger, accounts, tasks, reminders, notifications):
    return NotificationDispatcher(messenger, accounts, tasks, reminders, notifications)


@pytest.fixture
def member(make_linked):
    return make_linked("Dana", 42, username="dana", chat_id=4200)


@pytest.fixture
def admin(make_linked):
    return make_linked("Boss", 1, username="boss", role="admin", chat_id=100)


class TestHelpers:
    def test_reminder_key(self):
        assert reminder_key(24, "abc") == "telegram_reminder_24h_abc"

    def test_local_day_bounds(self):
        start, end = local_day_bounds(datetime(2025, 3, 12, 9, 0, tzinfo=timezone.utc))
        assert start == datetime(2025, 3, 12, tzinfo=timezone.utc)
        assert end == datetime(2025, 3, 13, tzinfo=timezone.utc)


class TestReminderSweep:
    @pytest.mark.asyncio
    async def test_23h50m_gets_24h_reminder_only(self, dispatcher, messenger, tasks, reminders, member, now):
        task = tasks.add_task("Report", now + timedelta(hours=23, minutes=50),
                              assigned_to=member.id, credit_points=5)

        result = await dispatcher.run_reminder_sweep(now=now)

        assert result.sent == 1
        messenger.send_message.assert_awaited_once()
        args = messenger.send_message.await_args.args
        assert args[0] == 4200
        assert "24 hours" in args[1]
        assert reminders.is_sent(task.id, reminder_key(24, task.id)) is True
        assert reminders.is_sent(task.id, reminder_key(6, task.id)) is False

    @pytest.mark.asyncio
    async def test_6h_window_fires_on_later_sweep(self, dispatcher, messenger, tasks, reminders, member, now):
        task = tasks.add_task("Report", now + timedelta(hours=23, minutes=50), assigned_to=member.id)
        await dispatcher.run_reminder_sweep(now=now)

        later = now + timedelta(hours=18)
        result = await dispatcher.run_reminder_sweep(now=later)

        assert result.sent == 1
        assert "6 hours" in messenger.send_message.await_args.args[1]
        assert reminders.is_sent(task.id, reminder_key(6, task.id)) is True

    @pytest.mark.asyncio
    async def test_sweep_twice_sends_once(self, dispatcher, messenger, tasks, reminders, member, now):
        task = tasks.add_task("Report", now + timedelta(hours=24), assigned_to=member.id)

        first = await dispatcher.run_reminder_sweep(now=now)
        second = await dispatcher.run_reminder_sweep(now=now + timedelta(minutes=1))

        assert first.sent == 1
        assert second.sent == 0
        assert second.skipped == 1
        assert messenger.send_message.await_count == 1
        records = reminders.list_for_task(task.id)
        assert len(records) == 1
        assert records[0].is_sent is True

    @pytest.mark.asyncio
    async def test_records_bookkeeping(self, dispatcher, tasks, notifications, member, now):
        task = tasks.add_task("Report", now + timedelta(hours=6), assigned_to=member.id)
        await dispatcher.run_reminder_sweep(now=now)

        stored = tasks.get_task(task.id)
        assert stored.telegram_chat_id == 4200
        assert stored.telegram_message_id is not None
        logged = notifications.list_for_user(member.id)
        assert [n.type for n in logged] == ["task_reminder"]

    @pytest.mark.asyncio
    async def test_outside_band_ignored(self, dispatcher, messenger, tasks, member, now):
        tasks.add_task("Far", now + timedelta(hours=25), assigned_to=member.id)
        tasks.add_task("Between", now + timedelta(hours=12), assigned_to=member.id)
        result = await dispatcher.run_reminder_sweep(now=now)
        assert result.sent == 0
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unlinked_assignee_skipped(self, dispatcher, messenger, accounts, tasks, now):
        offline = accounts.add_account("Offline")
        tasks.add_task("Report", now + timedelta(hours=24), assigned_to=offline.id)
        tasks.add_task("Nobody", now + timedelta(hours=24))
        result = await dispatcher.run_reminder_sweep(now=now)
        assert result.sent == 0
        assert result.skipped == 2
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completed_task_skipped(self, dispatcher, messenger, tasks, member, now):
        task = tasks.add_task("Done", now + timedelta(hours=24), assigned_to=member.id)
        tasks.mark_completed(task.id, now)
        await dispatcher.run_reminder_sweep(now=now)
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_isolated_and_retryable(self, dispatcher, messenger, tasks, reminders,
                                                       make_linked, member, now):
        blocked = make_linked("Blocked", 77, chat_id=7700)
        bad = tasks.add_task("Bad", now + timedelta(hours=24), assigned_to=blocked.id)
        good = tasks.add_task("Good", now + timedelta(hours=24), assigned_to=member.id)

        async def _send(chat_id, text, keyboard=None):
            if chat_id == 7700:
                raise MessagingError("Forbidden: bot was blocked by the user")
            return SentMessage(chat_id=chat_id, message_id=1)

        messenger.send_message.side_effect = _send
        result = await dispatcher.run_reminder_sweep(now=now)

        assert result.sent == 1
        assert result.failed == 1
        assert reminders.is_sent(good.id, reminder_key(24, good.id)) is True
        assert reminders.list_for_task(bad.id) == []

    @pytest.mark.asyncio
    async def test_store_failure_after_send_is_not_resent(self, dispatcher, messenger, tasks,
                                                          reminders, member, now):
        task = tasks.add_task("Report", now + timedelta(hours=24), assigned_to=member.id)

        with patch.object(reminders, "mark_sent",
                          side_effect=sqlite3.OperationalError("database is locked")):
            first = await dispatcher.run_reminder_sweep(now=now)

        assert first.sent == 0
        assert first.failed == 0
        assert first.unrecorded == 1

        for minutes in (15, 29):
            retry = await dispatcher.run_reminder_sweep(now=now + timedelta(minutes=minutes))
            assert retry.sent == 0

        assert messenger.send_message.await_count == 1
        records = reminders.list_for_task(task.id)
        assert len(records) == 1
        assert records[0].is_sent is False

    @pytest.mark.asyncio
    async def test_both_windows_same_day_logged_separately(self, dispatcher, tasks, notifications,
                                                           member, now):
        # Due 05:00 tomorrow: the 24h and 6h reminders both fall on today's date.
        due = datetime(2025, 3, 13, 5, 0, tzinfo=timezone.utc)
        tasks.add_task("Report", due, assigned_to=member.id)

        await dispatcher.run_reminder_sweep(now=due - timedelta(hours=24))
        await dispatcher.run_reminder_sweep(now=due - timedelta(hours=6))

        titles = sorted(n.title for n in notifications.list_for_user(member.id))
        assert titles == ["Reminder (24 hours): Report", "Reminder (6 hours): Report"]

    @pytest.mark.asyncio
    async def test_claimed_elsewhere_skipped(self, dispatcher, messenger, tasks, reminders, member, now):
        task = tasks.add_task("Report", now + timedelta(hours=24), assigned_to=member.id)
        reminders.claim(task.id, member.id, reminder_key(24, task.id), now)
        result = await dispatcher.run_reminder_sweep(now=now)
        assert result.sent == 0
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_description_truncated(self, dispatcher, messenger, tasks, member, now):
        tasks.add_task("Report", now + timedelta(hours=24), assigned_to=member.id,
                       description="x" * 150)
        await dispatcher.run_reminder_sweep(now=now)
        text = messenger.send_message.await_args.args[1]
        assert "x" * 100 + "..." in text
        assert "x" * 101 not in text


class TestDailySummary:
    @pytest.mark.asyncio
    async def test_sends_to_each_connected_admin(self, dispatcher, messenger, accounts, tasks,
                                                 make_linked, admin, member, now):
        make_linked("Second Boss", 2, role="admin", chat_id=200)
        accounts.add_account("Offline Boss", role="admin")
        tasks.add_task("New", now + timedelta(days=1), now=now)

        sent = await dispatcher.run_daily_summary(now=now)

        assert sent == 2
        chats = sorted(c.args[0] for c in messenger.send_message.await_args_list)
        assert chats == [100, 200]
        text = messenger.send_message.await_args.args[1]
        assert "Daily Team Summary" in text
        assert "New tasks today: 1" in text

    @pytest.mark.asyncio
    async def test_not_deduplicated(self, dispatcher, messenger, notifications, admin, now):
        await dispatcher.run_daily_summary(now=now)
        await dispatcher.run_daily_summary(now=now + timedelta(minutes=5))
        assert messenger.send_message.await_count == 2
        assert len(notifications.list_for_user(admin.id)) == 1

    @pytest.mark.asyncio
    async def test_failure_for_one_admin_isolated(self, dispatcher, messenger, make_linked, admin, now):
        make_linked("Second Boss", 2, role="admin", chat_id=200)

        async def _send(chat_id, text, keyboard=None):
            if chat_id == 100:
                raise MessagingError("chat not found")
            return SentMessage(chat_id=chat_id, message_id=1)

        messenger.send_message.side_effect = _send
        assert await dispatcher.run_daily_summary(now=now) == 1


class TestCompletionNotice:
    @pytest.mark.asyncio
    async def test_notifies_assigner_once_per_day(self, dispatcher, messenger, tasks, admin, member, now):
        task = tasks.add_task("Report", now, assigned_to=member.id, assigned_by=admin.id)

        assert await dispatcher.notify_task_completed(task, member, now=now) is True
        assert await dispatcher.notify_task_completed(task, member, now=now) is False

        messenger.send_message.assert_awaited_once()
        args = messenger.send_message.await_args.args
        assert args[0] == 100
        assert "Task Completed" in args[1]

    @pytest.mark.asyncio
    async def test_self_completion_not_notified(self, dispatcher, messenger, tasks, admin, now):
        task = tasks.add_task("Report", now, assigned_to=admin.id, assigned_by=admin.id)
        assert await dispatcher.notify_task_completed(task, admin, now=now) is False
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unlinked_assigner(self, dispatcher, messenger, accounts, tasks, member, now):
        boss = accounts.add_account("Boss", role="admin")
        task = tasks.add_task("Report", now, assigned_to=member.id, assigned_by=boss.id)
        assert await dispatcher.notify_task_completed(task, member, now=now) is False
        messenger.send_message.assert_not_awaited()
