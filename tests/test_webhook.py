"""Tests for gateway.bot.webhook — Update routing and the always-ok contract."""

import json
import sqlite3
from unittest.mock import patch

import pytest

from gateway.bot.webhook import WebhookGateway, build_components
from gateway.core import messages


@pytest.fixture
def components(db_path, messenger):
    return build_components(db_path=db_path, messenger=messenger)


@pytest.fixture
def gateway(components):
    return WebhookGateway(components)


def _message_update(text, update_id=1, user_id=42, chat_id=4200, username="dana"):
    return {
        "update_id": update_id,
        "message": {
            "message_id": 10,
            "from": {"id": user_id, "is_bot": False, "first_name": "Dana", "username": username},
            "chat": {"id": chat_id, "type": "private"},
            "date": 1741770000,
            "text": text,
        },
    }


def _callback_update(data, update_id=2, user_id=42):
    return {
        "update_id": update_id,
        "callback_query": {
            "id": "cbq-1",
            "from": {"id": user_id, "is_bot": False, "first_name": "Dana"},
            "chat_instance": "x",
            "data": data,
            "message": {
                "message_id": 555,
                "chat": {"id": 4200, "type": "private"},
                "date": 1741770000,
                "text": "📋 Task",
            },
        },
    }


class TestMalformed:
    @pytest.mark.asyncio
    async def test_invalid_json(self, gateway, messenger):
        assert await gateway.handle_payload(b"{not json") == {"ok": True, "error": "malformed update"}
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_update_id(self, gateway):
        result = await gateway.handle_payload({"message": {"text": "hi"}})
        assert result == {"ok": True, "error": "malformed update"}

    @pytest.mark.asyncio
    async def test_update_without_message_or_callback(self, gateway, messenger):
        assert await gateway.handle_payload({"update_id": 5}) == {"ok": True}
        messenger.send_message.assert_not_awaited()


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_redelivered_update_ignored(self, gateway, messenger):
        update = _message_update("/start", update_id=77)
        assert await gateway.handle_payload(update) == {"ok": True}
        assert await gateway.handle_payload(json.dumps(update)) == {"ok": True, "duplicate": True}
        messenger.send_message.assert_awaited_once()


class TestMessageRouting:
    @pytest.mark.asyncio
    async def test_start(self, gateway, messenger):
        await gateway.handle_payload(_message_update("/start"))
        messenger.send_message.assert_awaited_once_with(4200, messages.WELCOME_TEXT)

    @pytest.mark.asyncio
    async def test_connect_issues_code(self, gateway, messenger, commands):
        await gateway.handle_payload(_message_update("/connect"))

        pending = commands.list_unprocessed(42, "connect")
        assert len(pending) == 1
        assert pending[0].payload["username"] == "dana"
        text = messenger.send_message.await_args.args[1]
        assert pending[0].payload["code"] in text

    @pytest.mark.asyncio
    async def test_connect_when_linked(self, gateway, messenger, commands, make_linked):
        make_linked("Dana", 42)
        await gateway.handle_payload(_message_update("/connect"))
        assert commands.list_unprocessed(42, "connect") == []
        assert "already connected" in messenger.send_message.await_args.args[1]

    @pytest.mark.asyncio
    async def test_mytasks_routes(self, gateway, messenger):
        await gateway.handle_payload(_message_update("/mytasks"))
        messenger.send_message.assert_awaited_once_with(4200, messages.CONNECT_FIRST_TEXT)

    @pytest.mark.asyncio
    async def test_assign_routes(self, gateway, messenger, tasks, make_linked):
        make_linked("Boss", 42, role="admin", chat_id=4200)
        member = make_linked("Eve", 43, username="eve")
        await gateway.handle_payload(_message_update("/assign @eve Order supplies due: tomorrow"))
        assigned = tasks.list_active_for_assignee(member.id)
        assert [t.title for t in assigned] == ["Order supplies"]

    @pytest.mark.asyncio
    async def test_invalid_assign_replies_usage(self, gateway, messenger, make_linked):
        make_linked("Boss", 42, role="admin", chat_id=4200)
        await gateway.handle_payload(_message_update("/assign @eve"))
        assert "Usage: /assign" in messenger.send_message.await_args.args[1]

    @pytest.mark.asyncio
    async def test_free_text_help(self, gateway, messenger):
        await gateway.handle_payload(_message_update("hello"))
        messenger.send_message.assert_awaited_once_with(4200, messages.HELP_TEXT)

    @pytest.mark.asyncio
    async def test_message_without_text_ignored(self, gateway, messenger):
        update = _message_update("x")
        del update["message"]["text"]
        assert await gateway.handle_payload(update) == {"ok": True}
        messenger.send_message.assert_not_awaited()


class TestCallbackRouting:
    @pytest.mark.asyncio
    async def test_done_callback(self, gateway, messenger, tasks, make_linked, now):
        member = make_linked("Dana", 42, chat_id=4200)
        task = tasks.add_task("Report", now, assigned_to=member.id)

        assert await gateway.handle_payload(_callback_update(f"done_{task.id}")) == {"ok": True}

        assert tasks.get_task(task.id).is_completed
        messenger.answer_callback.assert_awaited_once_with("cbq-1", messages.ANSWER_DONE)
        assert messenger.edit_message.await_args.args[:2] == (4200, 555)

    @pytest.mark.asyncio
    async def test_comment_then_reply(self, gateway, messenger, tasks, make_linked, now):
        member = make_linked("Dana", 42, chat_id=4200)
        task = tasks.add_task("Report", now, assigned_to=member.id)

        await gateway.handle_payload(_callback_update(f"comment_{task.id}", update_id=10))
        await gateway.handle_payload(_message_update("Blocked on legal", update_id=11))

        notes = tasks.get_task(task.id).notes
        assert "[Telegram 2025-03-12 09:00] Blocked on legal" in notes
        messenger.send_message.assert_awaited_once_with(4200, messages.COMMENT_ADDED_TEXT)


class TestFailures:
    @pytest.mark.asyncio
    async def test_persistence_error_replies_generic(self, gateway, components, messenger):
        with patch.object(components.linking, "issue_connection_code",
                          side_effect=sqlite3.OperationalError("disk I/O error")):
            result = await gateway.handle_payload(_message_update("/connect"))
        assert result == {"ok": True}
        messenger.send_message.assert_awaited_once_with(4200, messages.GENERIC_FAILURE_TEXT)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_acknowledged(self, gateway, components):
        with patch.object(components.assignments, "list_my_tasks", side_effect=RuntimeError("boom")):
            result = await gateway.handle_payload(_message_update("/mytasks"))
        assert result == {"ok": True, "error": "internal error"}

    @pytest.mark.asyncio
    async def test_reply_failure_is_acknowledged(self, gateway, messenger):
        from gateway.ports.messaging_port import MessagingError
        messenger.send_message.side_effect = MessagingError("chat not found")
        assert await gateway.handle_payload(_message_update("/start")) == {"ok": True}

    @pytest.mark.asyncio
    async def test_non_object_body(self, gateway, messenger):
        assert await gateway.handle_payload(b"[1, 2]") == {"ok": True, "error": "malformed update"}
        messenger.send_message.assert_not_awaited()
