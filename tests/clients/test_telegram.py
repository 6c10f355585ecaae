"""Tests for the Telegram Bot API transport."""

from __future__ import annotations

import json

import httpx
import pytest

from alertmanager_telegram.clients.telegram import (
    Message,
    TelegramAPIError,
    TelegramFloodError,
    TelegramTransport,
    Update,
)

TOKEN = "123:abc"


def make_transport(handler) -> TelegramTransport:
    return TelegramTransport(TOKEN, timeout=1.0, transport=httpx.MockTransport(handler))


def ok(result) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": result})


# ============================================================================
# Update Decoding Tests
# ============================================================================


class TestMessage:
    """Tests for Message parsing."""

    def test_command(self) -> None:
        message = Message(message_id=1, chat_id=2, text="/Alerts@my_bot json")
        assert message.is_command
        assert message.command == "alerts"
        assert message.command_arguments == "json"

    def test_command_without_arguments(self) -> None:
        message = Message(message_id=1, chat_id=2, text="/status")
        assert message.command == "status"
        assert message.command_arguments == ""

    def test_not_a_command(self) -> None:
        message = Message(message_id=1, chat_id=2, text="hello")
        assert not message.is_command
        assert message.command == ""


class TestUpdate:
    """Tests for Update parsing."""

    def test_message_update(self) -> None:
        update = Update.from_dict(
            {
                "update_id": 10,
                "message": {
                    "message_id": 5,
                    "chat": {"id": -100},
                    "from": {"id": 7, "username": "alice", "first_name": "Alice"},
                    "text": "/help",
                },
            }
        )
        assert update.message is not None
        assert update.message.chat_id == -100
        assert update.message.from_user is not None
        assert update.message.from_user.display_name == "alice"

    def test_callback_update(self) -> None:
        update = Update.from_dict(
            {
                "update_id": 11,
                "callback_query": {
                    "id": "cb1",
                    "data": "token",
                    "from": {"id": 7, "first_name": "Bob", "last_name": "Smith"},
                    "message": {"message_id": 5, "chat": {"id": 1}, "text": "Select job:"},
                },
            }
        )
        assert update.callback_query is not None
        assert update.callback_query.data == "token"
        assert update.callback_query.from_user.display_name == "Bob Smith"
        assert update.callback_query.message is not None


# ============================================================================
# Transport Tests
# ============================================================================


class TestTransport:
    """Tests for TelegramTransport."""

    async def test_send_message(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"message_id": 99})

        message_id = await make_transport(handler).send_message(
            1, "<b>hi</b>", parse_mode="HTML", reply_markup={"inline_keyboard": []}
        )

        assert message_id == 99
        assert seen[0].url.path == f"/bot{TOKEN}/sendMessage"
        body = json.loads(seen[0].content)
        assert body["chat_id"] == 1
        assert body["text"] == "<b>hi</b>"
        assert body["parse_mode"] == "HTML"
        assert body["reply_markup"] == {"inline_keyboard": []}

    async def test_plain_text_omits_parse_mode(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return ok({"message_id": 1})

        await make_transport(handler).send_message(1, "plain")
        assert "parse_mode" not in bodies[0]
        assert "reply_markup" not in bodies[0]

    async def test_flood_error(self) -> None:
        transport = make_transport(
            lambda request: httpx.Response(
                429,
                json={
                    "ok": False,
                    "error_code": 429,
                    "description": "Too Many Requests: retry after 5",
                    "parameters": {"retry_after": 5},
                },
            )
        )
        with pytest.raises(TelegramFloodError) as exc_info:
            await transport.delete_message(1, 2)
        assert exc_info.value.retry_after == 5

    async def test_api_error(self) -> None:
        transport = make_transport(
            lambda request: httpx.Response(
                400,
                json={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"},
            )
        )
        with pytest.raises(TelegramAPIError, match="chat not found") as exc_info:
            await transport.edit_message_text(1, 2, "x")
        assert exc_info.value.error_code == 400

    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(TelegramAPIError, match="unreachable"):
            await make_transport(handler).edit_message_reply_markup(1, 2, {"inline_keyboard": []})

    async def test_get_updates(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return ok(
                [
                    {"update_id": 1, "message": {"message_id": 1, "chat": {"id": 1}}},
                    {"update_id": 2, "message": {"broken": True}},
                ]
            )

        updates = await make_transport(handler).get_updates(offset=1, poll_timeout=0)

        assert bodies[0]["offset"] == 1
        assert bodies[0]["timeout"] == 0
        assert [u.update_id for u in updates] == [1, 2]
        assert updates[0].message is not None
        assert updates[1].message is None
