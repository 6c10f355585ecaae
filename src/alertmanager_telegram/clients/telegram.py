"""Telegram Bot API transport.

Only the handful of Bot API methods the bot needs are wrapped: long
polling for updates plus send, edit, delete and edit-reply-markup. Flood
control (HTTP 429) is surfaced as ``TelegramFloodError`` so the dispatcher
can apply its retry policy; the transport itself never retries.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}/{method}"
DEFAULT_TIMEOUT = 10.0
DEFAULT_POLL_TIMEOUT = 30
ALLOWED_UPDATES = ("message", "edited_message", "callback_query")


class TelegramAPIError(Exception):
    """Raised when a Bot API call fails."""

    def __init__(self, message: str, error_code: int | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


class TelegramFloodError(TelegramAPIError):
    """Raised when the Bot API asks the client to slow down."""

    def __init__(self, retry_after: float, description: str = "Too Many Requests") -> None:
        super().__init__(f"{description} (retry after {retry_after}s)", error_code=429)
        self.retry_after = retry_after


# ============================================================================
# Update types
# ============================================================================


@dataclass(frozen=True)
class User:
    id: int
    username: str = ""
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        """Username when set, otherwise the full name."""
        if self.username:
            return self.username
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> User:
        return cls(
            id=int(data["id"]),
            username=str(data.get("username", "")),
            first_name=str(data.get("first_name", "")),
            last_name=str(data.get("last_name", "")),
        )


@dataclass(frozen=True)
class Message:
    message_id: int
    chat_id: int
    text: str = ""
    from_user: User | None = None

    @property
    def is_command(self) -> bool:
        return self.text.startswith("/")

    @property
    def command(self) -> str:
        """Command name without the leading slash and ``@botname`` suffix."""
        if not self.is_command:
            return ""
        head = self.text.split(maxsplit=1)[0]
        return head[1:].split("@", 1)[0].lower()

    @property
    def command_arguments(self) -> str:
        if not self.is_command:
            return ""
        parts = self.text.split(maxsplit=1)
        return parts[1].strip() if len(parts) > 1 else ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        sender = data.get("from")
        return cls(
            message_id=int(data["message_id"]),
            chat_id=int(data["chat"]["id"]),
            text=str(data.get("text", "")),
            from_user=User.from_dict(sender) if sender else None,
        )


@dataclass(frozen=True)
class CallbackQuery:
    id: str
    data: str
    from_user: User
    message: Message | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CallbackQuery:
        message = data.get("message")
        return cls(
            id=str(data["id"]),
            data=str(data.get("data", "")),
            from_user=User.from_dict(data["from"]),
            message=Message.from_dict(message) if message else None,
        )


@dataclass(frozen=True)
class Update:
    update_id: int
    message: Message | None = None
    edited_message: Message | None = None
    callback_query: CallbackQuery | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Update:
        message = data.get("message")
        edited = data.get("edited_message")
        callback = data.get("callback_query")
        return cls(
            update_id=int(data["update_id"]),
            message=Message.from_dict(message) if message else None,
            edited_message=Message.from_dict(edited) if edited else None,
            callback_query=CallbackQuery.from_dict(callback) if callback else None,
        )


# ============================================================================
# Transport
# ============================================================================


class TelegramTransport:
    """Bot API client over HTTPS."""

    def __init__(
        self,
        bot_token: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            bot_token: Telegram bot token.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.bot_token = bot_token
        self.timeout = timeout
        self._transport = transport

    async def _call(
        self,
        method: str,
        payload: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> Any:
        url = TELEGRAM_API_BASE.format(token=self.bot_token, method=method)
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=payload)
                result = response.json()
        except httpx.TimeoutException as e:
            raise TelegramAPIError(f"{method} timed out") from e
        except httpx.HTTPError as e:
            raise TelegramAPIError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise TelegramAPIError(
                f"{method} returned {response.status_code} with invalid JSON",
                error_code=response.status_code,
            ) from e

        if result.get("ok"):
            return result.get("result")

        error_code = result.get("error_code", response.status_code)
        description = result.get("description", "Unknown error")
        if error_code == 429:
            retry_after = (result.get("parameters") or {}).get("retry_after", 1)
            raise TelegramFloodError(float(retry_after), description)
        raise TelegramAPIError(f"{method}: {error_code} - {description}", error_code=error_code)

    async def get_updates(
        self,
        offset: int | None = None,
        *,
        poll_timeout: int = DEFAULT_POLL_TIMEOUT,
    ) -> list[Update]:
        """Long-poll for new updates.

        Args:
            offset: Identifier of the first update to return.
            poll_timeout: Seconds the server may hold the request open.
        """
        payload: dict[str, Any] = {
            "timeout": poll_timeout,
            "allowed_updates": list(ALLOWED_UPDATES),
        }
        if offset is not None:
            payload["offset"] = offset
        result = await self._call("getUpdates", payload, timeout=poll_timeout + self.timeout)

        updates = []
        for raw in result or []:
            try:
                updates.append(Update.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping undecodable update %s: %s", raw.get("update_id"), e)
                # keep the offset moving past it
                if "update_id" in raw:
                    updates.append(Update(update_id=int(raw["update_id"])))
        return updates

    async def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> int:
        """Send a message and return its message id."""
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        result = await self._call("sendMessage", payload)
        return int(result["message_id"])

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        parse_mode: str | None = None,
        reply_markup: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        await self._call("editMessageText", payload)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def edit_message_reply_markup(
        self,
        chat_id: int,
        message_id: int,
        reply_markup: dict[str, Any],
    ) -> None:
        await self._call(
            "editMessageReplyMarkup",
            {"chat_id": chat_id, "message_id": message_id, "reply_markup": reply_markup},
        )
