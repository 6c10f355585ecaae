"""Outbound chat delivery.

Every message the bot sends, edits or deletes goes through
``MessageDispatcher.dispatch``. Long texts are split into chunks that fit
Telegram's message size limit, and flood control responses are retried
after the delay the Bot API asks for.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from prometheus_client import Counter

from alertmanager_telegram.clients.telegram import TelegramAPIError, TelegramFloodError
from alertmanager_telegram.errors import DeliveryError
from alertmanager_telegram.models import Keyboard, MessagePlan, PlanOperation

if TYPE_CHECKING:
    from alertmanager_telegram.clients.telegram import TelegramTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_MESSAGE_LENGTH = 4096
DEFAULT_MAX_RETRIES = 3
NOT_MODIFIED = "message is not modified"

OPERATIONS = Counter(
    "alertbot_chat_operations_total",
    "Bot API operations attempted by the dispatcher",
    ["method", "outcome"],
)

FLOOD_RETRIES = Counter(
    "alertbot_flood_retries_total",
    "Bot API calls retried after a flood control response",
)


def _cut_line(line: str, limit: int) -> list[str]:
    pieces: list[str] = []
    while len(line) > limit:
        head = line[:limit]
        cut = limit
        tag_start = head.rfind("<")
        entity_start = head.rfind("&")
        if tag_start > head.rfind(">"):
            cut = tag_start
        elif entity_start > head.rfind(";"):
            cut = entity_start
        # a tag or entity longer than the limit cannot be kept whole
        if cut == 0:
            cut = limit
        pieces.append(line[:cut])
        line = line[cut:]
    pieces.append(line)
    return pieces


def split_into_chunks(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks of at most ``limit`` characters.

    Splits happen at newlines, and the newline at a split point is dropped,
    so ``"\\n".join(chunks) == text`` whenever every line fits the limit.
    A single line longer than ``limit`` is cut into pieces of at most
    ``limit`` characters, backing off so that no HTML tag or entity is split.

    Args:
        text: Text to split.
        limit: Maximum chunk length.

    Returns:
        Non-empty list of chunks.
    """
    if limit < 1:
        raise ValueError("limit must be positive")
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current: str | None = None
    for line in text.split("\n"):
        for piece in _cut_line(line, limit):
            if current is None:
                current = piece
            elif len(current) + 1 + len(piece) <= limit:
                current = f"{current}\n{piece}"
            else:
                chunks.append(current)
                current = piece
    if current is not None:
        chunks.append(current)
    return chunks


class MessageDispatcher:
    """Executes MessagePlans against the Telegram transport."""

    def __init__(
        self,
        transport: TelegramTransport,
        *,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            transport: Bot API transport.
            max_message_length: Chunk size limit.
            max_retries: Attempts per Bot API call, flood retries included.
            sleep: Sleep coroutine, injectable for tests.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.transport = transport
        self.max_message_length = max_message_length
        self.max_retries = max_retries
        self._sleep = sleep

    async def _call(self, method: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await call()
            except TelegramFloodError as e:
                if attempt >= self.max_retries:
                    OPERATIONS.labels(method=method, outcome="failed").inc()
                    raise DeliveryError(
                        f"{method} still rate limited after {attempt} attempts"
                    ) from e
                FLOOD_RETRIES.inc()
                logger.warning(
                    "%s rate limited, retrying in %.1fs (attempt %d/%d)",
                    method,
                    e.retry_after,
                    attempt,
                    self.max_retries,
                )
                await self._sleep(e.retry_after)
                continue
            except TelegramAPIError as e:
                OPERATIONS.labels(method=method, outcome="failed").inc()
                raise DeliveryError(f"{method} failed: {e}") from e

            OPERATIONS.labels(method=method, outcome="ok").inc()
            return result

    async def _send_chunks(self, plan: MessagePlan, chunks: list[str]) -> list[int]:
        markup = plan.reply_markup.to_markup() if plan.reply_markup else None
        message_ids = []
        for i, chunk in enumerate(chunks):
            is_last = i == len(chunks) - 1

            async def send(chunk: str = chunk, is_last: bool = is_last) -> int:
                return await self.transport.send_message(
                    plan.chat_id,
                    chunk,
                    parse_mode=plan.parse_mode,
                    reply_markup=markup if is_last else None,
                )

            message_ids.append(await self._call("sendMessage", send))
        return message_ids

    async def _edit(self, plan: MessagePlan, message_id: int, text: str) -> None:
        markup = plan.reply_markup.to_markup() if plan.reply_markup else None
        try:
            await self._call(
                "editMessageText",
                lambda: self.transport.edit_message_text(
                    plan.chat_id,
                    message_id,
                    text,
                    parse_mode=plan.parse_mode,
                    reply_markup=markup,
                ),
            )
        except DeliveryError as e:
            # Telegram rejects edits that change nothing
            if NOT_MODIFIED in str(e.__cause__).lower():
                logger.debug("Message %s unchanged, nothing to edit", message_id)
                return
            raise

    async def dispatch(self, plan: MessagePlan) -> list[int]:
        """Deliver a plan.

        An edit whose text needs more than one chunk is carried out as a
        delete of the old message followed by sends, so the returned ids
        may differ from ``plan.message_id``.

        Args:
            plan: The operation to perform.

        Returns:
            Message ids of the messages that now hold the content.

        Raises:
            DeliveryError: If a Bot API call fails.
        """
        if plan.operation is PlanOperation.SEND:
            chunks = split_into_chunks(plan.text, self.max_message_length)
            return await self._send_chunks(plan, chunks)

        assert plan.message_id is not None
        message_id = plan.message_id

        if plan.operation is PlanOperation.EDIT:
            chunks = split_into_chunks(plan.text, self.max_message_length)
            if len(chunks) == 1:
                await self._edit(plan, message_id, chunks[0])
                return [message_id]
            logger.debug(
                "Edit of message %s needs %d chunks, replacing it", message_id, len(chunks)
            )
            await self._call(
                "deleteMessage",
                lambda: self.transport.delete_message(plan.chat_id, message_id),
            )
            return await self._send_chunks(plan, chunks)

        if plan.operation is PlanOperation.DELETE:
            await self._call(
                "deleteMessage",
                lambda: self.transport.delete_message(plan.chat_id, message_id),
            )
            return []

        markup = (plan.reply_markup or Keyboard()).to_markup()
        await self._call(
            "editMessageReplyMarkup",
            lambda: self.transport.edit_message_reply_markup(plan.chat_id, message_id, markup),
        )
        return [message_id]

