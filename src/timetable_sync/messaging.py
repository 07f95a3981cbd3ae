"""Message port - the only way the sync engine talks to a chat.

TelegramMessagePort wraps python-telegram-bot and translates its errors into
the DeliveryError hierarchy so the reconciler and pin logic never see
library exceptions. DryRunMessagePort logs instead of calling Telegram.
"""

import itertools
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Protocol, TypeVar

from telegram import Bot
from telegram.error import (
    BadRequest,
    Forbidden,
    NetworkError,
    RetryAfter,
    TelegramError,
    TimedOut,
)
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
)

from src.timetable_sync.errors import (
    ConversationNotFoundError,
    DeliveryError,
    DeliveryTransientError,
    MessageNotFoundError,
    PermissionDeniedError,
)
from src.timetable_sync.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# Substrings of Telegram's BadRequest descriptions, matched lowercased
_PERMISSION_MARKERS = (
    "not enough rights",
    "have no rights",
    "chat_admin_required",
    "need administrator rights",
)
_CHAT_MARKERS = ("chat not found", "group chat was upgraded", "chat_id_invalid")
_MESSAGE_MARKERS = (
    "message to edit not found",
    "message to pin not found",
    "message to unpin not found",
    "message not found",
    "message_id_invalid",
    "message can't be edited",
)
_NOT_MODIFIED = "message is not modified"


class MessagePort(Protocol):
    """Send/edit/pin/unpin operations on a conversation.

    All failures surface as DeliveryError subclasses (permanent) or
    DeliveryTransientError (retries exhausted).
    """

    async def send(self, conversation_id: int, text: str) -> int: ...

    async def edit(self, conversation_id: int, message_id: int, text: str) -> None: ...

    async def pin(self, conversation_id: int, message_id: int) -> None: ...

    async def unpin(self, conversation_id: int, message_id: int) -> None: ...


def classify_telegram_error(error: TelegramError) -> DeliveryError:
    """Map a non-transient Telegram error onto the DeliveryError hierarchy."""
    description = error.message
    lowered = description.lower()

    if isinstance(error, Forbidden):
        if "kicked" in lowered or "blocked" in lowered or "deleted" in lowered:
            return ConversationNotFoundError(description)
        return PermissionDeniedError(description)

    if any(marker in lowered for marker in _PERMISSION_MARKERS):
        return PermissionDeniedError(description)
    if any(marker in lowered for marker in _CHAT_MARKERS):
        return ConversationNotFoundError(description)
    if any(marker in lowered for marker in _MESSAGE_MARKERS):
        return MessageNotFoundError(description)
    return DeliveryError(description)


def _retry_after_seconds(error: RetryAfter) -> float:
    value = error.retry_after
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _is_flood_control(error: BaseException) -> bool:
    return isinstance(error, DeliveryTransientError) and error.retry_after is not None


def _wait_for_telegram(retry_state) -> float:
    """Honour flood-control hints, otherwise back off a couple of seconds."""
    error = retry_state.outcome.exception()
    if _is_flood_control(error):
        return error.retry_after
    return 2.0 * retry_state.attempt_number


class TelegramMessagePort:
    """MessagePort backed by a python-telegram-bot Bot instance."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

    @retry(
        stop=stop_after_attempt(3),
        wait=_wait_for_telegram,
        retry=retry_if_exception_type(DeliveryTransientError),
        reraise=True,
    )
    async def _call(
        self,
        action: str,
        conversation_id: int,
        request: Callable[[], Awaitable[T]],
    ) -> T:
        """Idempotent request (edit/pin/unpin): every transient failure is retried."""
        return await self._request(action, conversation_id, request)

    @retry(
        stop=stop_after_attempt(3),
        wait=_wait_for_telegram,
        retry=retry_if_exception(_is_flood_control),
        reraise=True,
    )
    async def _call_once(
        self,
        action: str,
        conversation_id: int,
        request: Callable[[], Awaitable[T]],
    ) -> T:
        """Non-idempotent request (send).

        Only flood control is retried: Telegram did not process that request.
        A timeout may already have posted the message, so it is not repeated.
        """
        return await self._request(action, conversation_id, request)

    async def _request(
        self,
        action: str,
        conversation_id: int,
        request: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            return await request()
        except RetryAfter as e:
            seconds = _retry_after_seconds(e)
            log.warning(
                "telegram_flood_control",
                action=action,
                conversation_id=conversation_id,
                retry_after=seconds,
            )
            raise DeliveryTransientError(e.message, retry_after=seconds) from e
        except TimedOut as e:
            log.warning("telegram_timeout", action=action, conversation_id=conversation_id)
            raise DeliveryTransientError(e.message) from e
        except (BadRequest, Forbidden) as e:
            error = classify_telegram_error(e)
            log.error(
                "telegram_request_rejected",
                action=action,
                conversation_id=conversation_id,
                error=type(error).__name__,
                description=e.message,
            )
            raise error from e
        except NetworkError as e:
            log.warning(
                "telegram_network_error",
                action=action,
                conversation_id=conversation_id,
                error=e.message,
            )
            raise DeliveryTransientError(e.message) from e
        except TelegramError as e:
            log.error(
                "telegram_error",
                action=action,
                conversation_id=conversation_id,
                description=e.message,
            )
            raise DeliveryError(e.message) from e

    async def send(self, conversation_id: int, text: str) -> int:
        message = await self._call_once(
            "send",
            conversation_id,
            lambda: self.bot.send_message(chat_id=conversation_id, text=text),
        )
        return message.message_id

    async def edit(self, conversation_id: int, message_id: int, text: str) -> None:
        try:
            await self._call(
                "edit",
                conversation_id,
                lambda: self.bot.edit_message_text(
                    text=text, chat_id=conversation_id, message_id=message_id
                ),
            )
        except DeliveryError as e:
            # Telegram refuses edits that would not change the text
            if _NOT_MODIFIED in e.description.lower():
                log.debug("edit_not_modified", message_id=message_id)
                return
            raise

    async def pin(self, conversation_id: int, message_id: int) -> None:
        await self._call(
            "pin",
            conversation_id,
            lambda: self.bot.pin_chat_message(
                chat_id=conversation_id,
                message_id=message_id,
                disable_notification=True,
            ),
        )

    async def unpin(self, conversation_id: int, message_id: int) -> None:
        await self._call(
            "unpin",
            conversation_id,
            lambda: self.bot.unpin_chat_message(
                chat_id=conversation_id, message_id=message_id
            ),
        )


class DryRunMessagePort:
    """MessagePort that only logs. Hands out increasing fake message ids."""

    def __init__(self, first_id: int = 1) -> None:
        self._ids = itertools.count(first_id)

    async def send(self, conversation_id: int, text: str) -> int:
        message_id = next(self._ids)
        log.info(
            "dry_run_send",
            conversation_id=conversation_id,
            message_id=message_id,
            text=text,
        )
        return message_id

    async def edit(self, conversation_id: int, message_id: int, text: str) -> None:
        log.info(
            "dry_run_edit",
            conversation_id=conversation_id,
            message_id=message_id,
            text=text,
        )

    async def pin(self, conversation_id: int, message_id: int) -> None:
        log.info("dry_run_pin", conversation_id=conversation_id, message_id=message_id)

    async def unpin(self, conversation_id: int, message_id: int) -> None:
        log.info("dry_run_unpin", conversation_id=conversation_id, message_id=message_id)
