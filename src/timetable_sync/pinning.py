"""Keeps today's day slot pinned and every other slot unpinned.

Each slot's MessageIdentity.pinned is the state (Unpinned / Pinned). One pass:

    weekday == today and not pinned  -> pin
    weekday != today and pinned      -> unpin
    otherwise                        -> nothing

A pass converges from any starting state and a second pass on the same day
makes no calls.
"""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from zoneinfo import ZoneInfo

from src.timetable_sync.errors import (
    ConversationNotFoundError,
    DeliveryError,
    DeliveryTransientError,
    MessageNotFoundError,
    PermissionDeniedError,
)
from src.timetable_sync.logging import get_logger
from src.timetable_sync.messaging import MessagePort
from src.timetable_sync.models import MessageIdentity, Projection, Weekday

log = get_logger(__name__)


class PinResult(str, Enum):
    """Outcome of one pin pass for a conversation."""

    SUCCESS = "success"
    NOT_ENOUGH_RIGHTS = "not_enough_rights"  # bot cannot manage pinned messages
    CHAT_NOT_FOUND = "chat_not_found"  # chat deleted or bot removed
    ERROR = "error"  # some per-message call failed; the pass still finished


def today_in(timezone: str, now: datetime | None = None) -> Weekday:
    """Weekday of ``now`` (default: current time) in the given IANA timezone."""
    moment = now or datetime.now(ZoneInfo(timezone))
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(timezone))
    return Weekday(moment.weekday())


async def sync_pins(
    conversation_id: int,
    projection: Projection,
    port: MessagePort,
    today: Weekday,
    stale: Iterable[MessageIdentity] = (),
) -> PinResult:
    """Run one pin pass, mutating ``pinned`` flags in place.

    Args:
        conversation_id: Chat to act on.
        projection: Reconciled projection; its delivery flags are updated.
        port: Message port used for pin/unpin calls.
        today: Weekday whose slot(s) should end up pinned.
        stale: Identities of messages no longer backing any slot. Those still
            pinned are unpinned first. Any left pinned after the pass keep
            pinned=True so the caller can retry them next time.

    Returns:
        PinResult. Permission and missing-chat failures stop the pass early.
    """
    had_errors = False

    try:
        for identity in stale:
            if not identity.pinned or not identity.is_sent:
                continue
            try:
                await port.unpin(conversation_id, identity.message_id)
                identity.pinned = False
                log.info("stale_message_unpinned", message_id=identity.message_id)
            except (PermissionDeniedError, ConversationNotFoundError):
                raise
            except MessageNotFoundError:
                # Deleted from the chat, so it is no longer pinned either
                identity.pinned = False
                log.info("stale_message_gone", message_id=identity.message_id)
            except (DeliveryTransientError, DeliveryError) as e:
                had_errors = True
                log.warning(
                    "stale_unpin_failed",
                    message_id=identity.message_id,
                    description=e.description,
                )

        for position, slot in enumerate(projection.day_slots):
            delivery = slot.delivery
            is_today = slot.weekday == today

            if is_today and not delivery.pinned:
                if not delivery.is_sent:
                    log.error(
                        "pin_skipped_unsent_message",
                        slot=position,
                        weekday=slot.weekday.name if slot.weekday is not None else None,
                    )
                    had_errors = True
                    continue
                action = "pin"
            elif not is_today and delivery.pinned:
                action = "unpin"
            else:
                continue

            try:
                if action == "pin":
                    await port.pin(conversation_id, delivery.message_id)
                    delivery.pinned = True
                else:
                    await port.unpin(conversation_id, delivery.message_id)
                    delivery.pinned = False
            except (PermissionDeniedError, ConversationNotFoundError):
                raise
            except (DeliveryTransientError, DeliveryError) as e:
                had_errors = True
                log.warning(
                    f"{action}_failed",
                    slot=position,
                    message_id=delivery.message_id,
                    error=type(e).__name__,
                    description=e.description,
                )
                continue

            log.info(f"message_{action}ned", slot=position, message_id=delivery.message_id)

    except PermissionDeniedError as e:
        log.error("pin_aborted", reason="not_enough_rights", description=e.description)
        return PinResult.NOT_ENOUGH_RIGHTS
    except ConversationNotFoundError as e:
        log.error("pin_aborted", reason="chat_not_found", description=e.description)
        return PinResult.CHAT_NOT_FOUND

    return PinResult.ERROR if had_errors else PinResult.SUCCESS
