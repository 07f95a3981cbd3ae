"""One refresh cycle for one conversation.

fetch -> project -> reconcile -> pin -> persist

Everything the cycle needs comes in through arguments; nothing is shared
between conversations. A StoreError escapes to the caller on purpose: the
messages are already out, and losing their ids would duplicate them next time.
"""

from pydantic import BaseModel

from src.timetable_sync.config import DEFAULT_LINK, KNOWN_CLASSES
from src.timetable_sync.errors import (
    DeliveryError,
    DeliveryTransientError,
    DocumentUnreachableError,
    InvalidDocumentError,
)
from src.timetable_sync.logging import bind_conversation, get_logger
from src.timetable_sync.messaging import MessagePort
from src.timetable_sync.models import (
    ConversationState,
    ParseError,
    ParseErrorKind,
    Weekday,
)
from src.timetable_sync.pinning import PinResult, sync_pins
from src.timetable_sync.projector import project
from src.timetable_sync.reconciler import ActionKind, projections_match, reconcile
from src.timetable_sync.source import GoogleSheetSource
from src.timetable_sync.store import JsonStateStore

log = get_logger(__name__)

CLASS_NAME_NOTICE = "Скорее всего вы не правильно ввели название класса"
GENERIC_NOTICE = (
    "Не удалось обновить информацию, вы уверены, что ввели все данные правильно?"
)
DOCUMENT_NOTICE = (
    "Не удалось разобрать таблицу с расписанием, проверьте сам документ "
    "и доступ к нему по ссылке"
)


class CycleReport(BaseModel):
    conversation_id: int
    fetch_failed: bool = False
    parse_error: ParseError | None = None
    unchanged: bool = False
    sent: int = 0
    edited: int = 0
    kept: int = 0
    pin_result: PinResult | None = None
    saved: bool = False


def parse_error_notice(
    error: ParseError, state: ConversationState, default_link: str = DEFAULT_LINK
) -> str:
    """User-facing text for a projection failure."""
    if error.kind is ParseErrorKind.UNKNOWN_CLASS:
        # Only blame the class name when the sheet is the one we know
        if state.class_name not in KNOWN_CLASSES and state.link == default_link:
            return CLASS_NAME_NOTICE
        return GENERIC_NOTICE
    return DOCUMENT_NOTICE


async def _notify(port: MessagePort, conversation_id: int, text: str) -> None:
    try:
        await port.send(conversation_id, text)
    except (DeliveryError, DeliveryTransientError) as e:
        log.error("notice_not_delivered", error=type(e).__name__, description=e.description)


async def refresh(
    state: ConversationState,
    *,
    source: GoogleSheetSource,
    port: MessagePort,
    store: JsonStateStore,
    today: Weekday,
    force_send: bool = False,
    default_link: str = DEFAULT_LINK,
) -> CycleReport:
    """Bring one chat in line with its timetable sheet.

    Args:
        state: The conversation's current stored state.
        source: Where to download the sheet from.
        port: Where to send/edit/pin messages.
        store: Where the updated state is saved.
        today: Weekday whose message should be pinned.
        force_send: Post every day as a new message (manual re-output).
        default_link: Sheet link that KNOWN_CLASSES describes.

    Returns:
        CycleReport describing what happened.

    Raises:
        StoreError: If the updated state could not be saved.
    """
    cid = state.conversation_id
    report = CycleReport(conversation_id=cid)

    with bind_conversation(cid):
        log.info("cycle_started", class_name=state.class_name, force_send=force_send)

        try:
            grid = await source.fetch(state.link)
        except DocumentUnreachableError as e:
            log.warning("cycle_skipped", reason="document_unreachable", error=str(e))
            report.fetch_failed = True
            return report
        except InvalidDocumentError as e:
            log.error("cycle_skipped", reason="invalid_document", error=str(e))
            await _notify(port, cid, DOCUMENT_NOTICE)
            report.fetch_failed = True
            return report

        result = project(grid, state.class_name)
        if result.error is not None:
            error = result.error
            log.error(
                "projection_failed",
                kind=error.kind.value,
                row=error.row,
                column=error.column,
                detail=error.message,
            )
            await _notify(port, cid, parse_error_notice(error, state, default_link))
            report.parse_error = error
            return report

        current = result.projection
        if current.is_empty:
            log.warning("cycle_skipped", reason="empty_projection")
            return report

        previous = state.last_projection
        stale = [identity.model_copy() for identity in state.stale_pins]
        all_sent = previous is not None and all(
            slot.delivery.is_sent for slot in previous.day_slots
        )
        if not force_send and all_sent and projections_match(previous, current):
            projection = previous.model_copy(deep=True)
            report.unchanged = True
            report.kept = len(projection.day_slots)
            log.info("projection_unchanged", days=len(projection.day_slots))
        else:
            outcome = await reconcile(
                cid, previous, current, port, force_send=force_send
            )
            projection = outcome.projection
            stale.extend(outcome.stale)
            report.sent = outcome.plan.count(ActionKind.SEND)
            report.edited = outcome.plan.count(ActionKind.EDIT)
            report.kept = outcome.plan.count(ActionKind.KEEP)

        report.pin_result = await sync_pins(cid, projection, port, today, stale)
        if report.pin_result is not PinResult.SUCCESS:
            log.warning("pin_pass_incomplete", result=report.pin_result.value)

        leftover = [identity for identity in stale if identity.pinned and identity.is_sent]
        if leftover:
            log.warning(
                "stale_pins_kept",
                message_ids=[identity.message_id for identity in leftover],
            )

        store.save(
            state.model_copy(
                update={"last_projection": projection, "stale_pins": leftover}
            )
        )
        report.saved = True

        log.info(
            "cycle_finished",
            sent=report.sent,
            edited=report.edited,
            kept=report.kept,
            pin_result=report.pin_result.value,
        )
    return report
