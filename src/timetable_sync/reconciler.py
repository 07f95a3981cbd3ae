"""
Diff-based message reconciliation.

Compares a freshly projected timetable against the last delivered one and
produces per-day actions (send / edit / keep) instead of reposting the whole
week every cycle.

Identity key: the day slot's position. Slot i of the new projection is
displayed by the message that displayed slot i last time.

Whole-resend mode: if there is no previous projection, or any previous slot
never got a message id, every slot is sent fresh and the week is replaced
as a unit.
"""

from enum import Enum

from pydantic import BaseModel, Field

from src.timetable_sync.errors import DeliveryError, DeliveryTransientError
from src.timetable_sync.formatting import format_day_slot
from src.timetable_sync.logging import get_logger
from src.timetable_sync.messaging import MessagePort
from src.timetable_sync.models import DaySlot, MessageIdentity, Projection

log = get_logger(__name__)


class ActionKind(str, Enum):
    SEND = "send"
    EDIT = "edit"
    KEEP = "keep"


class SlotAction(BaseModel):
    """What to do with day slot ``index`` of the new projection."""

    index: int
    kind: ActionKind
    previous: DaySlot | None = None  # the slot this one replaces, if any


class ReconciliationPlan(BaseModel):
    actions: list[SlotAction] = Field(default_factory=list)
    # Previously delivered messages that no new slot takes over
    orphaned: list[MessageIdentity] = Field(default_factory=list)
    whole_resend: bool = False

    def count(self, kind: ActionKind) -> int:
        return sum(1 for action in self.actions if action.kind is kind)


class ReconcileOutcome(BaseModel):
    projection: Projection
    plan: ReconciliationPlan
    # Messages no longer backing any slot; still-pinned ones should be unpinned
    stale: list[MessageIdentity] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------
def projections_match(a: Projection | None, b: Projection | None) -> bool:
    """Structural equality of day order, weekdays and lessons.

    Delivery state is ignored.
    """
    if a is None or b is None:
        return a is b
    if len(a.day_slots) != len(b.day_slots):
        return False
    return all(x.same_content(y) for x, y in zip(a.day_slots, b.day_slots))


def _needs_whole_resend(previous: Projection | None) -> bool:
    if previous is None or previous.is_empty:
        return True
    return any(not slot.delivery.is_sent for slot in previous.day_slots)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------
def plan_reconciliation(
    previous: Projection | None,
    current: Projection,
    *,
    force_send: bool = False,
) -> ReconciliationPlan:
    """Decide per day slot whether to send, edit or keep.

    Args:
        previous: Last delivered projection (with message ids), if any.
        current: Freshly projected timetable (no message ids).
        force_send: Send every slot as a new message regardless of history.

    Returns:
        ReconciliationPlan with one action per slot of ``current``.
    """
    if force_send or _needs_whole_resend(previous):
        orphaned = []
        if previous is not None:
            orphaned = [
                slot.delivery.model_copy()
                for slot in previous.day_slots
                if slot.delivery.is_sent
            ]
        return ReconciliationPlan(
            actions=[
                SlotAction(index=i, kind=ActionKind.SEND)
                for i in range(len(current.day_slots))
            ],
            orphaned=orphaned,
            whole_resend=True,
        )

    actions = []
    for i, slot in enumerate(current.day_slots):
        if i >= len(previous.day_slots):
            actions.append(SlotAction(index=i, kind=ActionKind.SEND))
            continue
        old = previous.day_slots[i]
        kind = ActionKind.KEEP if slot.same_content(old) else ActionKind.EDIT
        actions.append(SlotAction(index=i, kind=kind, previous=old))

    orphaned = [
        slot.delivery.model_copy()
        for slot in previous.day_slots[len(current.day_slots):]
    ]
    return ReconciliationPlan(actions=actions, orphaned=orphaned)


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------
async def _send(
    port: MessagePort, conversation_id: int, text: str, index: int
) -> MessageIdentity:
    """Send a new message. A failure leaves the slot unsent."""
    try:
        message_id = await port.send(conversation_id, text)
    except (DeliveryError, DeliveryTransientError) as e:
        log.error(
            "send_failed",
            slot=index,
            error=type(e).__name__,
            description=e.description,
        )
        return MessageIdentity()
    return MessageIdentity(message_id=message_id, pinned=False)


async def apply_reconciliation(
    conversation_id: int,
    plan: ReconciliationPlan,
    current: Projection,
    port: MessagePort,
) -> ReconcileOutcome:
    """Execute the plan's send/edit calls.

    A failing slot never stops the others. A permanently failed edit falls
    back to sending a new message. A transiently failed edit keeps the
    previous slot as-is so the next cycle sees the difference again.

    Returns:
        ReconcileOutcome whose projection reflects what the chat now shows.
    """
    slots: list[DaySlot] = []
    stale = list(plan.orphaned)

    for action in plan.actions:
        slot = current.day_slots[action.index]
        text = format_day_slot(slot)

        if action.kind is ActionKind.KEEP:
            delivery = action.previous.delivery.model_copy()

        elif action.kind is ActionKind.EDIT:
            old = action.previous.delivery
            try:
                await port.edit(conversation_id, old.message_id, text)
                delivery = old.model_copy()
            except DeliveryTransientError as e:
                log.warning(
                    "edit_deferred",
                    slot=action.index,
                    message_id=old.message_id,
                    description=e.description,
                )
                slots.append(action.previous.model_copy(deep=True))
                continue
            except DeliveryError as e:
                log.warning(
                    "edit_failed_resending",
                    slot=action.index,
                    message_id=old.message_id,
                    error=type(e).__name__,
                    description=e.description,
                )
                stale.append(old.model_copy())
                delivery = await _send(port, conversation_id, text, action.index)

        else:
            delivery = await _send(port, conversation_id, text, action.index)

        slots.append(slot.model_copy(update={"delivery": delivery}, deep=True))

    return ReconcileOutcome(
        projection=Projection(day_slots=slots),
        plan=plan,
        stale=stale,
    )


async def reconcile(
    conversation_id: int,
    previous: Projection | None,
    current: Projection,
    port: MessagePort,
    *,
    force_send: bool = False,
) -> ReconcileOutcome:
    """Plan and apply in one step."""
    plan = plan_reconciliation(previous, current, force_send=force_send)
    log.info(
        "reconciliation_planned",
        whole_resend=plan.whole_resend,
        send=plan.count(ActionKind.SEND),
        edit=plan.count(ActionKind.EDIT),
        keep=plan.count(ActionKind.KEEP),
        orphaned=len(plan.orphaned),
        summary=format_plan_summary(plan),
    )
    return await apply_reconciliation(conversation_id, plan, current, port)


# ---------------------------------------------------------------------------
# Plan summary formatting
# ---------------------------------------------------------------------------
def format_plan_summary(plan: ReconciliationPlan) -> str:
    """Format a plan for human-readable display."""
    mode = "  (whole resend)" if plan.whole_resend else ""
    return (
        f"  Send: {plan.count(ActionKind.SEND)}  |  "
        f"Edit: {plan.count(ActionKind.EDIT)}  |  "
        f"Keep: {plan.count(ActionKind.KEEP)}  |  "
        f"Orphaned: {len(plan.orphaned)}{mode}"
    )
