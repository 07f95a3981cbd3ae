from __future__ import annotations

import asyncio

from structlog.testing import capture_logs

from src.timetable_sync.errors import (
    DeliveryTransientError,
    MessageNotFoundError,
    PermissionDeniedError,
)
from src.timetable_sync.models import MessageIdentity, Weekday
from src.timetable_sync.reconciler import (
    ActionKind,
    format_plan_summary,
    plan_reconciliation,
    projections_match,
    reconcile,
)
from tests.conftest import FakeMessagePort, day, projection

CHAT = -100500


def _delivered_week():
    return projection(
        day(Weekday.MONDAY, "Алгебра", "Физика", message_id=11, pinned=True),
        day(Weekday.TUESDAY, "Химия", message_id=12),
        day(Weekday.WEDNESDAY, "История", "", "ОБЖ", message_id=13),
    )


def _fresh_week():
    return projection(
        day(Weekday.MONDAY, "Алгебра", "Физика"),
        day(Weekday.TUESDAY, "Химия"),
        day(Weekday.WEDNESDAY, "История", "", "ОБЖ"),
    )


def test_first_delivery_sends_every_day(port: FakeMessagePort) -> None:
    outcome = asyncio.run(reconcile(CHAT, None, _fresh_week(), port))

    assert outcome.plan.whole_resend
    assert len(port.actions("send")) == 3
    assert port.actions("edit") == []
    ids = [s.delivery.message_id for s in outcome.projection.day_slots]
    assert ids == [101, 102, 103]
    assert all(not s.delivery.pinned for s in outcome.projection.day_slots)
    assert port.actions("send")[0][3].startswith("Понедельник\nАлгебра")


def test_identical_projection_makes_no_calls(port: FakeMessagePort) -> None:
    previous = _delivered_week()

    outcome = asyncio.run(reconcile(CHAT, previous, _fresh_week(), port))

    assert port.calls == []
    assert [s.delivery for s in outcome.projection.day_slots] == [
        s.delivery for s in previous.day_slots
    ]
    assert outcome.plan.count(ActionKind.KEEP) == 3


def test_single_changed_day_is_edited_in_place(port: FakeMessagePort) -> None:
    current = _fresh_week()
    current.day_slots[0].lessons[1].room = "302"

    outcome = asyncio.run(reconcile(CHAT, _delivered_week(), current, port))

    assert port.actions("send") == []
    (edit,) = port.actions("edit")
    assert edit[2] == 11
    assert "{в 302}" in edit[3]
    monday = outcome.projection.day_slots[0]
    assert monday.delivery == MessageIdentity(message_id=11, pinned=True)
    assert monday.lessons[1].room == "302"


def test_unsent_previous_day_forces_whole_resend(port: FakeMessagePort) -> None:
    previous = _delivered_week()
    previous.day_slots[1].delivery = MessageIdentity()

    plan = plan_reconciliation(previous, _fresh_week())

    assert plan.whole_resend
    assert [a.kind for a in plan.actions] == [ActionKind.SEND] * 3
    assert [o.message_id for o in plan.orphaned] == [11, 13]


def test_force_send_ignores_history() -> None:
    plan = plan_reconciliation(_delivered_week(), _fresh_week(), force_send=True)

    assert plan.whole_resend
    assert plan.count(ActionKind.SEND) == 3
    assert len(plan.orphaned) == 3


def test_extra_day_is_sent_and_missing_day_is_orphaned() -> None:
    longer = _fresh_week()
    longer.day_slots.append(day(Weekday.THURSDAY, "Музыка"))
    plan = plan_reconciliation(_delivered_week(), longer)
    assert [a.kind for a in plan.actions] == [
        ActionKind.KEEP,
        ActionKind.KEEP,
        ActionKind.KEEP,
        ActionKind.SEND,
    ]
    assert plan.orphaned == []

    shorter = _fresh_week()
    del shorter.day_slots[2]
    plan = plan_reconciliation(_delivered_week(), shorter)
    assert plan.count(ActionKind.KEEP) == 2
    assert [o.message_id for o in plan.orphaned] == [13]


def test_failed_edit_falls_back_to_send(port: FakeMessagePort) -> None:
    current = _fresh_week()
    current.day_slots[0].lessons[0].subject = "Геометрия"
    current.day_slots[2].lessons[0].subject = "Право"
    port.fail_on("edit", MessageNotFoundError("message to edit not found"), message_id=11)

    outcome = asyncio.run(reconcile(CHAT, _delivered_week(), current, port))

    assert [c[2] for c in port.actions("edit")] == [11, 13]
    assert len(port.actions("send")) == 1
    monday = outcome.projection.day_slots[0]
    assert monday.delivery == MessageIdentity(message_id=101, pinned=False)
    assert outcome.projection.day_slots[2].delivery.message_id == 13
    assert [s.message_id for s in outcome.stale] == [11]


def test_transient_edit_failure_keeps_previous_slot(port: FakeMessagePort) -> None:
    current = _fresh_week()
    current.day_slots[1].lessons[0].subject = "Биология"
    port.fail_on("edit", DeliveryTransientError("timed out"), message_id=12)

    outcome = asyncio.run(reconcile(CHAT, _delivered_week(), current, port))

    assert port.actions("send") == []
    tuesday = outcome.projection.day_slots[1]
    assert tuesday.lessons[0].subject == "Химия"
    assert tuesday.delivery.message_id == 12


def test_failed_send_leaves_day_unsent(port: FakeMessagePort) -> None:
    port.fail_on("send", PermissionDeniedError("not enough rights to send text messages"))

    outcome = asyncio.run(reconcile(CHAT, None, _fresh_week(), port))

    assert all(s.delivery.message_id is None for s in outcome.projection.day_slots)


def test_projections_match_ignores_delivery_state() -> None:
    assert projections_match(_delivered_week(), _fresh_week())
    assert projections_match(None, None)
    assert not projections_match(None, _fresh_week())

    changed = _fresh_week()
    changed.day_slots[2].lessons.pop()
    assert not projections_match(_delivered_week(), changed)


def test_plan_summary() -> None:
    changed = _fresh_week()
    changed.day_slots[0].lessons[0].teacher = "Новая"

    summary = format_plan_summary(plan_reconciliation(_delivered_week(), changed))

    assert "Send: 0" in summary
    assert "Edit: 1" in summary
    assert "Keep: 2" in summary
    assert "whole resend" not in summary


def test_plan_summary_is_logged(port: FakeMessagePort) -> None:
    with capture_logs() as logs:
        asyncio.run(reconcile(CHAT, None, _fresh_week(), port))

    (planned,) = [e for e in logs if e["event"] == "reconciliation_planned"]
    assert planned["summary"] == format_plan_summary(plan_reconciliation(None, _fresh_week()))
    assert "(whole resend)" in planned["summary"]
