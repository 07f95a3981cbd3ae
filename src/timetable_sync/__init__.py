"""Timetable sync for Telegram chats.

Keeps one message per weekday in a chat in line with a class timetable
published as a Google Sheet, and pins the message for today.
"""

from src.timetable_sync.cycle import CycleReport, refresh
from src.timetable_sync.models import (
    ConversationState,
    DaySlot,
    LessonSlot,
    MessageIdentity,
    Projection,
    ScheduleGrid,
    Weekday,
)
from src.timetable_sync.pinning import PinResult, sync_pins
from src.timetable_sync.projector import extract_lesson, project
from src.timetable_sync.reconciler import plan_reconciliation, reconcile

__all__ = [
    "ConversationState",
    "CycleReport",
    "DaySlot",
    "LessonSlot",
    "MessageIdentity",
    "PinResult",
    "Projection",
    "ScheduleGrid",
    "Weekday",
    "extract_lesson",
    "plan_reconciliation",
    "project",
    "reconcile",
    "refresh",
    "sync_pins",
]
