"""Shared fakes for the timetable sync tests."""
from __future__ import annotations

import pytest

from src.timetable_sync.config import SyncConfig
from src.timetable_sync.models import (
    DaySlot,
    LessonSlot,
    MessageIdentity,
    Projection,
    ScheduleGrid,
    Weekday,
)
from src.timetable_sync.store import JsonStateStore

CLASS_NAME = "10Б"
HEADER = ["День", "№", "Время", "Кабинет", CLASS_NAME, "", "11А", ""]
WIDTH = len(HEADER)
CLASS_COLUMN = HEADER.index(CLASS_NAME)


def _blank_row() -> list[str]:
    return [""] * WIDTH


def timetable_grid(days: list[tuple[str, list[tuple[str, str, str] | None]]]) -> ScheduleGrid:
    """Build a sheet in the school's two-row layout.

    ``days`` is [(day label, [(subject, teacher, room) or None, ...]), ...];
    None is a free period. A footer row closes the sheet.
    """
    rows: list[list[str]] = []
    for label, lessons in days:
        for period, lesson in enumerate(lessons, start=1):
            top = _blank_row()
            bottom = _blank_row()
            if period == 1:
                top[0] = label
            top[1] = str(period)
            if lesson is not None:
                subject, teacher, room = lesson
                top[CLASS_COLUMN] = subject
                top[CLASS_COLUMN + 1] = teacher
                bottom[CLASS_COLUMN + 1] = room
            rows.append(top)
            rows.append(bottom)
    footer = _blank_row()
    footer[1] = "Итого"
    rows.append(footer)
    return ScheduleGrid(header=list(HEADER), rows=rows)


def lesson(subject: str, teacher: str = "T", room: str = "1") -> LessonSlot:
    return LessonSlot(subject=subject, teacher=teacher, room=room)


def day(
    weekday: Weekday,
    *subjects: str,
    message_id: int | None = None,
    pinned: bool = False,
) -> DaySlot:
    """Day slot whose lessons are named by ``subjects`` ("" = free period)."""
    return DaySlot(
        weekday=weekday,
        lessons=[lesson(s) if s else LessonSlot.empty() for s in subjects],
        delivery=MessageIdentity(message_id=message_id, pinned=pinned),
    )


def projection(*slots: DaySlot) -> Projection:
    return Projection(day_slots=list(slots))


class FakeMessagePort:
    """Records every call; failures can be injected per action/message id."""

    def __init__(self, first_id: int = 100) -> None:
        self.calls: list[tuple[str, int, int | None, str | None]] = []
        self._next_id = first_id
        self._failures: dict[tuple[str, int | None], Exception] = {}

    def fail_on(self, action: str, error: Exception, message_id: int | None = None) -> None:
        self._failures[(action, message_id)] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def _maybe_fail(self, action: str, message_id: int | None) -> None:
        error = self._failures.get((action, message_id)) or self._failures.get((action, None))
        if error is not None:
            raise error

    def actions(self, action: str) -> list[tuple[str, int, int | None, str | None]]:
        return [call for call in self.calls if call[0] == action]

    async def send(self, conversation_id: int, text: str) -> int:
        self.calls.append(("send", conversation_id, None, text))
        self._maybe_fail("send", None)
        self._next_id += 1
        return self._next_id

    async def edit(self, conversation_id: int, message_id: int, text: str) -> None:
        self.calls.append(("edit", conversation_id, message_id, text))
        self._maybe_fail("edit", message_id)

    async def pin(self, conversation_id: int, message_id: int) -> None:
        self.calls.append(("pin", conversation_id, message_id, None))
        self._maybe_fail("pin", message_id)

    async def unpin(self, conversation_id: int, message_id: int) -> None:
        self.calls.append(("unpin", conversation_id, message_id, None))
        self._maybe_fail("unpin", message_id)


class FakeSource:
    """Document source serving a fixed grid, or raising a fixed error."""

    def __init__(self, grid: ScheduleGrid | None = None, error: Exception | None = None) -> None:
        self.grid = grid
        self.error = error
        self.links: list[str] = []

    async def fetch(self, link: str) -> ScheduleGrid:
        self.links.append(link)
        if self.error is not None:
            raise self.error
        return self.grid


@pytest.fixture
def port() -> FakeMessagePort:
    return FakeMessagePort()


@pytest.fixture
def store(tmp_path) -> JsonStateStore:
    return JsonStateStore(tmp_path / "data")


@pytest.fixture
def config(tmp_path) -> SyncConfig:
    return SyncConfig(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        min_poll_minutes=5,
        store_retry_seconds=1,
    )
