"""Grid projector - turns the timetable sheet into per-weekday lesson lists.

Sheet layout (one class = two adjacent columns, one lesson = two rows):

    col 0       col 1   ...  col C        col C+1
    Понедельник 1            Math         Ivanov
                             (blank)      101
                2            PE           Petrov
                                          gym
    Вторник     1            ...

Column 0 holds the day name on the first row of each day. Column 1 holds the
period number on lesson rows only; the classroom row under a lesson leaves it
empty, which is what makes the scanner step over it.
"""

from src.timetable_sync.errors import MalformedRowError
from src.timetable_sync.logging import get_logger
from src.timetable_sync.models import (
    DaySlot,
    LessonSlot,
    ParseError,
    ParseErrorKind,
    Projection,
    ProjectionResult,
    ScheduleGrid,
    Weekday,
)

log = get_logger(__name__)

DAY_COLUMN = 0
PERIOD_COLUMN = 1


def extract_lesson(grid: ScheduleGrid, row: int, class_column: int) -> LessonSlot:
    """Read one lesson from the two-row block at (row, class_column).

    Subject is at (row, C), teacher at (row, C+1), room at (row+1, C+1).
    An empty subject means a free period; the other cells are not read.

    Raises:
        MalformedRowError: If any of the cells lies outside the grid.
    """
    subject = _read(grid, row, class_column).strip()
    if not subject:
        return LessonSlot.empty()

    teacher = _read(grid, row, class_column + 1).strip()
    room = _read(grid, row + 1, class_column + 1).strip()
    return LessonSlot(subject=subject, teacher=teacher, room=room)


def _read(grid: ScheduleGrid, row: int, column: int) -> str:
    try:
        return grid.cell(row, column)
    except IndexError:
        raise MalformedRowError(row, column) from None


def _marker(cells: list[str | None], column: int) -> str:
    """Text of a scanner column, "" when the row is shorter than that."""
    if column >= len(cells):
        return ""
    return (cells[column] or "").strip()


def project(grid: ScheduleGrid, class_name: str) -> ProjectionResult:
    """Project the sheet into day slots for one class.

    Args:
        grid: Downloaded sheet.
        class_name: Header label of the class column (e.g. "10Б").

    Returns:
        ProjectionResult with the projection, or with an empty projection and
        a ParseError when the class is missing or a lesson block is cut off.
    """
    class_column = grid.column_of(class_name)
    if class_column is None:
        log.warning("unknown_class", class_name=class_name, columns=len(grid.header))
        return ProjectionResult(
            error=ParseError(
                kind=ParseErrorKind.UNKNOWN_CLASS,
                message=f"class {class_name!r} not found in the header row",
            )
        )

    day_slots: list[DaySlot] = []
    current: DaySlot | None = None
    last_row = grid.row_count - 1

    try:
        for index, cells in enumerate(grid.rows):
            day_label = _marker(cells, DAY_COLUMN)
            if day_label:
                if current is not None:
                    day_slots.append(current)
                current = DaySlot(weekday=Weekday.from_label(day_label))

            # Classroom rows, footers and the final row carry no lesson start
            period = _marker(cells, PERIOD_COLUMN)
            if index == last_row or not period or not period.isdecimal():
                continue

            if current is None:
                current = DaySlot(weekday=None)
            current.lessons.append(extract_lesson(grid, index, class_column))
    except MalformedRowError as e:
        log.error(
            "malformed_row",
            class_name=class_name,
            row=e.row,
            column=e.column,
        )
        return ProjectionResult(
            error=ParseError(
                kind=ParseErrorKind.MALFORMED_ROW,
                message=str(e),
                row=e.row,
                column=e.column,
            )
        )

    if current is not None:
        day_slots.append(current)

    return ProjectionResult(projection=Projection(day_slots=_finalize(day_slots)))


def _finalize(day_slots: list[DaySlot]) -> list[DaySlot]:
    """Drop slots whose weekday could not be determined."""
    kept = []
    for position, slot in enumerate(day_slots):
        if slot.weekday is None:
            log.warning(
                "day_slot_dropped",
                position=position,
                lessons=len(slot.lessons),
                reason="unknown_weekday",
            )
            continue
        kept.append(slot)
    return kept
