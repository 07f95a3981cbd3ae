"""Pydantic models for timetable projection and delivery state.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Ordering matters everywhere: day slots follow the sheet's row order and
lessons within a day follow period order. Nothing here ever re-sorts them.
"""

from enum import Enum, IntEnum

from pydantic import BaseModel, Field


class Weekday(IntEnum):
    """Day of week, numbered like date.weekday() (Monday is 0)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def russian_name(self) -> str:
        return _RUSSIAN_NAMES[self]

    @classmethod
    def from_label(cls, label: str) -> "Weekday | None":
        """Parse a day header cell ("Понедельник", "Monday", "ПН").

        Returns None for anything unrecognized.
        """
        return _LABELS.get(label.strip().lower().rstrip("."))


_RUSSIAN_NAMES = {
    Weekday.MONDAY: "Понедельник",
    Weekday.TUESDAY: "Вторник",
    Weekday.WEDNESDAY: "Среда",
    Weekday.THURSDAY: "Четверг",
    Weekday.FRIDAY: "Пятница",
    Weekday.SATURDAY: "Суббота",
    Weekday.SUNDAY: "Воскресенье",
}

_SHORT_LABELS = {
    Weekday.MONDAY: ("пн", "mon"),
    Weekday.TUESDAY: ("вт", "tue"),
    Weekday.WEDNESDAY: ("ср", "wed"),
    Weekday.THURSDAY: ("чт", "thu"),
    Weekday.FRIDAY: ("пт", "fri"),
    Weekday.SATURDAY: ("сб", "sat"),
    Weekday.SUNDAY: ("вс", "sun"),
}

_LABELS: dict[str, Weekday] = {}
for _day in Weekday:
    _LABELS[_RUSSIAN_NAMES[_day].lower()] = _day
    _LABELS[_day.name.lower()] = _day
    for _short in _SHORT_LABELS[_day]:
        _LABELS[_short] = _day


class LessonSlot(BaseModel):
    """One period of a day: subject, teacher and room.

    The all-empty triple marks a free period and keeps its position in the day.
    """

    subject: str = ""
    teacher: str = ""
    room: str = ""

    @classmethod
    def empty(cls) -> "LessonSlot":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.subject


class MessageIdentity(BaseModel):
    """The delivered Telegram message for one day slot."""

    message_id: int | None = None  # None until the message has been sent
    pinned: bool = False

    @property
    def is_sent(self) -> bool:
        return self.message_id is not None


class DaySlot(BaseModel):
    """One weekday's lessons plus the message that displays them."""

    weekday: Weekday | None
    lessons: list[LessonSlot] = Field(default_factory=list)
    delivery: MessageIdentity = Field(default_factory=MessageIdentity)

    def same_content(self, other: "DaySlot") -> bool:
        """Weekday and ordered lessons are equal; delivery state is ignored."""
        return self.weekday == other.weekday and self.lessons == other.lessons


class Projection(BaseModel):
    """Ordered day slots for one conversation's class."""

    day_slots: list[DaySlot] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.day_slots


class PollInterval(BaseModel):
    """Delay between refreshes, stored as hours and minutes."""

    hours: int = 1
    minutes: int = 0

    def to_seconds(self, min_minutes: int = 0) -> int:
        total_minutes = max(self.hours * 60 + self.minutes, min_minutes)
        return total_minutes * 60


class ConversationState(BaseModel):
    """Everything a refresh cycle needs to know about one chat."""

    conversation_id: int
    class_name: str
    link: str
    interval: PollInterval = Field(default_factory=PollInterval)
    last_projection: Projection | None = None
    # Replaced messages that are still pinned; the next pin pass unpins them
    stale_pins: list[MessageIdentity] = Field(default_factory=list)


class ScheduleGrid(BaseModel):
    """The spreadsheet as text cells.

    ``header`` is the first sheet row (class names live here). ``rows`` are
    the data rows below it; a cell may be None where the sheet had nothing.
    """

    header: list[str]
    rows: list[list[str | None]] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def cell(self, row: int, column: int) -> str:
        """Return the text at (row, column), "" for a null cell.

        Raises IndexError outside the grid.
        """
        if row < 0 or column < 0:
            raise IndexError((row, column))
        return self.rows[row][column] or ""

    def column_of(self, name: str) -> int | None:
        try:
            return [label.strip() for label in self.header].index(name.strip())
        except ValueError:
            return None


class ParseErrorKind(str, Enum):
    UNKNOWN_CLASS = "unknown_class"
    MALFORMED_ROW = "malformed_row"


class ParseError(BaseModel):
    """Why a grid could not be projected. Row/column are grid coordinates."""

    kind: ParseErrorKind
    message: str
    row: int | None = None
    column: int | None = None


class ProjectionResult(BaseModel):
    """Projector output: a projection, or an empty one plus the error."""

    projection: Projection = Field(default_factory=Projection)
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
