"""Chat text for a day slot.

Example:

    Понедельник
    Алгебра {в 101} (Иванова)

    Физкультура {в зал} (Петров)

The blank line is a free second period. Free periods after the last lesson
are not printed.
"""

from src.timetable_sync.models import DaySlot, LessonSlot, Weekday


def format_lesson(lesson: LessonSlot) -> str:
    return f"{lesson.subject} {{в {lesson.room}}} ({lesson.teacher})"


def day_title(weekday: Weekday | None) -> str:
    return weekday.russian_name if weekday is not None else "?"


def format_day_slot(slot: DaySlot) -> str:
    """Render the header line and one line per period up to the last lesson."""
    # Walk from the end so trailing free periods never open a line
    lines: list[str] = []
    seen_lesson = False
    for lesson in reversed(slot.lessons):
        if lesson.is_empty:
            if seen_lesson:
                lines.append("")
            continue
        lines.append(format_lesson(lesson))
        seen_lesson = True

    lines.append(day_title(slot.weekday))
    return "\n".join(reversed(lines))
