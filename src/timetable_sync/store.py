"""
Per-conversation state files.

One JSON file per chat: {data_dir}/{chat_id}.json. The on-disk shape is the
bot's historical format, so existing deployments keep their message ids:

    {
      "className": "10Б",
      "link": "https://docs.google.com/spreadsheets/d/...",
      "time": {"first": 1, "second": 0},
      "schedule": {
        "messages": [
          {
            "dayOfWeek": "MONDAY",
            "lessonInfo": [{"lesson": "...", "teacher": "...", "classroom": "..."}],
            "messageInfo": {"messageId": 512, "pinState": true}
          }
        ]
      },
      "stalePins": [{"messageId": 498, "pinState": true}]
    }

stalePins lists replaced messages that could not be unpinned yet.
messageId -1 means "not sent yet"; in memory that is MessageIdentity.message_id = None.
"""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.timetable_sync.errors import StoreError
from src.timetable_sync.logging import get_logger
from src.timetable_sync.models import (
    ConversationState,
    DaySlot,
    LessonSlot,
    MessageIdentity,
    PollInterval,
    Projection,
    Weekday,
)

log = get_logger(__name__)

NOT_SENT = -1


# ---------------------------------------------------------------------------
# On-disk records
# ---------------------------------------------------------------------------
class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LessonRecord(_Record):
    lesson: str = ""
    teacher: str = ""
    classroom: str = ""


class MessageInfoRecord(_Record):
    message_id: int = Field(default=NOT_SENT, alias="messageId")
    pin_state: bool = Field(default=False, alias="pinState")


class MessageRecord(_Record):
    day_of_week: str | None = Field(default=None, alias="dayOfWeek")
    lesson_info: list[LessonRecord] = Field(default_factory=list, alias="lessonInfo")
    message_info: MessageInfoRecord = Field(
        default_factory=MessageInfoRecord, alias="messageInfo"
    )


class ScheduleRecord(_Record):
    messages: list[MessageRecord] = Field(default_factory=list)


class TimeRecord(_Record):
    first: int = 1  # hours
    second: int = 0  # minutes


class ConfigRecord(_Record):
    class_name: str = Field(alias="className")
    link: str
    time: TimeRecord = Field(default_factory=TimeRecord)
    schedule: ScheduleRecord | None = None
    stale_pins: list[MessageInfoRecord] = Field(default_factory=list, alias="stalePins")


# ---------------------------------------------------------------------------
# Record <-> model conversion
# ---------------------------------------------------------------------------
def _slot_to_record(slot: DaySlot) -> MessageRecord:
    message_id = slot.delivery.message_id
    return MessageRecord(
        day_of_week=slot.weekday.name if slot.weekday is not None else None,
        lesson_info=[
            LessonRecord(
                lesson=lesson.subject, teacher=lesson.teacher, classroom=lesson.room
            )
            for lesson in slot.lessons
        ],
        message_info=MessageInfoRecord(
            message_id=NOT_SENT if message_id is None else message_id,
            pin_state=slot.delivery.pinned,
        ),
    )


def _slot_from_record(record: MessageRecord) -> DaySlot:
    weekday = None
    if record.day_of_week:
        weekday = Weekday.__members__.get(record.day_of_week.upper())
    info = record.message_info
    return DaySlot(
        weekday=weekday,
        lessons=[
            LessonSlot(
                subject=lesson.lesson, teacher=lesson.teacher, room=lesson.classroom
            )
            for lesson in record.lesson_info
        ],
        delivery=MessageIdentity(
            message_id=None if info.message_id == NOT_SENT else info.message_id,
            pinned=info.pin_state,
        ),
    )


def state_to_record(state: ConversationState) -> ConfigRecord:
    schedule = None
    if state.last_projection is not None:
        schedule = ScheduleRecord(
            messages=[_slot_to_record(s) for s in state.last_projection.day_slots]
        )
    return ConfigRecord(
        class_name=state.class_name,
        link=state.link,
        time=TimeRecord(first=state.interval.hours, second=state.interval.minutes),
        schedule=schedule,
        stale_pins=[
            MessageInfoRecord(message_id=identity.message_id, pin_state=identity.pinned)
            for identity in state.stale_pins
            if identity.is_sent
        ],
    )


def state_from_record(conversation_id: int, record: ConfigRecord) -> ConversationState:
    projection = None
    if record.schedule is not None:
        projection = Projection(
            day_slots=[_slot_from_record(m) for m in record.schedule.messages]
        )
    return ConversationState(
        conversation_id=conversation_id,
        class_name=record.class_name,
        link=record.link,
        interval=PollInterval(hours=record.time.first, minutes=record.time.second),
        last_projection=projection,
        stale_pins=[
            MessageIdentity(message_id=info.message_id, pinned=info.pin_state)
            for info in record.stale_pins
            if info.message_id != NOT_SENT
        ],
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class JsonStateStore:
    """Conversation state persisted as one JSON file per chat id.

    With read_only=True, save() and delete() only log; used by dry runs so
    fake message ids never overwrite real ones.
    """

    def __init__(self, data_dir: str | Path = "data", *, read_only: bool = False) -> None:
        self.data_dir = Path(data_dir)
        self.read_only = read_only
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, conversation_id: int) -> Path:
        return self.data_dir / f"{conversation_id}.json"

    def exists(self, conversation_id: int) -> bool:
        return self.path_for(conversation_id).exists()

    def load(self, conversation_id: int) -> ConversationState:
        """Read a conversation's state.

        Raises:
            StoreError: If the file is missing, unreadable or malformed.
        """
        path = self.path_for(conversation_id)
        try:
            text = path.read_text(encoding="utf-8")
            record = ConfigRecord.model_validate_json(text)
        except (OSError, ValidationError) as e:
            raise StoreError(f"Cannot load {path}: {e}") from e
        return state_from_record(conversation_id, record)

    def save(self, state: ConversationState) -> Path:
        """Write a conversation's state atomically (temp file + rename).

        Raises:
            StoreError: If the file cannot be written.
        """
        path = self.path_for(state.conversation_id)
        if self.read_only:
            log.info("state_save_skipped", conversation_id=state.conversation_id)
            return path
        tmp_path = path.with_suffix(".json.tmp")
        payload = state_to_record(state).model_dump_json(by_alias=True, indent=2)
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise StoreError(f"Cannot save {path}: {e}") from e
        log.debug("state_saved", conversation_id=state.conversation_id, path=str(path))
        return path

    def delete(self, conversation_id: int) -> None:
        path = self.path_for(conversation_id)
        if self.read_only:
            log.info("state_delete_skipped", conversation_id=conversation_id)
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot delete {path}: {e}") from e
        log.info("state_deleted", conversation_id=conversation_id)

    def list_conversations(self) -> list[int]:
        """Chat ids that have a state file, in ascending order."""
        ids = []
        for path in self.data_dir.glob("*.json"):
            try:
                ids.append(int(path.stem))
            except ValueError:
                log.debug("state_file_ignored", path=str(path))
        return sorted(ids)

    def load_all(self) -> list[ConversationState]:
        """Load every readable state file; broken ones are logged and skipped."""
        states = []
        for conversation_id in self.list_conversations():
            try:
                states.append(self.load(conversation_id))
            except StoreError as e:
                log.error("state_load_failed", conversation_id=conversation_id, error=str(e))
        return states
