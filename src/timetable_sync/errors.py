"""Error hierarchy for sync retry classification.

This hierarchy lets tenacity retry decorators tell transient failures (should
retry) from permanent failures (should not retry).

Example usage with tenacity:
    @retry(retry=retry_if_exception_type(TransientError), stop=stop_after_attempt(3))
    async def fetch(link: str):
        ...

Parse problems in the timetable itself are not exceptions at the public
boundary: the projector reports them as ParseError values (see models.py).
"""


class SyncError(Exception):
    """Base exception for all timetable sync errors."""

    pass


class TransientError(SyncError):
    """Temporary failure that may succeed on retry.

    Examples: network timeouts, 5xx from the spreadsheet host, Telegram flood control.
    """

    pass


class DocumentUnreachableError(TransientError):
    """The spreadsheet could not be downloaded."""

    pass


class DeliveryTransientError(TransientError):
    """Telegram asked us to back off or the request timed out."""

    def __init__(self, description: str, retry_after: float | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.retry_after = retry_after


class PermanentError(SyncError):
    """Failure that won't succeed on retry."""

    pass


class InvalidDocumentError(PermanentError):
    """The downloaded document is not a readable table."""

    pass


class MalformedRowError(PermanentError):
    """A lesson row points outside the grid while reading teacher/room cells."""

    def __init__(self, row: int, column: int) -> None:
        super().__init__(f"cell ({row}, {column}) is outside the grid")
        self.row = row
        self.column = column


class StoreError(PermanentError):
    """Conversation state could not be read or written.

    Fatal to the current cycle: an unpersisted message id would cause a
    duplicate send on the next one.
    """

    pass


class DeliveryError(PermanentError):
    """Telegram rejected a send/edit/pin/unpin call."""

    def __init__(self, description: str) -> None:
        super().__init__(description)
        self.description = description


class MessageNotFoundError(DeliveryError):
    """The target message was deleted or never existed."""

    pass


class PermissionDeniedError(DeliveryError):
    """The bot lacks rights in the conversation (e.g. cannot pin)."""

    pass


class ConversationNotFoundError(DeliveryError):
    """The chat was deleted or the bot was removed from it."""

    pass
