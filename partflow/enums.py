from __future__ import annotations

from enum import Enum


class StrEnum(str, Enum):
    def __str__(self) -> str:
        return self.value  # type: ignore

    def __repr__(self) -> str:
        return str(self)


class SequencerState(StrEnum):
    IDLE = "idle"
    AWAITING_EVENT = "awaiting_event"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def get_terminal_states(cls) -> list[SequencerState]:
        return [cls.COMPLETED, cls.FAILED]


class LimitKind(StrEnum):
    PARTS = "parts"
    FIELDS = "fields"
    FILES = "files"


class PartMessage(StrEnum):
    """
    Messages buffered from the `python-multipart` callbacks between two writes.
    """

    PART_BEGIN = "part_begin"
    HEADERS_FINISHED = "headers_finished"
    PART_DATA = "part_data"
    PART_END = "part_end"
    END = "end"
