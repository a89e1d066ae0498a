from __future__ import annotations

from dataclasses import dataclass, field

from partflow.enums import LimitKind
from partflow.exceptions import LimitError
from partflow.logging import logger


@dataclass(frozen=True)
class Limits:
    """
    Per-session limits.

    `parts`, `fields` and `files` are count maxima enforced by `LimitGuard`;
    `None` means unlimited. The size limits are handed to the multipart
    emitter and fall back to the global settings when left as `None`.
    """

    parts: int | None = None
    fields: int | None = None
    files: int | None = None
    field_size: int | None = None
    field_name_size: int | None = None
    file_size: float | None = None

    def __post_init__(self) -> None:
        for kind in LimitKind:
            value = getattr(self, kind.value)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise ValueError(f"limits.{kind} must be a non-negative integer, not {value!r}")

    def maximum(self, kind: LimitKind) -> int | None:
        return getattr(self, kind.value)


@dataclass
class LimitGuard:
    """
    Counts candidate parts and reports the first limit they go over.
    """

    limits: Limits = field(default_factory=Limits)
    parts: int = 0
    fields: int = 0
    files: int = 0

    def count_field(self) -> LimitError | None:
        return self._count(LimitKind.FIELDS)

    def count_file(self) -> LimitError | None:
        return self._count(LimitKind.FILES)

    def breach(self, kind: LimitKind) -> LimitError:
        logger.debug("Reached the %s limit (maximum %s)", kind, self.limits.maximum(kind))
        return LimitError.for_kind(kind)

    def _count(self, kind: LimitKind) -> LimitError | None:
        self.parts += 1
        setattr(self, kind.value, getattr(self, kind.value) + 1)

        if self._exceeded(LimitKind.PARTS):
            return self.breach(LimitKind.PARTS)
        if self._exceeded(kind):
            return self.breach(kind)
        return None

    def _exceeded(self, kind: LimitKind) -> bool:
        maximum = self.limits.maximum(kind)
        return maximum is not None and getattr(self, kind.value) > maximum
