from __future__ import annotations

import http
from typing import Any, ClassVar

from partflow.enums import LimitKind


class PartflowException(Exception):
    def __init__(self, *args: Any, detail: str = ""):
        self.detail = detail
        super().__init__(*(str(arg) for arg in args if arg), self.detail)

    def __repr__(self) -> str:  # pragma: no cover
        if self.detail:
            return f"{self.__class__.__name__} - {self.detail}"
        return self.__class__.__name__

    def __str__(self) -> str:
        return "".join(self.args).strip()


class ValidationError(PartflowException):
    """
    Convenience error for `check_field` and `check_file` hooks.

    Hooks may return any exception instance, this one simply carries the
    caller supplied message and nothing else.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(detail=message)


class LimitError(PartflowException):
    """
    Raised when a session goes over one of its configured count limits.
    """

    status_code: ClassVar[int] = http.HTTPStatus.REQUEST_ENTITY_TOO_LARGE.value
    code: ClassVar[str] = ""
    kind: ClassVar[LimitKind]

    def __init__(self) -> None:
        super().__init__(detail=f"Reach {self.kind} limit")

    @property
    def status(self) -> int:
        return self.status_code

    @property
    def message(self) -> str:
        return self.detail

    def __str__(self) -> str:
        return self.detail

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        return f"{class_name}(status_code={self.status_code!r}, code={self.code!r}, detail={self.detail!r})"

    @classmethod
    def for_kind(cls, kind: LimitKind) -> LimitError:
        for subclass in cls.__subclasses__():
            if subclass.kind == kind:
                return subclass()
        raise ValueError(f"Unknown limit kind: {kind!r}")


class FilesLimitError(LimitError):
    code = "Request_files_limit"
    kind = LimitKind.FILES


class FieldsLimitError(LimitError):
    code = "Request_fields_limit"
    kind = LimitKind.FIELDS


class PartsLimitError(LimitError):
    code = "Request_parts_limit"
    kind = LimitKind.PARTS


class ParserError(PartflowException):
    """
    Base for errors the multipart adapter detects on its own.

    Errors raised by `python-multipart` or by the byte source are never
    wrapped, they reach the consumer as they were raised.
    """

    ...


class MultiPartException(ParserError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(detail=message)
