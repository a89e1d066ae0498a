from __future__ import annotations

from dataclasses import dataclass

from partflow.datastructures import FileStream
from partflow.logging import logger
from partflow.types import CheckField, CheckFile


@dataclass
class ValidationHooks:
    """
    User supplied vetoes, run synchronously from the event dispatch path.

    Each hook returns an exception to reject the part, or `None` to accept it.
    """

    check_field: CheckField | None = None
    check_file: CheckFile | None = None

    def validate_field(self, name: str, value: str) -> Exception | None:
        if self.check_field is None:
            return None
        error = self.check_field(name, value)
        if error is not None:
            logger.debug("Field %r rejected: %s", name, error)
        return error

    def validate_file(self, fieldname: str, stream: FileStream, filename: str) -> Exception | None:
        if self.check_file is None:
            return None
        error = self.check_file(fieldname, stream, filename)
        if error is not None:
            logger.debug("File %r (%r) rejected: %s", fieldname, filename, error)
            # Nobody will read the rejected stream, keep the emitter flowing.
            stream.discard()
        return error
