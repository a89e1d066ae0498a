from __future__ import annotations

from collections.abc import AsyncIterable, Callable
from typing import TYPE_CHECKING, Union

from typing_extensions import Doc as Doc

if TYPE_CHECKING:
    from partflow.datastructures import FieldPart, FileStream

Part = Union["FieldPart", "FileStream"]

ByteStream = AsyncIterable[bytes]

CheckField = Callable[[str, str], Union[Exception, None]]
CheckFile = Callable[[str, "FileStream", str], Union[Exception, None]]
