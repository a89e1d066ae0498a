__version__ = "0.1.0"

from partflow.datastructures import FieldDict, FieldPart, FileStream, Header
from partflow.exceptions import (
    FieldsLimitError,
    FilesLimitError,
    LimitError,
    MultiPartException,
    ParserError,
    PartflowException,
    PartsLimitError,
    ValidationError,
)
from partflow.limits import Limits
from partflow.parsers import MultipartEmitter
from partflow.sequencer import PartSequencer, parse_parts

__all__ = [
    "FieldDict",
    "FieldPart",
    "FieldsLimitError",
    "FileStream",
    "FilesLimitError",
    "Header",
    "LimitError",
    "Limits",
    "MultiPartException",
    "MultipartEmitter",
    "ParserError",
    "PartSequencer",
    "PartflowException",
    "PartsLimitError",
    "ValidationError",
    "parse_parts",
]
