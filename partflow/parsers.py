from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, cast

import python_multipart as multipart
from python_multipart.multipart import parse_options_header

from partflow.conf import settings
from partflow.datastructures import FileStream, Header
from partflow.enums import PartMessage
from partflow.exceptions import MultiPartException
from partflow.limits import Limits
from partflow.logging import logger
from partflow.protocols.events import EventListener
from partflow.types import ByteStream

_PATH_SEPARATORS = re.compile(r"[\\/]")


@dataclass
class MultipartPart:
    field_name: str = ""
    name_truncated: bool = False
    data: bytearray = field(default_factory=bytearray)
    value_truncated: bool = False
    charset: str = ""
    file: FileStream | None = None


def _user_safe_decode(src: bytes, codec: str) -> str:
    try:
        return src.decode(codec)
    except (UnicodeDecodeError, LookupError):
        return src.decode("utf-8", "replace")


def _first_set(*values: Any) -> Any:
    return next(value for value in values if value is not None)


class MultipartEmitter:
    """
    Turns a `multipart/form-data` body into `field`, `file`, `error` and
    `finish` events.

    The wire format itself is parsed by `python-multipart`. Its callbacks are
    buffered for every chunk written and dispatched afterwards, so the file
    data can be fed asynchronously: feeding a paused or full `FileStream`
    suspends the loop and no more of the body is read until the consumer
    catches up.

    Args:
        headers: The request headers, `Content-Type` must carry the boundary.
        stream: Async iterable with the raw body.
        limits: Size limits, anything left unset falls back to the settings.
        charset: Forces the charset used to decode names and values.
        preserve_path: Keep the client path in filenames instead of the basename.
    """

    def __init__(
        self,
        headers: Header | Mapping[Any, Any] | Iterable[tuple[bytes | str, bytes | str]],
        stream: ByteStream,
        *,
        limits: Limits | None = None,
        charset: str | None = None,
        preserve_path: bool | None = None,
    ) -> None:
        limits = limits or Limits()
        self.headers = headers if isinstance(headers, Header) else Header(headers)
        self.stream = stream
        self.field_size: int = _first_set(limits.field_size, settings.field_size)
        self.field_name_size: int = _first_set(limits.field_name_size, settings.field_name_size)
        self.file_size: float = _first_set(limits.file_size, settings.file_size)
        self.preserve_path: bool = _first_set(preserve_path, settings.preserve_path)
        self.max_buffer_size: int = settings.stream_buffer_size
        self._forced_charset = charset
        self._charset = charset or settings.default_charset
        self._messages: list[tuple[PartMessage, Any]] = []
        self._current_partial_header_name: bytes = b""
        self._current_partial_header_value: bytes = b""
        self._current_headers: list[tuple[bytes, bytes]] = []
        self._current_part = MultipartPart()
        self._stopped = False
        self._ended = False

    def on_part_begin(self) -> None:
        self._current_headers = []
        self._messages.append((PartMessage.PART_BEGIN, None))

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._messages.append((PartMessage.PART_DATA, data[start:end]))

    def on_part_end(self) -> None:
        self._messages.append((PartMessage.PART_END, None))

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._current_partial_header_name += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._current_partial_header_value += data[start:end]

    def on_header_end(self) -> None:
        self._current_headers.append(
            (self._current_partial_header_name.lower(), self._current_partial_header_value)
        )
        self._current_partial_header_name = b""
        self._current_partial_header_value = b""

    def on_headers_finished(self) -> None:
        self._messages.append((PartMessage.HEADERS_FINISHED, list(self._current_headers)))

    def on_end(self) -> None:
        self._messages.append((PartMessage.END, None))

    def stop(self) -> None:
        self._stopped = True

    async def run(self, listener: EventListener) -> None:
        """
        Reads the whole body, or until `stop()`, dispatching to `listener`.

        Errors raised by the byte source or by `python-multipart` are handed to
        `listener.on_error()` unchanged.
        """
        try:
            parser = self._create_multipart_parser()

            async for chunk in self.stream:
                if chunk:
                    parser.write(chunk)
                await self._dispatch(listener)
                if self._stopped or self._ended:
                    break

            if not (self._stopped or self._ended):
                parser.finalize()
                await self._dispatch(listener)
                if not (self._stopped or self._ended):
                    raise MultiPartException("Unexpected end of form")
        except Exception as exc:
            logger.debug("Multipart emitter failed: %r", exc)
            if not (self._stopped or self._ended):
                self._stopped = True
                listener.on_error(exc)
        finally:
            self._end_current_file()

    def _create_multipart_parser(self) -> multipart.MultipartParser:
        content_type = self.headers.get("content-type")
        if not content_type:
            raise MultiPartException("Missing Content-Type")

        media_type, params = parse_options_header(content_type)
        if media_type != b"multipart/form-data":
            raise MultiPartException(f"Unsupported content type: {media_type.decode('latin-1')}")

        if self._forced_charset is None and b"charset" in params:
            self._charset = params[b"charset"].decode("latin-1")

        try:
            boundary = params[b"boundary"]
        except KeyError:
            raise MultiPartException("Missing boundary in multipart.") from None

        return multipart.MultipartParser(boundary, cast(Any, self._create_callbacks_dictionary()))

    def _create_callbacks_dictionary(self) -> dict[str, Callable]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }

    async def _dispatch(self, listener: EventListener) -> None:
        messages = list(self._messages)
        self._messages.clear()

        for message_type, payload in messages:
            if self._stopped or self._ended:
                return

            if message_type == PartMessage.PART_BEGIN:
                self._current_part = MultipartPart()
            elif message_type == PartMessage.HEADERS_FINISHED:
                self._handle_headers(listener, payload)
            elif message_type == PartMessage.PART_DATA:
                await self._handle_data(payload)
            elif message_type == PartMessage.PART_END:
                self._handle_part_end(listener)
            elif message_type == PartMessage.END:
                self._ended = True
                logger.debug("Multipart body finished")
                listener.on_finish()

    def _handle_headers(self, listener: EventListener, headers: list[tuple[bytes, bytes]]) -> None:
        part = self._current_part
        part_headers = Header(headers)

        _, options = parse_options_header(part_headers.get("content-disposition"))

        media_type, content_params = parse_options_header(part_headers.get("content-type"))
        mimetype = media_type.decode("latin-1") or "text/plain"
        encoding = part_headers.get("content-transfer-encoding", "7bit").strip().lower()
        charset = content_params.get(b"charset")
        part.charset = charset.decode("latin-1") if charset else self._charset

        self._set_field_name(options)

        if b"filename" in options:
            filename = _user_safe_decode(options[b"filename"], part.charset)
            if not self.preserve_path:
                filename = _PATH_SEPARATORS.split(filename)[-1]
            part.file = FileStream(
                part.field_name,
                filename,
                encoding,
                mimetype,
                headers=part_headers,
                max_buffer_size=self.max_buffer_size,
                max_size=self.file_size,
            )
            logger.debug("Emitting file %r (%r)", part.field_name, filename)
            listener.on_file(part.field_name, part.file, filename, encoding, mimetype)

    def _set_field_name(self, options: dict[bytes, bytes]) -> None:
        try:
            name = options[b"name"]
        except KeyError:
            raise MultiPartException(
                'The Content-Disposition header field "name" must be provided.'
            ) from None

        if len(name) > self.field_name_size:
            name = name[: self.field_name_size]
            self._current_part.name_truncated = True
        self._current_part.field_name = _user_safe_decode(name, self._current_part.charset)

    async def _handle_data(self, data: bytes) -> None:
        part = self._current_part
        if part.file is not None:
            await part.file.feed(data)
            return

        room = self.field_size - len(part.data)
        if len(data) > room:
            data = data[: max(room, 0)]
            part.value_truncated = True
        part.data += data

    def _handle_part_end(self, listener: EventListener) -> None:
        part = self._current_part
        if part.file is not None:
            part.file.end()
            return

        value = _user_safe_decode(bytes(part.data), part.charset)
        logger.debug("Emitting field %r", part.field_name)
        listener.on_field(part.field_name, value, part.name_truncated, part.value_truncated)

    def _end_current_file(self) -> None:
        if self._current_part.file is not None:
            self._current_part.file.end()
