from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any

import anyio

from partflow.datastructures import FileStream
from partflow.protocols.events import EventListener

BOUNDARY = "---------------------------paZqsnEHRufoShdX6fh0lUhXBP4k"

# (name, value) for fields, (name, filename, content_type, data) for files
FieldSpec = tuple[str, str]
FileSpec = tuple[str, str, str, bytes]


def build_multipart(parts: Sequence[FieldSpec | FileSpec], boundary: str = BOUNDARY) -> bytes:
    body = b""
    for part in parts:
        body += f"--{boundary}\r\n".encode()
        if len(part) == 2:
            name, value = part
            body += f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
            body += value.encode("utf-8")
        else:
            name, filename, content_type, data = part
            body += (
                f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
                f"Content-Type: {content_type}\r\n\r\n"
            ).encode()
            body += data
        body += b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return body


def multipart_headers(boundary: str = BOUNDARY) -> dict[str, str]:
    return {"content-type": f"multipart/form-data; boundary={boundary}"}


async def body_stream(body: bytes, chunk_size: int = 1024) -> AsyncIterator[bytes]:
    for start in range(0, len(body), chunk_size):
        yield body[start : start + chunk_size]
    yield b""


def default_form() -> list[FieldSpec | FileSpec]:
    """
    Six fields over three names followed by three files.
    """
    return [
        ("file_name_0", "super alpha file"),
        ("file_name_0", "super beta file"),
        ("file_name_0", "super gamma file"),
        ("_csrf", "ooxx"),
        ("__contains__", "super bad file"),
        ("__contains__", "another bad file"),
        ("upload_file_0", "1k_a.dat", "application/octet-stream", b"A" * 1023),
        ("upload_file_1", "1k_b.dat", "application/octet-stream", b"B" * 1023),
        ("upload_file_2", "hack.exe", "application/octet-stream", b"C" * 1023),
    ]


def field_event(name: str, value: str) -> tuple[Any, ...]:
    return ("field", name, value, False, False)


def file_event(fieldname: str, filename: str, data: bytes = b"") -> tuple[Any, ...]:
    return ("file", fieldname, filename, data)


class ScriptedEmitter:
    """
    Event source replaying a fixed list of events.

    `("file", fieldname, filename, data)` entries create a paused `FileStream`
    and feed `data` to it after the event, like the multipart emitter does.
    """

    def __init__(
        self,
        events: Sequence[tuple[Any, ...]],
        *,
        yield_between: bool = True,
        honour_stop: bool = True,
        hold_open: bool = False,
    ) -> None:
        self.events = events
        self.hold_open = hold_open
        self.yield_between = yield_between
        self.honour_stop = honour_stop
        self.stopped = False
        self.streams: list[FileStream] = []

    def stop(self) -> None:
        self.stopped = True

    async def run(self, listener: EventListener) -> None:
        for event, *args in self.events:
            if self.stopped and self.honour_stop:
                return
            if self.yield_between:
                await anyio.sleep(0)

            if event == "file":
                fieldname, filename, data = args
                stream = FileStream(fieldname, filename, "7bit", "application/octet-stream")
                self.streams.append(stream)
                listener.on_file(fieldname, stream, filename, stream.encoding, stream.mimetype)
                await stream.feed(data)
                stream.end()
            else:
                getattr(listener, f"on_{event}")(*args)

        if self.hold_open:
            await anyio.sleep_forever()
