from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Iterator, Mapping
from typing import Any, NamedTuple

import anyio
from multidict import CIMultiDict, MultiDict


class Header(CIMultiDict):
    """Case insensitive container for request and part headers.
    It is a subclass of [CIMultiDict](https://multidict.readthedocs.io/en/stable/multidict.html#cimultidict)
    accepting `str` or `bytes` names and values.
    """

    def __init__(
        self,
        value: Mapping[Any, Any] | Iterable[tuple[bytes | str, bytes | str]] | None = None,
    ) -> None:
        if not value:
            value = []

        assert isinstance(value, (Mapping, Iterable)), (
            "The headers must be in the format of a Iterable of tuples or dictionary."
        )
        super().__init__(self.parse_headers(value))

    def parse_headers(self, value: Any) -> list[tuple[str, str]]:
        """
        Parses the headers, decoding `bytes` names and values as latin-1.
        """
        headers: list[tuple[str, str]] = []
        items = value.items() if isinstance(value, Mapping) else value

        for k, v in items:
            key = k.decode("latin-1") if isinstance(k, bytes) else k
            values = v if isinstance(v, (list, tuple)) else [v]
            for header_value in values:
                header_value = (
                    header_value.decode("latin-1")
                    if isinstance(header_value, bytes)
                    else header_value
                )
                assert isinstance(header_value, str)
                headers.append((key, header_value))
        return headers

    def get_all(self, key: str) -> list[Any]:
        """Convenience method mapped to getall()."""
        return self.getall(key, [])


class FieldPart(NamedTuple):
    """
    A non-file part, always a 4-tuple.
    """

    name: str
    value: str
    name_truncated: bool = False
    value_truncated: bool = False


class FieldDict(Mapping[str, Any]):
    """
    Name to value mapping filled in `auto_fields` mode.

    The first occurrence of a name maps to its value; once the name repeats
    it maps to the list of all its values in arrival order. Data lives in a
    private `MultiDict`, so no field name can collide with a member of this
    class, `__contains__` included.
    """

    __slots__ = ("_store",)

    def __init__(self, items: Iterable[tuple[str, str]] | None = None) -> None:
        self._store: MultiDict[str] = MultiDict()
        for name, value in items or ():
            self.set(name, value)

    def set(self, name: str, value: str) -> None:
        """
        Records one more occurrence of `name`.
        """
        self._store.add(name, value)

    def has(self, name: Any) -> bool:
        return isinstance(name, str) and name in self._store

    def get(self, name: str, default: Any = None) -> Any:
        if not self.has(name):
            return default
        return self[name]

    def getlist(self, name: str) -> list[str]:
        """
        All the values of `name`, in arrival order.
        """
        return self._store.getall(name, [])

    def dump(self) -> dict[str, Any]:
        """
        A plain `dict` copy of the mapping.
        """
        return {name: self[name] for name in self}

    def __getitem__(self, name: str) -> Any:
        values = self._store.getall(name)
        if len(values) == 1:
            return values[0]
        return values

    def __contains__(self, name: object) -> bool:
        return self.has(name)

    def __iter__(self) -> Iterator[str]:
        return iter(dict.fromkeys(self._store.keys()))

    def __len__(self) -> int:
        return len(set(self._store.keys()))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.dump()!r})"


class FileStream:
    """
    A file part and its byte source.

    The stream is created paused. While paused, or while its bounded buffer is
    full, the producer blocks in `feed()` and stops reading the request body.
    Reading (`read()` or `async for`) resumes it. A stream resumed with no
    reader attached drops its data, like `discard()`, until a reader shows up.
    """

    def __init__(
        self,
        fieldname: str,
        filename: str,
        encoding: str = "7bit",
        mimetype: str = "text/plain",
        *,
        headers: Header | None = None,
        max_buffer_size: int = 16,
        max_size: float = float("inf"),
    ) -> None:
        self.fieldname = fieldname
        self.filename = filename
        self.encoding = encoding
        self.mimetype = mimetype
        self.headers = headers or Header()
        self.max_size = max_size
        self.truncated = False
        self.bytes_read = 0
        self._received = 0
        self._discarding = False
        self._reading = False
        self._flowing = anyio.Event()
        self._send, self._receive = anyio.create_memory_object_stream[bytes](
            max_buffer_size=max_buffer_size
        )

    @property
    def is_paused(self) -> bool:
        return not self._flowing.is_set()

    @property
    def is_discarded(self) -> bool:
        return self._discarding

    def pause(self) -> None:
        # Only swap the event once it is set, a producer may be waiting on the unset one.
        if self._flowing.is_set():
            self._flowing = anyio.Event()

    def resume(self) -> None:
        self._flowing.set()

    def discard(self) -> None:
        """
        Drops everything buffered or still to come, without blocking the producer.
        """
        self._discarding = True
        self._receive.close()
        self.resume()

    async def feed(self, chunk: bytes) -> None:
        """
        Producer side. Waits for the consumer to resume the stream and for
        room in the buffer.
        """
        if self._discarding or not chunk:
            return

        remaining = self.max_size - self._received
        if remaining <= 0:
            self.truncated = True
            return
        if len(chunk) > remaining:
            chunk = chunk[: int(remaining)]
            self.truncated = True
        self._received += len(chunk)

        await self._flowing.wait()
        if self._discarding or not self._reading:
            return
        try:
            await self._send.send(chunk)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            # The consumer discarded the stream while we were waiting for room.
            return

    def end(self) -> None:
        """
        Producer side. No more data will be fed.
        """
        self._send.close()

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self])

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        self._reading = True
        self.resume()
        try:
            chunk = await self._receive.receive()
        except anyio.EndOfStream:
            raise StopAsyncIteration from None
        self.bytes_read += len(chunk)
        return chunk

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(fieldname={self.fieldname!r}, "
            f"filename={self.filename!r}, mimetype={self.mimetype!r})"
        )
