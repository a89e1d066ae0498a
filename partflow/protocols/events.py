from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from partflow.datastructures import FileStream
    from partflow.enums import LimitKind


@runtime_checkable
class EventListener(Protocol):
    """
    Receiver of the events emitted by a multipart event source.

    Every handler is called synchronously from the source's dispatch path.
    Nothing is emitted after `on_finish()` or `on_error()`.
    """

    def on_field(
        self, name: str, value: str, name_truncated: bool, value_truncated: bool
    ) -> None: ...

    def on_file(
        self, fieldname: str, stream: FileStream, filename: str, encoding: str, mimetype: str
    ) -> None: ...

    def on_limit(self, kind: LimitKind) -> None: ...

    def on_error(self, exc: BaseException) -> None: ...

    def on_finish(self) -> None: ...


@runtime_checkable
class EventSource(Protocol):
    """
    Push-style producer of multipart events, bound to a single listener.
    """

    async def run(self, listener: EventListener) -> None:
        """
        Consumes the underlying byte source, dispatching events to `listener`
        until exhaustion, error or `stop()`.
        """
        ...

    def stop(self) -> None:
        """
        Asks the source to emit nothing else and return from `run()`.
        """
        ...
