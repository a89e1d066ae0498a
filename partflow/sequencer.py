from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from contextlib import AsyncExitStack
from typing import Any

import anyio

from partflow.aggregator import FieldAggregator
from partflow.datastructures import FieldDict, FieldPart, FileStream, Header
from partflow.enums import LimitKind, SequencerState
from partflow.exceptions import MultiPartException
from partflow.hooks import ValidationHooks
from partflow.limits import LimitGuard, Limits
from partflow.logging import logger
from partflow.parsers import MultipartEmitter
from partflow.protocols.events import EventSource
from partflow.types import ByteStream, CheckField, CheckFile, Part


class _Waiter:
    """
    The single outstanding `next()` request.
    """

    __slots__ = ("_event", "_part", "_error")

    def __init__(self) -> None:
        self._event = anyio.Event()
        self._part: Part | None = None
        self._error: BaseException | None = None

    def resolve(self, part: Part | None) -> None:
        self._part = part
        self._event.set()

    def reject(self, error: BaseException) -> None:
        self._error = error
        self._event.set()

    async def wait(self) -> Part | None:
        await self._event.wait()
        if self._error is not None:
            raise self._error
        return self._part


class PartSequencer:
    """
    Hands the parts of a multipart body out one at a time.

    Events pushed by the bound `EventSource` go through the `LimitGuard`,
    then the `ValidationHooks`, then (with `auto_fields`) the
    `FieldAggregator`. Whatever survives either resolves the pending
    `next()` call or waits in a FIFO queue for the next one.

    The source runs inside a task group owned by the sequencer, so the
    sequencer must be used as an async context manager.

    **Example**

    ```python
    async with PartSequencer(emitter, auto_fields=True) as parts:
        async for part in parts:
            await save(part.filename, await part.read())

    print(parts.field["title"])
    ```

    Args:
        source: The event source driving this sequencer. One source per sequencer.
        auto_fields: Collect fields in `fields` and `field` instead of returning them.
        limits: Maximum number of parts, fields and files.
        check_field: `check_field(name, value)` returns an exception to reject a field.
        check_file: `check_file(fieldname, stream, filename)` returns an exception
            to reject a file.
    """

    def __init__(
        self,
        source: EventSource,
        *,
        auto_fields: bool = False,
        limits: Limits | None = None,
        check_field: CheckField | None = None,
        check_file: CheckFile | None = None,
    ) -> None:
        self.source = source
        self.auto_fields = auto_fields
        self.guard = LimitGuard(limits or Limits())
        self.hooks = ValidationHooks(check_field=check_field, check_file=check_file)
        self.aggregator = FieldAggregator()
        self.state = SequencerState.IDLE
        self._queue: deque[Part] = deque()
        self._waiter: _Waiter | None = None
        self._error: BaseException | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._closed = False

    @property
    def fields(self) -> list[FieldPart]:
        return self.aggregator.fields

    @property
    def field(self) -> FieldDict:
        return self.aggregator.field

    @property
    def is_terminal(self) -> bool:
        return self.state in SequencerState.get_terminal_states()

    @property
    def error(self) -> BaseException | None:
        return self._error

    async def __aenter__(self) -> PartSequencer:
        if self._exit_stack is not None:
            raise RuntimeError(f"{self.__class__.__name__} can only be entered once.")

        self._exit_stack = AsyncExitStack()
        task_group = await self._exit_stack.enter_async_context(anyio.create_task_group())
        self._exit_stack.callback(task_group.cancel_scope.cancel)
        self._exit_stack.callback(self.source.stop)
        task_group.start_soon(self._run)
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        assert self._exit_stack is not None
        self._closed = True
        return await self._exit_stack.__aexit__(*exc_info)

    async def _run(self) -> None:
        try:
            await self.source.run(self)
        except Exception as exc:
            self.on_error(exc)
            return

        if not self.is_terminal:
            self.on_error(MultiPartException("The event source stopped before finishing."))

    async def next(self) -> Part | None:
        """
        Returns the next part, or `None` once the body is exhausted.

        Raises the terminal error once every part accepted before it has been
        returned, and again on every later call. Only one call may be pending
        at a time.
        """
        if self._queue:
            return self._queue.popleft()

        if self.is_terminal:
            if self._error is not None:
                raise self._error
            return None

        if self._exit_stack is None:
            raise RuntimeError(
                f"{self.__class__.__name__} must be entered with `async with` before use."
            )
        if self._closed:
            raise RuntimeError(
                f"{self.__class__.__name__} is closed, its event source has stopped."
            )

        waiter = self._waiter = _Waiter()
        self._transition(SequencerState.AWAITING_EVENT)
        try:
            part = await waiter.wait()
        finally:
            if self._waiter is waiter:
                self._waiter = None
        if not self.is_terminal:
            self._transition(SequencerState.IDLE)
        return part

    def __aiter__(self) -> PartSequencer:
        return self

    async def __anext__(self) -> Part:
        part = await self.next()
        if part is None:
            raise StopAsyncIteration
        return part

    def on_field(self, name: str, value: str, name_truncated: bool, value_truncated: bool) -> None:
        if self.is_terminal:
            return

        error = self.guard.count_field() or self.hooks.validate_field(name, value)
        if error is not None:
            self._fail(error)
            return

        part = FieldPart(name, value, name_truncated, value_truncated)
        if self.auto_fields:
            self.aggregator.add(part)
        else:
            self._deliver(part)

    def on_file(
        self, fieldname: str, stream: FileStream, filename: str, encoding: str, mimetype: str
    ) -> None:
        if self.is_terminal:
            stream.discard()
            return

        error = self.guard.count_file()
        if error is not None:
            stream.discard()
            self._fail(error)
            return

        error = self.hooks.validate_file(fieldname, stream, filename)
        if error is not None:
            self._fail(error)
            return

        self._deliver(stream)

    def on_limit(self, kind: LimitKind) -> None:
        if not self.is_terminal:
            self._fail(self.guard.breach(kind))

    def on_error(self, exc: BaseException) -> None:
        if not self.is_terminal:
            self._fail(exc)

    def on_finish(self) -> None:
        if self.is_terminal:
            return

        self._transition(SequencerState.COMPLETED)
        if self._waiter is not None:
            waiter, self._waiter = self._waiter, None
            waiter.resolve(None)

    def _deliver(self, part: Part) -> None:
        if self._waiter is None:
            self._queue.append(part)
            return

        waiter, self._waiter = self._waiter, None
        self._transition(SequencerState.DELIVERING)
        waiter.resolve(part)

    def _fail(self, error: BaseException) -> None:
        self._error = error
        self._transition(SequencerState.FAILED)
        self.source.stop()
        if self._waiter is not None:
            waiter, self._waiter = self._waiter, None
            waiter.reject(error)

    def _transition(self, state: SequencerState) -> None:
        logger.debug("PartSequencer %s -> %s", self.state, state)
        self.state = state


def parse_parts(
    headers: Header | Mapping[Any, Any] | Iterable[tuple[bytes | str, bytes | str]],
    stream: ByteStream,
    *,
    auto_fields: bool = False,
    limits: Limits | None = None,
    check_field: CheckField | None = None,
    check_file: CheckFile | None = None,
    charset: str | None = None,
    preserve_path: bool | None = None,
) -> PartSequencer:
    """
    Builds a `PartSequencer` reading a `multipart/form-data` body.

    **Example**

    ```python
    async with parse_parts(request.headers, request.stream(), limits=Limits(files=1)) as parts:
        async for part in parts:
            if isinstance(part, FieldPart):
                name, value, *_ = part
            else:
                part.discard()
    ```
    """
    emitter = MultipartEmitter(
        headers, stream, limits=limits, charset=charset, preserve_path=preserve_path
    )
    return PartSequencer(
        emitter,
        auto_fields=auto_fields,
        limits=limits,
        check_field=check_field,
        check_file=check_file,
    )
