from __future__ import annotations

import anyio
import pytest

from partflow import FieldDict, FieldPart, FileStream, Limits, PartSequencer
from partflow.enums import LimitKind, SequencerState
from partflow.exceptions import (
    FieldsLimitError,
    FilesLimitError,
    MultiPartException,
    PartsLimitError,
    ValidationError,
)
from tests.utils import ScriptedEmitter, body_stream, field_event, file_event

pytestmark = pytest.mark.anyio


async def drain(parts: PartSequencer) -> list:
    delivered = []
    async for part in parts:
        if isinstance(part, FileStream):
            part.discard()
        delivered.append(part)
    return delivered


@pytest.mark.parametrize("yield_between", [True, False], ids=["interleaved", "burst"])
async def test_parts_keep_arrival_order(yield_between):
    events = [
        field_event("a", "1"),
        file_event("f1", "one.txt", b"x"),
        field_event("b", "2"),
        field_event("a", "3"),
        file_event("f2", "two.txt", b"y"),
        ("finish",),
    ]
    emitter = ScriptedEmitter(events, yield_between=yield_between)

    async with PartSequencer(emitter) as parts:
        delivered = await drain(parts)

    assert [
        part.name if isinstance(part, FieldPart) else part.fieldname for part in delivered
    ] == ["a", "f1", "b", "a", "f2"]
    assert all(len(part) == 4 for part in delivered if isinstance(part, FieldPart))
    assert parts.state == SequencerState.COMPLETED


async def test_field_parts_are_four_tuples():
    emitter = ScriptedEmitter([("field", "name", "value", True, False), ("finish",)])

    async with PartSequencer(emitter) as parts:
        part = await parts.next()

    name, value, name_truncated, value_truncated = part
    assert (name, value, name_truncated, value_truncated) == ("name", "value", True, False)
    assert part == FieldPart("name", "value", True, False)


async def test_end_marker_is_replayed():
    emitter = ScriptedEmitter([field_event("a", "1"), ("finish",)])

    async with PartSequencer(emitter) as parts:
        assert await parts.next() == FieldPart("a", "1", False, False)
        assert await parts.next() is None
        assert await parts.next() is None
        assert await parts.next() is None


async def test_waiting_consumer_is_resolved_by_the_next_event():
    emitter = ScriptedEmitter([], hold_open=True)

    async with PartSequencer(emitter) as parts:
        await anyio.sleep(0)
        assert parts.state == SequencerState.IDLE

        async def push():
            await anyio.sleep(0.01)
            assert parts.state == SequencerState.AWAITING_EVENT
            parts.on_field("late", "value", False, False)
            parts.on_finish()

        async with anyio.create_task_group() as tg:
            tg.start_soon(push)
            part = await parts.next()

        assert part == FieldPart("late", "value", False, False)
        assert await parts.next() is None


async def test_file_streams_are_delivered_paused():
    emitter = ScriptedEmitter([file_event("upload", "a.dat", b"payload"), ("finish",)])

    async with PartSequencer(emitter) as parts:
        stream = await parts.next()
        await anyio.sleep(0.01)

        assert isinstance(stream, FileStream)
        assert stream.is_paused
        assert stream.fieldname == "upload"
        assert stream.filename == "a.dat"
        assert await stream.read() == b"payload"
        assert await parts.next() is None


async def test_failure_is_replayed_identically():
    error = RuntimeError("boom")
    emitter = ScriptedEmitter([("error", error)])

    async with PartSequencer(emitter) as parts:
        for _ in range(3):
            with pytest.raises(RuntimeError) as raised:
                await parts.next()
            assert raised.value is error

    assert parts.state == SequencerState.FAILED
    assert parts.error is error


async def test_parts_accepted_before_a_failure_are_still_delivered():
    error = RuntimeError("broken body")
    emitter = ScriptedEmitter(
        [field_event("a", "1"), field_event("b", "2"), ("error", error)], yield_between=False
    )

    async with PartSequencer(emitter) as parts:
        await anyio.sleep(0.01)

        assert (await parts.next()).name == "a"
        assert (await parts.next()).name == "b"
        with pytest.raises(RuntimeError):
            await parts.next()


async def test_events_after_a_failure_are_ignored():
    events = [
        ("limit", LimitKind.PARTS),
        field_event("a", "1"),
        file_event("f", "late.dat", b"data"),
        ("finish",),
    ]
    emitter = ScriptedEmitter(events, honour_stop=False)

    async with PartSequencer(emitter) as parts:
        with pytest.raises(PartsLimitError):
            await parts.next()
        await anyio.sleep(0.01)

        with pytest.raises(PartsLimitError):
            await parts.next()

    assert emitter.stopped
    assert emitter.streams[0].is_discarded
    assert parts.guard.parts == 0


async def test_source_returning_without_finish_fails():
    async with PartSequencer(ScriptedEmitter([field_event("a", "1")])) as parts:
        assert (await parts.next()).name == "a"
        with pytest.raises(MultiPartException):
            await parts.next()


async def test_errors_raised_by_the_source_pass_through():
    error = ValueError("source exploded")

    class ExplodingEmitter(ScriptedEmitter):
        async def run(self, listener):
            raise error

    async with PartSequencer(ExplodingEmitter([])) as parts:
        with pytest.raises(ValueError) as raised:
            await parts.next()

    assert raised.value is error


async def test_next_requires_the_context_manager():
    parts = PartSequencer(ScriptedEmitter([("finish",)]))

    with pytest.raises(RuntimeError, match="async with"):
        await parts.next()


async def test_cannot_be_entered_twice():
    parts = PartSequencer(ScriptedEmitter([("finish",)]))

    async with parts:
        with pytest.raises(RuntimeError, match="only be entered once"):
            await parts.__aenter__()


async def test_leaving_early_does_not_hang():
    emitter = ScriptedEmitter([file_event("f", "big.dat", b"x" * 10), ("finish",)])

    with anyio.fail_after(1):
        async with PartSequencer(emitter) as parts:
            stream = await parts.next()
            assert stream.is_paused

    assert emitter.stopped


class TestAutoFields:
    async def test_fields_are_aggregated(self):
        events = [
            field_event("a", "x"),
            file_event("f1", "one.dat", b"1"),
            field_event("b", "only"),
            field_event("a", "y"),
            file_event("f2", "two.dat", b"2"),
            field_event("a", "z"),
            ("finish",),
        ]

        async with PartSequencer(ScriptedEmitter(events), auto_fields=True) as parts:
            delivered = await drain(parts)

        assert [stream.fieldname for stream in delivered] == ["f1", "f2"]
        assert [field.name for field in parts.fields] == ["a", "b", "a", "a"]
        assert parts.field["a"] == ["x", "y", "z"]
        assert parts.field["b"] == "only"
        assert len(parts.field) == 2

    async def test_three_names_two_values_each(self):
        events = []
        for name in ("alpha", "beta", "gamma"):
            events.append(field_event(name, f"{name}-1"))
        for index in range(3):
            events.append(file_event(f"file{index}", f"{index}.dat", b"data"))
        for name in ("alpha", "beta", "gamma"):
            events.append(field_event(name, f"{name}-2"))
        events.append(("finish",))

        async with PartSequencer(ScriptedEmitter(events), auto_fields=True) as parts:
            delivered = await drain(parts)

        assert len(delivered) == 3
        assert all(isinstance(part, FileStream) for part in delivered)
        assert len(parts.fields) == 6
        assert len(parts.field) == 3
        for name in ("alpha", "beta", "gamma"):
            assert parts.field[name] == [f"{name}-1", f"{name}-2"]

    async def test_field_named_like_the_membership_check(self):
        events = [
            field_event("__contains__", "first"),
            field_event("has", "second"),
            field_event("__contains__", "third"),
            ("finish",),
        ]

        async with PartSequencer(ScriptedEmitter(events), auto_fields=True) as parts:
            await drain(parts)

        assert "__contains__" in parts.field
        assert "missing" not in parts.field
        assert parts.field.has("has")
        assert parts.field["has"] == "second"
        assert parts.field["__contains__"] == ["first", "third"]
        assert type(parts.field).__contains__ is FieldDict.__contains__
        assert callable(parts.field.has)

    async def test_fields_collected_before_a_failure_remain(self):
        events = [field_event("a", "1"), field_event("b", "2"), field_event("c", "3"), ("finish",)]

        async with PartSequencer(
            ScriptedEmitter(events), auto_fields=True, limits=Limits(fields=2)
        ) as parts:
            with pytest.raises(FieldsLimitError):
                await parts.next()

        assert [field.name for field in parts.fields] == ["a", "b"]
        assert "c" not in parts.field


class TestLimits:
    @pytest.mark.parametrize(
        "limits,error_class,delivered_count",
        [
            (Limits(files=1), FilesLimitError, 4),
            (Limits(fields=2), FieldsLimitError, 3),
            (Limits(parts=3), PartsLimitError, 3),
            (Limits(parts=0), PartsLimitError, 0),
        ],
        ids=["files", "fields", "parts", "no-parts"],
    )
    async def test_breach_stops_delivery(self, limits, error_class, delivered_count):
        events = [
            field_event("a", "1"),
            file_event("f1", "one.dat", b"1"),
            field_event("b", "2"),
            field_event("c", "3"),
            file_event("f2", "two.dat", b"2"),
            field_event("d", "4"),
            ("finish",),
        ]
        delivered = []

        async with PartSequencer(ScriptedEmitter(events), limits=limits) as parts:
            with pytest.raises(error_class) as raised:
                async for part in parts:
                    if isinstance(part, FileStream):
                        part.discard()
                    delivered.append(part)

        assert len(delivered) == delivered_count
        assert raised.value.status == 413

    async def test_file_over_the_limit_is_never_delivered(self):
        events = [file_event("f1", "one.dat", b"1"), file_event("f2", "two.dat", b"2"), ("finish",)]
        emitter = ScriptedEmitter(events)

        async with PartSequencer(emitter, limits=Limits(files=1)) as parts:
            first = await parts.next()
            first.discard()
            with pytest.raises(FilesLimitError):
                await parts.next()

        assert first.fieldname == "f1"
        assert emitter.streams[1].is_discarded

    async def test_collaborator_breach_events(self):
        emitter = ScriptedEmitter([field_event("a", "1"), ("limit", LimitKind.FILES)])

        async with PartSequencer(emitter) as parts:
            assert (await parts.next()).name == "a"
            with pytest.raises(FilesLimitError) as raised:
                await parts.next()

        assert raised.value.code == "Request_files_limit"


class TestValidationHooks:
    async def test_check_field_runs_in_auto_fields_mode(self):
        seen = []

        def check_field(name, value):
            seen.append((name, value))
            if name == "_csrf" and value != "pass":
                return ValidationError("invalid csrf token")

        events = [field_event("a", "1"), field_event("_csrf", "nope"), field_event("b", "2")]
        emitter = ScriptedEmitter([*events, ("finish",)])

        async with PartSequencer(emitter, auto_fields=True, check_field=check_field) as parts:
            with pytest.raises(ValidationError, match="invalid csrf token"):
                await parts.next()

        assert seen == [("a", "1"), ("_csrf", "nope")]
        assert parts.field.dump() == {"a": "1"}

    async def test_rejected_file_is_discarded(self):
        error = ValidationError("invalid filename extension")

        def check_file(fieldname, stream, filename):
            assert isinstance(stream, FileStream)
            if not filename.endswith(".dat"):
                return error

        events = [file_event("f1", "one.dat", b"1"), file_event("f2", "two.exe", b"2" * 1000)]
        emitter = ScriptedEmitter([*events, ("finish",)])

        async with PartSequencer(emitter, check_file=check_file) as parts:
            first = await parts.next()
            assert await first.read() == b"1"
            with pytest.raises(ValidationError) as raised:
                await parts.next()

        assert raised.value is error
        assert emitter.streams[1].is_discarded

    async def test_limits_are_checked_before_hooks(self):
        calls = []

        def check_field(name, value):
            calls.append(name)

        emitter = ScriptedEmitter([field_event("a", "1"), field_event("b", "2"), ("finish",)])

        async with PartSequencer(emitter, limits=Limits(fields=1), check_field=check_field) as parts:
            await parts.next()
            with pytest.raises(FieldsLimitError):
                await parts.next()

        assert calls == ["a"]


def test_protocols_are_satisfied():
    from partflow.parsers import MultipartEmitter
    from partflow.protocols.events import EventListener, EventSource

    emitter = MultipartEmitter({}, body_stream(b""))
    parts = PartSequencer(emitter)

    assert isinstance(emitter, EventSource)
    assert isinstance(ScriptedEmitter([]), EventSource)
    assert isinstance(parts, EventListener)


async def test_next_after_leaving_the_block_raises():
    emitter = ScriptedEmitter([field_event("a", "1")], hold_open=True)

    async with PartSequencer(emitter) as parts:
        assert (await parts.next()).name == "a"

    assert emitter.stopped
    with anyio.fail_after(1):
        with pytest.raises(RuntimeError, match="is closed"):
            await parts.next()


async def test_queued_parts_survive_leaving_the_block():
    emitter = ScriptedEmitter([field_event("a", "1"), field_event("b", "2")], hold_open=True)

    async with PartSequencer(emitter) as parts:
        await anyio.sleep(0.01)

    assert (await parts.next()).name == "a"
    assert (await parts.next()).name == "b"
    with pytest.raises(RuntimeError, match="is closed"):
        await parts.next()
