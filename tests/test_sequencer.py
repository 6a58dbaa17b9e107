"""Ordering, completion and degradation tests for the sequencers."""

from __future__ import annotations

import asyncio
import gc

import pytest

from conftest import RecordingSink, ScriptedResolver, element_frame, image_frame
from cardstream.core.exceptions import DeliveryError, ServerStreamError
from cardstream.schemas.stream import ElementMessage
from cardstream.services.codec import decode_frame
from cardstream.services.sequencer import (
    BufferedSequencer,
    OrderedSequencer,
    SequencerState,
)


def _element(index: int, kind: str = "text", **data) -> ElementMessage:
    message = decode_frame(element_frame(index, kind, **data))
    assert isinstance(message, ElementMessage)
    return message


def _image(index: int, ref: str) -> ElementMessage:
    message = decode_frame(image_frame(index, ref))
    assert isinstance(message, ElementMessage)
    return message


class TestOrderedSequencer:
    @pytest.mark.asyncio
    async def test_slow_resolution_does_not_reorder(self) -> None:
        resolver = ScriptedResolver(delays={"https://img.example/a.png": 0.05})
        sink = RecordingSink()
        sequencer = OrderedSequencer(resolver, sink)

        sequencer.enqueue(_element(0))
        sequencer.enqueue(_image(1, "https://img.example/a.png"))
        sequencer.enqueue(_element(2))
        sequencer.finish(3)
        outcome = await sequencer.wait()

        kinds = [e.type for e in sink.delivered]
        assert kinds == ["text", "image", "text"]
        assert sink.texts == ["text 0", "text 2"]
        assert sink.delivered[1].ref == "host-ref:https://img.example/a.png"
        assert outcome.delivered_count == 3
        assert outcome.degraded_count == 0
        assert outcome.elements is None
        assert sequencer.state is SequencerState.COMPLETED

    @pytest.mark.asyncio
    async def test_finish_while_queue_non_empty_waits_for_drain(self) -> None:
        resolver = ScriptedResolver(delays={"https://img.example/slow.png": 0.05})
        sink = RecordingSink()
        sequencer = OrderedSequencer(resolver, sink)

        sequencer.enqueue(_image(0, "https://img.example/slow.png"))
        sequencer.enqueue(_element(1))
        sequencer.finish(2)

        waiter = asyncio.create_task(sequencer.wait())
        await asyncio.sleep(0.01)
        assert not waiter.done()
        assert sequencer.state is SequencerState.DRAINING

        outcome = await waiter
        assert outcome.delivered_count == 2
        assert len(sink.delivered) == 2

    @pytest.mark.asyncio
    async def test_failed_resolution_degrades_and_continues(self) -> None:
        resolver = ScriptedResolver(failures={"https://img.example/bad.png"})
        sink = RecordingSink()
        sequencer = OrderedSequencer(resolver, sink)

        sequencer.enqueue(_image(0, "https://img.example/bad.png"))
        sequencer.enqueue(_element(1))
        sequencer.enqueue(_image(2, "https://img.example/good.png"))
        sequencer.finish(3)
        outcome = await sequencer.wait()

        assert [e.type for e in sink.delivered] == ["image", "text", "image"]
        assert sink.delivered[0].ref == "https://img.example/bad.png"
        assert sink.delivered[2].ref == "host-ref:https://img.example/good.png"
        assert outcome.degraded_count == 1
        assert outcome.delivered_count == 3
        # Resolution is attempted once per element, never retried
        assert resolver.calls.count("https://img.example/bad.png") == 1

    @pytest.mark.asyncio
    async def test_unexpected_resolver_exception_also_degrades(self) -> None:
        class BrokenResolver:
            async def resolve(self, locator: str, *, kind: str = "image"):
                raise KeyError("boom")

        sink = RecordingSink()
        sequencer = OrderedSequencer(BrokenResolver(), sink)
        sequencer.enqueue(_image(0, "https://img.example/x.png"))
        sequencer.finish(1)
        outcome = await sequencer.wait()

        assert outcome.degraded_count == 1
        assert sink.delivered[0].ref == "https://img.example/x.png"

    @pytest.mark.asyncio
    async def test_drain_restarts_after_going_idle(self) -> None:
        sink = RecordingSink()
        sequencer = OrderedSequencer(ScriptedResolver(), sink)

        sequencer.enqueue(_element(0))
        await asyncio.sleep(0.01)
        assert sequencer.state is SequencerState.IDLE
        assert len(sink.delivered) == 1

        sequencer.enqueue(_element(1))
        assert sequencer.state is SequencerState.DRAINING
        sequencer.finish(2)
        outcome = await sequencer.wait()

        assert sink.texts == ["text 0", "text 1"]
        assert outcome.delivered_count == 2

    @pytest.mark.asyncio
    async def test_finish_with_empty_queue_completes_immediately(self) -> None:
        sequencer = OrderedSequencer(ScriptedResolver(), RecordingSink())
        sequencer.finish(0)
        assert sequencer.state is SequencerState.COMPLETED
        outcome = await sequencer.wait()
        assert outcome.delivered_count == 0
        assert outcome.count_matches

    @pytest.mark.asyncio
    async def test_total_mismatch_is_not_fatal(self, caplog) -> None:
        sink = RecordingSink()
        sequencer = OrderedSequencer(ScriptedResolver(), sink)
        sequencer.enqueue(_element(0))
        sequencer.finish(2)
        outcome = await sequencer.wait()

        assert outcome.delivered_count == 1
        assert outcome.expected_total == 2
        assert not outcome.count_matches
        assert "announced 2 elements" in caplog.text

    @pytest.mark.asyncio
    async def test_index_gap_is_logged_not_reordered(self, caplog) -> None:
        sink = RecordingSink()
        sequencer = OrderedSequencer(ScriptedResolver(), sink)
        sequencer.enqueue(_element(0))
        sequencer.enqueue(_element(2))
        sequencer.enqueue(_element(1))
        sequencer.finish(3)
        await sequencer.wait()

        assert sink.texts == ["text 0", "text 2", "text 1"]
        assert "arrived while 1 was expected" in caplog.text

    @pytest.mark.asyncio
    async def test_sink_failure_is_fatal(self) -> None:
        sink = RecordingSink(fail_on=1)
        sequencer = OrderedSequencer(ScriptedResolver(), sink)
        for i in range(4):
            sequencer.enqueue(_element(i))
        sequencer.finish(4)

        with pytest.raises(DeliveryError) as exc:
            await sequencer.wait()
        assert "element 1" in exc.value.message
        assert sink.texts == ["text 0"]
        assert sequencer.state is SequencerState.FAILED
        assert sequencer.pending_count == 0

    @pytest.mark.asyncio
    async def test_sink_returning_false_is_fatal(self) -> None:
        async def rejecting_sink(_element) -> bool:
            return False

        sequencer = OrderedSequencer(ScriptedResolver(), rejecting_sink)
        sequencer.enqueue(_element(0))
        with pytest.raises(DeliveryError):
            await sequencer.wait()

    @pytest.mark.asyncio
    async def test_abort_stops_delivery(self) -> None:
        resolver = ScriptedResolver(delays={"https://img.example/a.png": 0.05})
        sink = RecordingSink()
        sequencer = OrderedSequencer(resolver, sink)
        sequencer.enqueue(_image(0, "https://img.example/a.png"))
        sequencer.enqueue(_element(1))

        await asyncio.sleep(0.01)
        sequencer.abort(ServerStreamError("quota exceeded"))

        with pytest.raises(ServerStreamError):
            await sequencer.wait()
        await asyncio.sleep(0.06)
        assert sink.delivered == []
        assert sequencer.state is SequencerState.FAILED

    @pytest.mark.asyncio
    async def test_elements_after_finish_are_dropped(self) -> None:
        sink = RecordingSink()
        sequencer = OrderedSequencer(ScriptedResolver(), sink)
        sequencer.enqueue(_element(0))
        sequencer.finish(1)
        sequencer.enqueue(_element(1))
        outcome = await sequencer.wait()
        assert outcome.delivered_count == 1
        assert sink.texts == ["text 0"]

    @pytest.mark.asyncio
    async def test_progress_reports_delivered_counts(self) -> None:
        events: list[tuple[int, str]] = []
        sequencer = OrderedSequencer(
            ScriptedResolver(),
            RecordingSink(),
            on_progress=lambda count, label: events.append((count, label)),
        )
        sequencer.enqueue(_element(0))
        sequencer.finish(1)
        await sequencer.wait()

        assert events == [
            (0, "Received text element"),
            (1, "Delivered text element"),
            (1, "Ready"),
        ]


class TestBufferedSequencer:
    @pytest.mark.asyncio
    async def test_resolves_eagerly_and_replays_in_order(self) -> None:
        resolver = ScriptedResolver(
            delays={"https://img.example/a.png": 0.05, "https://img.example/b.png": 0.01}
        )
        sink = RecordingSink()
        sequencer = BufferedSequencer(resolver, sink)

        sequencer.enqueue(_image(0, "https://img.example/a.png"))
        sequencer.enqueue(_image(1, "https://img.example/b.png"))
        sequencer.enqueue(_element(2))
        await asyncio.sleep(0)
        # Both uploads started before completion; nothing delivered yet
        assert resolver.calls == ["https://img.example/a.png", "https://img.example/b.png"]
        assert sink.delivered == []

        sequencer.finish(3)
        outcome = await sequencer.wait()
        assert [getattr(e, "ref", None) for e in sink.delivered] == [
            "host-ref:https://img.example/a.png",
            "host-ref:https://img.example/b.png",
            None,
        ]
        assert outcome.delivered_count == 3

    @pytest.mark.asyncio
    async def test_without_sink_returns_elements(self) -> None:
        resolver = ScriptedResolver(failures={"https://img.example/bad.png"})
        sequencer = BufferedSequencer(resolver)
        sequencer.enqueue(_element(0))
        sequencer.enqueue(_image(1, "https://img.example/bad.png"))
        sequencer.finish(2)
        outcome = await sequencer.wait()

        assert outcome.elements is not None
        assert [e.type for e in outcome.elements] == ["text", "image"]
        assert outcome.elements[1].ref == "https://img.example/bad.png"
        assert outcome.degraded_count == 1
        assert outcome.delivered_count == 2

    @pytest.mark.asyncio
    async def test_abort_cancels_pending_resolutions(self) -> None:
        resolver = ScriptedResolver(delays={"https://img.example/a.png": 1.0})
        sink = RecordingSink()
        sequencer = BufferedSequencer(resolver, sink)
        sequencer.enqueue(_image(0, "https://img.example/a.png"))
        await asyncio.sleep(0)

        sequencer.abort(ServerStreamError("quota exceeded"))
        with pytest.raises(ServerStreamError):
            await sequencer.wait()
        assert sink.delivered == []
        assert sequencer.pending_count == 0


class TestOutcomeSettlement:
    @pytest.mark.asyncio
    async def test_failure_before_anyone_waits_is_reported_to_later_waiters(
        self, caplog
    ) -> None:
        sequencer = OrderedSequencer(ScriptedResolver(), RecordingSink())
        sequencer.abort(ServerStreamError("quota exceeded"))
        gc.collect()
        await asyncio.sleep(0)
        assert "never retrieved" not in caplog.text

        with pytest.raises(ServerStreamError):
            await sequencer.wait()

    @pytest.mark.asyncio
    async def test_completion_before_anyone_waits_is_kept(self) -> None:
        sequencer = OrderedSequencer(ScriptedResolver(), RecordingSink())
        sequencer.enqueue(_element(0))
        sequencer.finish(1)
        await asyncio.sleep(0.01)
        assert sequencer.state is SequencerState.COMPLETED

        outcome = await sequencer.wait()
        assert outcome.delivered_count == 1
