"""Ordered delivery of streamed design elements.

Two consuming strategies exist and a session uses exactly one of them:

* OrderedSequencer (default) resolves and delivers each element before the
  next one is dequeued. Element N is fully resolved and placed before
  element N+1 is looked at, so the destination's stacking order always
  matches the order the server emitted.
* BufferedSequencer starts every resource resolution as soon as the element
  arrives, keeps descriptors in arrival order and replays them only after
  upstream completion. Faster when images dominate, at the cost of holding
  the whole card in memory.

Resolution failures never fail a stream: the element is delivered with its
original locator and counted as degraded. A sink failure is fatal.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import StrEnum

from cardstream.core.exceptions import DeliveryError, ResourceResolutionError
from cardstream.schemas.elements import ElementDescriptor
from cardstream.schemas.stream import ElementMessage
from cardstream.services.interfaces import (
    DeliverySink,
    ProgressCallback,
    ResourceResolverProtocol,
)
from cardstream.services.models import ResolvedResource, StreamOutcome


logger = logging.getLogger(__name__)


class SequencerState(StrEnum):
    IDLE = "idle"
    DRAINING = "draining"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({SequencerState.COMPLETED, SequencerState.FAILED})


class _SequencerBase:
    def __init__(
        self,
        resolver: ResourceResolverProtocol,
        sink: DeliverySink | None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.resolver = resolver
        self.sink = sink
        self.on_progress = on_progress

        self.state = SequencerState.IDLE
        self.delivered_count = 0
        self.degraded_count = 0
        self.expected_total: int | None = None
        self.upstream_finished = False

        self._next_index = 0
        # Created by the first waiter only, so an unobserved failure leaves
        # no unretrieved future behind
        self._done: asyncio.Future[StreamOutcome] | None = None
        self._outcome: StreamOutcome | None = None
        self._error: BaseException | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    async def wait(self) -> StreamOutcome:
        """Wait until every accepted element is delivered, or the run fails."""
        return await asyncio.shield(self._future())

    def _future(self) -> asyncio.Future[StreamOutcome]:
        if self._done is None:
            self._done = asyncio.get_running_loop().create_future()
            if self._error is not None:
                self._done.set_exception(self._error)
            elif self._outcome is not None:
                self._done.set_result(self._outcome)
        return self._done

    @property
    def _settled(self) -> bool:
        return self._outcome is not None or self._error is not None

    def _accepts(self, message: ElementMessage) -> bool:
        if self.is_terminal:
            logger.debug("Dropping element %d; sequencer is %s", message.index, self.state)
            return False
        if self.upstream_finished:
            logger.warning(
                "Dropping element %d received after stream completion", message.index
            )
            return False
        if message.index != self._next_index:
            logger.warning(
                "Element index %d arrived while %d was expected; "
                "delivering in arrival order",
                message.index,
                self._next_index,
            )
        self._next_index = message.index + 1
        return True

    async def _resolved_descriptor(
        self,
        message: ElementMessage,
        resolution: asyncio.Future[ResolvedResource] | None = None,
    ) -> ElementDescriptor:
        """Swap the external locator for a host reference, or degrade."""
        descriptor = message.descriptor
        locator = descriptor.resource_locator
        if locator is None:
            return descriptor
        try:
            if resolution is None:
                resolved = await self.resolver.resolve(locator, kind=descriptor.type)
            else:
                resolved = await resolution
        except ResourceResolutionError as e:
            self.degraded_count += 1
            logger.warning(
                "Resource for element %d could not be resolved (%s); "
                "keeping original locator",
                message.index,
                e.message,
            )
            return descriptor
        except Exception:
            self.degraded_count += 1
            logger.exception(
                "Unexpected resolver failure for element %d; keeping original locator",
                message.index,
            )
            return descriptor
        return descriptor.with_reference(resolved.reference)

    async def _deliver(self, index: int, descriptor: ElementDescriptor) -> None:
        assert self.sink is not None
        try:
            accepted = await self.sink(descriptor)
        except Exception as e:
            raise DeliveryError(
                f"Delivery of element {index} failed: {type(e).__name__}: {e}"
            ) from e
        if accepted is False:
            raise DeliveryError(f"Host rejected element {index} ({descriptor.type})")
        self.delivered_count += 1
        self._emit_progress(f"Delivered {descriptor.type} element")

    def _emit_progress(self, label: str) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.delivered_count, label)
        except Exception:
            logger.debug("on_progress callback failed", exc_info=True)

    def _complete(self, elements: list[ElementDescriptor] | None = None) -> None:
        self.state = SequencerState.COMPLETED
        if self.expected_total is not None and self.expected_total != self.delivered_count:
            logger.warning(
                "Stream announced %d elements but %d were delivered",
                self.expected_total,
                self.delivered_count,
            )
        self._emit_progress("Ready")
        if self._settled:
            return
        self._outcome = StreamOutcome(
            delivered_count=self.delivered_count,
            degraded_count=self.degraded_count,
            expected_total=self.expected_total,
            elements=elements,
        )
        if self._done is not None and not self._done.done():
            self._done.set_result(self._outcome)

    def _fail(self, error: BaseException) -> None:
        self.state = SequencerState.FAILED
        if self._settled:
            return
        self._error = error
        if self._done is not None and not self._done.done():
            self._done.set_exception(error)


class OrderedSequencer(_SequencerBase):
    """Single-consumer FIFO that resolves and delivers strictly in order.

    At most one drain task exists at a time. The queue is appended at the
    tail by `enqueue` and consumed only from the head by the drain task;
    both run on the same event loop, so the check for an empty queue and
    the transition back to IDLE happen without an intervening await.
    """

    def __init__(
        self,
        resolver: ResourceResolverProtocol,
        sink: DeliverySink,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        super().__init__(resolver, sink, on_progress=on_progress)
        self._queue: deque[ElementMessage] = deque()
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    def enqueue(self, message: ElementMessage) -> None:
        if not self._accepts(message):
            return
        self._queue.append(message)
        self._emit_progress(f"Received {message.descriptor.type} element")
        if self.state is SequencerState.IDLE:
            self.state = SequencerState.DRAINING
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    def finish(self, total_count: int) -> None:
        """Record upstream completion; completes now if nothing is pending."""
        if self.is_terminal:
            return
        self.upstream_finished = True
        self.expected_total = total_count
        if self.state is SequencerState.IDLE:
            self._complete()

    def abort(self, error: BaseException) -> None:
        """Stop draining, drop queued elements and fail the outcome."""
        if self.is_terminal:
            return
        dropped = len(self._queue)
        self._queue.clear()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        if dropped:
            logger.info("Aborted with %d undelivered element(s) queued", dropped)
        self._fail(error)

    async def _drain(self) -> None:
        try:
            while self._queue:
                message = self._queue.popleft()
                descriptor = await self._resolved_descriptor(message)
                await self._deliver(message.index, descriptor)
        except DeliveryError as e:
            logger.error("Stopping stream: %s", e.message)
            self._queue.clear()
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Drain loop crashed")
            self._queue.clear()
            self._fail(e)
            return

        if self.upstream_finished:
            self._complete()
        else:
            self.state = SequencerState.IDLE


class BufferedSequencer(_SequencerBase):
    """Eager variant: resolve on arrival, replay in arrival order on finish.

    With a sink, elements are delivered in order after completion. Without
    one, the resolved descriptors are returned in `StreamOutcome.elements`
    so the caller can commit them atomically (e.g. create a page with all
    of them at once).
    """

    def __init__(
        self,
        resolver: ResourceResolverProtocol,
        sink: DeliverySink | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        super().__init__(resolver, sink, on_progress=on_progress)
        self._entries: list[tuple[ElementMessage, asyncio.Task[ResolvedResource] | None]] = []
        self._replay_task: asyncio.Task[None] | None = None

    @property
    def pending_count(self) -> int:
        return len(self._entries)

    def enqueue(self, message: ElementMessage) -> None:
        if not self._accepts(message):
            return
        descriptor = message.descriptor
        task: asyncio.Task[ResolvedResource] | None = None
        locator = descriptor.resource_locator
        if locator is not None:
            task = asyncio.get_running_loop().create_task(
                self.resolver.resolve(locator, kind=descriptor.type)
            )
        self._entries.append((message, task))
        self._emit_progress(f"Received {descriptor.type} element")

    def finish(self, total_count: int) -> None:
        if self.is_terminal or self.upstream_finished:
            return
        self.upstream_finished = True
        self.expected_total = total_count
        self.state = SequencerState.DRAINING
        self._replay_task = asyncio.get_running_loop().create_task(self._replay())

    def abort(self, error: BaseException) -> None:
        if self.is_terminal:
            return
        for _, task in self._entries:
            if task is None:
                continue
            if not task.done():
                task.cancel()
            elif not task.cancelled():
                # Results of finished resolutions are discarded with the card
                task.exception()
        self._entries.clear()
        if self._replay_task is not None and not self._replay_task.done():
            self._replay_task.cancel()
        self._fail(error)

    async def _replay(self) -> None:
        if any(task is not None for _, task in self._entries):
            self._emit_progress("Uploading images...")
        try:
            resolved: list[tuple[int, ElementDescriptor]] = []
            for message, task in self._entries:
                descriptor = await self._resolved_descriptor(message, task)
                resolved.append((message.index, descriptor))
            self._entries.clear()

            if self.sink is None:
                self.delivered_count = len(resolved)
                self._complete([descriptor for _, descriptor in resolved])
                return

            for index, descriptor in resolved:
                await self._deliver(index, descriptor)
        except DeliveryError as e:
            logger.error("Stopping stream: %s", e.message)
            self._fail(e)
            return
        except Exception as e:
            logger.exception("Replay crashed")
            self._fail(e)
            return

        self._complete()
