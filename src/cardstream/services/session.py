"""One streaming exchange for a single card.

Lifecycle::

    CREATED -> CONNECTING -> STREAMING -> DRAINING -> COMPLETED
                    \\             \\           \\
                     +-------------+-----------+--> FAILED

The session connects, sends the serialized StreamRequest as the first
frame, and then reads frames until a terminal message arrives. Decoded
elements go to the sequencer; the session's result is the sequencer's
outcome, so `open()` returns only after every accepted element has been
resolved and delivered, not merely when the server says it is done.
"""

from __future__ import annotations

import asyncio
import uuid
from enum import StrEnum

from cardstream.core.error_handler import (
    StructuredLogger,
    reset_correlation_id,
    set_correlation_id,
)
from cardstream.core.exceptions import (
    CardStreamError,
    FrameDecodeError,
    ServerStreamError,
    StreamStateError,
)
from cardstream.core.observability import SESSION_SPAN, get_tracer
from cardstream.schemas.cards import StreamRequest
from cardstream.schemas.stream import CompleteMessage, ElementMessage, ErrorMessage
from cardstream.services.codec import decode_frame
from cardstream.services.interfaces import (
    ChannelConnector,
    ChannelProtocol,
    ProgressCallback,
)
from cardstream.services.models import StreamOutcome
from cardstream.services.sequencer import BufferedSequencer, OrderedSequencer


slog = StructuredLogger(__name__)
tracer = get_tracer(__name__)


class SessionState(StrEnum):
    CREATED = "created"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DRAINING = "draining"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamSession:
    """Single-use stream session; create one per card."""

    def __init__(
        self,
        request: StreamRequest,
        *,
        connector: ChannelConnector,
        sequencer: OrderedSequencer | BufferedSequencer,
        on_progress: ProgressCallback | None = None,
        session_id: str | None = None,
    ) -> None:
        self.request = request
        self.connector = connector
        self.sequencer = sequencer
        self.on_progress = on_progress
        self.session_id = session_id or str(uuid.uuid4())

        self.state = SessionState.CREATED
        self.dropped_frames = 0
        self.completion: CompleteMessage | None = None

    async def open(self) -> StreamOutcome:
        """Run the stream to its end.

        Raises:
            ServerStreamError: the server sent an `error` frame.
            ConnectionLostError: the channel failed before completion.
            DeliveryError: the delivery sink failed.
            StreamStateError: the session was already used.
        """
        if self.state is not SessionState.CREATED:
            raise StreamStateError(f"Session {self.session_id} was already opened")

        token = set_correlation_id(self.session_id)
        try:
            with tracer.start_as_current_span(SESSION_SPAN) as span:
                try:
                    outcome = await self._run()
                except CardStreamError as e:
                    self.state = SessionState.FAILED
                    span.set_attribute("session.error_code", e.error_code)
                    slog.warning(
                        "Card stream failed", error_code=e.error_code, reason=e.message
                    )
                    raise
                except Exception:
                    self.state = SessionState.FAILED
                    span.set_attribute("session.error_code", "unexpected_error")
                    slog.exception("Card stream crashed")
                    raise
                finally:
                    span.set_attribute(
                        "elements.delivered", self.sequencer.delivered_count
                    )
                    span.set_attribute("elements.degraded", self.sequencer.degraded_count)
                    span.set_attribute("frames.dropped", self.dropped_frames)

                self.state = SessionState.COMPLETED
                if outcome.expected_total is not None:
                    span.set_attribute("elements.total", outcome.expected_total)
                slog.info(
                    "Card stream completed",
                    delivered=outcome.delivered_count,
                    degraded=outcome.degraded_count,
                    expected_total=outcome.expected_total,
                )
                return outcome
        finally:
            reset_correlation_id(token)

    async def _run(self) -> StreamOutcome:
        self.state = SessionState.CONNECTING
        channel = await self.connector()
        reader: asyncio.Task[CompleteMessage] | None = None
        finished: asyncio.Task[StreamOutcome] | None = None
        try:
            await channel.send(self.request.to_frame())
            slog.info("Connected; stream request sent")
            self._emit_progress("Connected")

            self.state = SessionState.STREAMING
            reader = asyncio.create_task(self._read_frames(channel))
            finished = asyncio.create_task(self.sequencer.wait())
            done, _ = await asyncio.wait(
                {reader, finished}, return_when=asyncio.FIRST_COMPLETED
            )

            if reader in done:
                self.completion = reader.result()
                self.state = SessionState.DRAINING
                # Nothing is valid after `complete`; the rest is local work
                await channel.close()
            else:
                # The sequencer settled while frames were still arriving,
                # which only a delivery failure can cause
                reader.cancel()
            return await finished
        except Exception as e:
            self.sequencer.abort(e)
            raise
        finally:
            pending = [t for t in (reader, finished) if t is not None]
            for task in pending:
                if not task.done():
                    task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            await channel.close()

    async def _read_frames(self, channel: ChannelProtocol) -> CompleteMessage:
        """Feed decoded frames to the sequencer until a terminal message."""
        try:
            while True:
                frame = await channel.receive()
                try:
                    message = decode_frame(frame)
                except FrameDecodeError as e:
                    self.dropped_frames += 1
                    slog.warning("Dropping malformed frame", reason=e.message)
                    continue

                if isinstance(message, ElementMessage):
                    slog.debug(
                        "Received element",
                        index=message.index,
                        kind=message.descriptor.type,
                    )
                    self.sequencer.enqueue(message)
                elif isinstance(message, CompleteMessage):
                    slog.info(
                        "Stream complete",
                        total_elements=message.total_count,
                        pending=self.sequencer.pending_count,
                    )
                    self.sequencer.finish(message.total_count)
                    return message
                elif isinstance(message, ErrorMessage):
                    slog.error("Server reported an error", reason=message.reason)
                    raise ServerStreamError(message.reason)
        except Exception as e:
            # Stop element processing before anything else gets scheduled
            self.sequencer.abort(e)
            raise

    def _emit_progress(self, label: str) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.sequencer.delivered_count, label)
        except Exception:
            slog.debug("on_progress callback failed", label=label)
