"""Batch orchestration: one stream session per card, one card at a time."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Literal

from cardstream.core.config import Settings, get_settings
from cardstream.core.error_handler import describe_error
from cardstream.core.exceptions import CardStreamError, DeliveryError
from cardstream.schemas.cards import Card, PageDimensions, StreamRequest
from cardstream.schemas.elements import ElementDescriptor
from cardstream.services.interfaces import (
    ChannelConnector,
    DeliverySink,
    DesignHostProtocol,
    ErrorCallback,
    ProgressCallback,
    ResourceResolverProtocol,
)
from cardstream.services.models import BatchResult, CardResult, StreamOutcome
from cardstream.services.sequencer import BufferedSequencer, OrderedSequencer
from cardstream.services.session import StreamSession


logger = logging.getLogger(__name__)

DeliveryMode = Literal["sequential", "buffered"]


class StreamOrchestrator:
    """Streams a batch of cards into destination pages.

    Each card gets its own StreamSession and a delivery sink bound to its
    page: the page slot given for that position when there is one, a new
    page titled after the card otherwise. A failing card is recorded in its
    CardResult and the batch moves on to the next card.

    In `sequential` mode elements are placed as they drain, so a card that
    fails midway leaves its partial page behind. In `buffered` mode with no
    page slot, the page is created with every element once the stream has
    fully succeeded, so a failed card creates nothing.
    """

    def __init__(
        self,
        host: DesignHostProtocol,
        resolver: ResourceResolverProtocol,
        connector: ChannelConnector,
        *,
        mode: DeliveryMode | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.host = host
        self.resolver = resolver
        self.connector = connector
        self.settings = settings or get_settings()
        self.mode: DeliveryMode = mode or self.settings.DELIVERY_MODE

    async def run(
        self,
        cards: Sequence[Card],
        page_dimensions: PageDimensions,
        *,
        page_ids: Sequence[str | None] | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BatchResult:
        batch = BatchResult()
        total = len(cards)
        for position, card in enumerate(cards):
            page_id = None
            if page_ids is not None and position < len(page_ids):
                page_id = page_ids[position]
            result = await self.stream_card(
                card,
                page_dimensions,
                position=position,
                page_id=page_id,
                on_progress=self._card_progress(on_progress, position, total),
            )
            batch.results.append(result)
            if not result.succeeded and on_error is not None:
                self._notify_error(
                    on_error, f"Card {position + 1} ({card.title}): {result.error}"
                )
        logger.info(
            "Batch finished: %d/%d card(s) succeeded", len(batch.succeeded), total
        )
        return batch

    async def stream_card(
        self,
        card: Card,
        page_dimensions: PageDimensions,
        *,
        position: int = 0,
        page_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> CardResult:
        """Stream one card; never raises for stream or host failures."""
        result = CardResult(position=position, card=card, status="failed", page_id=page_id)
        request = StreamRequest(card=card, page_dimensions=page_dimensions)
        try:
            if self.mode == "buffered" and page_id is None:
                outcome = await self._stream_atomic(request, result, on_progress)
            else:
                outcome = await self._stream_into_page(request, result, on_progress)
        except CardStreamError as e:
            result.error = describe_error(e)
            result.error_code = e.error_code
            return result
        except Exception as e:
            logger.exception("Unexpected failure while streaming card %d", position)
            result.error = describe_error(e)
            result.error_code = "unexpected_error"
            return result

        result.status = "success"
        result.delivered_count = outcome.delivered_count
        result.degraded_count = outcome.degraded_count
        return result

    async def _stream_into_page(
        self,
        request: StreamRequest,
        result: CardResult,
        on_progress: ProgressCallback | None,
    ) -> StreamOutcome:
        if result.page_id is None:
            result.page_id = await self._create_page(request.card.title)
        sink = self._page_sink(result.page_id)
        sequencer: OrderedSequencer | BufferedSequencer
        if self.mode == "buffered":
            sequencer = BufferedSequencer(self.resolver, sink, on_progress=on_progress)
        else:
            sequencer = OrderedSequencer(self.resolver, sink, on_progress=on_progress)
        session = StreamSession(
            request,
            connector=self.connector,
            sequencer=sequencer,
            on_progress=on_progress,
        )
        try:
            return await session.open()
        finally:
            # Partially filled pages stay; record how far the card got
            result.delivered_count = sequencer.delivered_count
            result.degraded_count = sequencer.degraded_count

    async def _stream_atomic(
        self,
        request: StreamRequest,
        result: CardResult,
        on_progress: ProgressCallback | None,
    ) -> StreamOutcome:
        sequencer = BufferedSequencer(self.resolver, None, on_progress=on_progress)
        session = StreamSession(
            request,
            connector=self.connector,
            sequencer=sequencer,
            on_progress=on_progress,
        )
        outcome = await session.open()
        elements = outcome.elements or []
        result.page_id = await self._create_page(request.card.title, elements)
        return outcome

    async def _create_page(
        self, title: str, elements: Sequence[ElementDescriptor] | None = None
    ) -> str:
        try:
            return await self.host.create_page(title, elements)
        except Exception as e:
            raise DeliveryError(
                f"Could not create page: {type(e).__name__}: {e}"
            ) from e

    def _page_sink(self, page_id: str) -> DeliverySink:
        async def deliver(element: ElementDescriptor) -> bool:
            return await self.host.add_element(page_id, element)

        return deliver

    @staticmethod
    def _card_progress(
        on_progress: ProgressCallback | None, position: int, total: int
    ) -> ProgressCallback | None:
        if on_progress is None:
            return None

        def report(delivered: int, label: str) -> None:
            on_progress(delivered, f"Card {position + 1}/{total}: {label}")

        return report

    @staticmethod
    def _notify_error(on_error: Callable[[str], None], message: str) -> None:
        try:
            on_error(message)
        except Exception:
            logger.debug("on_error callback failed", exc_info=True)
