"""Shared test fixtures for pytest.

ENVIRONMENT is forced to `test` before anything imports the settings so no
.env file is read. The fakes below stand in for the socket, the design host
and the resource resolver so stream timing can be scripted precisely.
"""

import asyncio
import json
import os
from collections.abc import Iterator, Sequence
from typing import Any

import pytest


os.environ["ENVIRONMENT"] = "test"

from cardstream.core.config import get_settings
from cardstream.core.exceptions import ConnectionLostError, ResourceResolutionError
from cardstream.schemas.cards import Card, PageDimensions, StreamRequest
from cardstream.schemas.elements import ElementDescriptor
from cardstream.services.models import ResolvedResource


_CLOSE = object()


def element_frame(index: int, kind: str = "text", **data: Any) -> str:
    payload: dict[str, Any] = {"type": kind, **data}
    if kind == "text":
        payload.setdefault("children", [f"text {index}"])
    return json.dumps({"type": "element", "index": index, "data": payload})


def image_frame(index: int, ref: str, **data: Any) -> str:
    return element_frame(index, "image", ref=ref, **data)


def complete_frame(total: int) -> str:
    return json.dumps({"type": "complete", "total_elements": total})


def error_frame(message: str) -> str:
    return json.dumps({"type": "error", "message": message})


class FakeChannel:
    """In-memory duplex channel fed by the test."""

    def __init__(self, frames: Sequence[Any] = (), *, close_after: bool = False) -> None:
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False
        self.close_calls = 0
        for frame in frames:
            self.push(frame)
        if close_after:
            self.push_close()

    def push(self, frame: Any) -> None:
        self._incoming.put_nowait(frame)

    def push_close(self) -> None:
        self._incoming.put_nowait(_CLOSE)

    async def send(self, frame: str) -> None:
        if self.closed:
            raise ConnectionLostError("Connection closed while sending (code: None)")
        self.sent.append(frame)

    async def receive(self) -> Any:
        frame = await self._incoming.get()
        if frame is _CLOSE:
            self.closed = True
            raise ConnectionLostError("Connection closed unexpectedly (code: 1006)")
        return frame

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class ChannelFactory:
    """Connector returning prepared channels in order."""

    def __init__(self, *channels: FakeChannel) -> None:
        self.channels = list(channels)
        self.opened: list[FakeChannel] = []

    async def __call__(self) -> FakeChannel:
        if not self.channels:
            raise ConnectionLostError("Could not connect to ws://test: refused")
        channel = self.channels.pop(0)
        self.opened.append(channel)
        return channel


class RecordingSink:
    """Delivery sink that records descriptors in the order it receives them."""

    def __init__(self, *, fail_on: int | None = None, delay: float = 0.0) -> None:
        self.delivered: list[ElementDescriptor] = []
        self.fail_on = fail_on
        self.delay = delay

    async def __call__(self, element: ElementDescriptor) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on is not None and len(self.delivered) == self.fail_on:
            raise RuntimeError("host rejected the element")
        self.delivered.append(element)
        return True

    @property
    def texts(self) -> list[str]:
        return [e.children[0] for e in self.delivered if e.type == "text"]


class ScriptedResolver:
    """Resolver with per-locator delays and failures."""

    def __init__(
        self,
        *,
        delays: dict[str, float] | None = None,
        failures: set[str] | None = None,
    ) -> None:
        self.delays = delays or {}
        self.failures = failures or set()
        self.calls: list[str] = []

    async def resolve(self, locator: str, *, kind: str = "image") -> ResolvedResource:
        self.calls.append(locator)
        await asyncio.sleep(self.delays.get(locator, 0))
        if locator in self.failures:
            raise ResourceResolutionError(f"cannot import {locator}")
        return ResolvedResource(
            reference=f"host-ref:{locator}", mime_type="image/png", locator=locator
        )


class FakeDesignHost:
    """Design host keeping pages in memory."""

    def __init__(self, *, reject_on_page: str | None = None) -> None:
        self.pages: dict[str, list[ElementDescriptor]] = {}
        self.titles: dict[str, str] = {}
        self.reject_on_page = reject_on_page
        self.created: list[str] = []

    async def create_page(
        self, title: str, elements: Sequence[ElementDescriptor] | None = None
    ) -> str:
        page_id = f"page-{len(self.pages) + 1}"
        self.pages[page_id] = list(elements or [])
        self.titles[page_id] = title
        self.created.append(page_id)
        return page_id

    async def add_element(self, page_id: str, element: ElementDescriptor) -> bool:
        if page_id == self.reject_on_page:
            return False
        self.pages.setdefault(page_id, []).append(element)
        return True


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def card() -> Card:
    return Card(title="Bicycles", description="A short history of the bicycle")


@pytest.fixture
def page_dimensions() -> PageDimensions:
    return PageDimensions.of(1920, 1080)


@pytest.fixture
def stream_request(card: Card, page_dimensions: PageDimensions) -> StreamRequest:
    return StreamRequest(card=card, page_dimensions=page_dimensions)
