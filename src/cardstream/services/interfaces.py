"""Collaborator interfaces for the streaming engine.

The engine never talks to the design host, its asset store or the network
socket directly; it depends on these protocols so that sessions can be
driven by in-memory fakes in tests and by real adapters in production.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from cardstream.schemas.elements import ElementDescriptor
from cardstream.services.models import AssetUpload, ResolvedResource


# Delivery sink: places one element on the destination; raising or returning
# False is treated as a fatal delivery failure.
DeliverySink = Callable[[ElementDescriptor], Awaitable[bool | None]]

# Progress surface exposed to callers: (delivered_count, status_label)
ProgressCallback = Callable[[int, str], None]
ErrorCallback = Callable[[str], None]


class ChannelProtocol(Protocol):
    """Connected duplex message channel."""

    async def send(self, frame: str) -> None:
        """Send one outbound frame."""
        ...

    async def receive(self) -> str | bytes:
        """Wait for the next inbound frame.

        Raises ConnectionLostError when the channel closes, fails or idles
        out before a frame arrives.
        """
        ...

    async def close(self) -> None:
        """Close the channel; must be safe to call more than once."""
        ...


ChannelConnector = Callable[[], Awaitable[ChannelProtocol]]


class AssetUploaderProtocol(Protocol):
    """Imports external media into the destination host."""

    async def upload(self, asset: AssetUpload) -> str:
        """Upload and wait until the host reports it usable; return its ref."""
        ...


class ResourceResolverProtocol(Protocol):
    async def resolve(self, locator: str, *, kind: str = "image") -> ResolvedResource:
        """Turn an external locator into a host-usable reference.

        Raises ResourceResolutionError on any failure.
        """
        ...


class DesignHostProtocol(Protocol):
    """The host design surface (pages and element placement)."""

    async def add_element(self, page_id: str, element: ElementDescriptor) -> bool:
        """Place one element on a page; returns False on failure."""
        ...

    async def create_page(
        self, title: str, elements: Sequence[ElementDescriptor] | None = None
    ) -> str:
        """Create a page, optionally pre-populated, and return its id."""
        ...
