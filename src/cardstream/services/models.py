"""Value objects exchanged between the streaming components.

* ResolvedResource - host-usable reference produced by the resolver.
* AssetUpload      - request handed to the host asset uploader.
* StreamOutcome    - terminal value of one card stream session.
* CardResult / BatchResult - per-card and per-batch orchestration results.
* CardBatch        - cards returned by the backend card creation endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from cardstream.schemas.cards import Card
from cardstream.schemas.elements import ElementDescriptor


@dataclass(frozen=True, slots=True)
class ResolvedResource:
    reference: str
    mime_type: str
    locator: str


@dataclass(frozen=True, slots=True)
class AssetUpload:
    """Everything the host needs to import an external resource."""

    kind: Literal["image", "video"]
    url: str
    mime_type: str
    thumbnail_url: str
    ai_disclosure: str


@dataclass(slots=True)
class StreamOutcome:
    """Result of a completed card stream.

    `elements` is populated only by the buffering variant when no sink is
    attached; incremental delivery leaves it as None.
    """

    delivered_count: int
    degraded_count: int
    expected_total: int | None = None
    elements: list[ElementDescriptor] | None = None

    @property
    def count_matches(self) -> bool:
        return self.expected_total is None or self.expected_total == self.delivered_count


@dataclass(slots=True)
class CardResult:
    position: int
    card: Card
    status: Literal["success", "failed"]
    page_id: str | None = None
    delivered_count: int = 0
    degraded_count: int = 0
    error: str | None = None
    error_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(slots=True)
class BatchResult:
    results: list[CardResult] = field(default_factory=list)

    @property
    def failed(self) -> list[CardResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def succeeded(self) -> list[CardResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


@dataclass(frozen=True, slots=True)
class CardBatch:
    cards: list[Card]
    session_id: str
