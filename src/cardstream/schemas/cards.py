"""Card and stream request schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Card(BaseModel):
    """A single card: the text a design page is generated from."""

    title: str = Field(..., min_length=1)
    description: str = ""

    model_config = ConfigDict(extra="ignore", frozen=True)


class Dimensions(BaseModel):
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class PageDimensions(BaseModel):
    """Destination page size, shaped like the host's page context."""

    dimensions: Dimensions

    model_config = ConfigDict(extra="ignore", frozen=True)

    @classmethod
    def of(cls, width: float, height: float) -> PageDimensions:
        return cls(dimensions=Dimensions(width=width, height=height))


class StreamRequest(BaseModel):
    """First outbound frame of a card stream. Built once per card."""

    card: Card
    page_dimensions: PageDimensions

    model_config = ConfigDict(extra="forbid", frozen=True)

    def to_frame(self) -> str:
        return self.model_dump_json()


class CreateCardsRequest(BaseModel):
    """Request payload for the backend card creation endpoint."""

    session_id: str
    user_input: str = Field(..., min_length=1)
    n_cards: int = Field(default=5, ge=1, le=50)

    model_config = ConfigDict(extra="forbid")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
