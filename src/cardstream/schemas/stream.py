"""Inbound stream messages.

The backend emits exactly one JSON object per frame:

* ``{"type": "element", "index": 0, "data": {...descriptor...}}``
* ``{"type": "complete", "total_elements": 3}``
* ``{"type": "error", "message": "quota exceeded"}``

Exactly one `complete` or one `error` terminates a stream; nothing after a
terminal message is processed.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from cardstream.schemas.elements import ElementDescriptor


class ElementMessage(BaseModel):
    type: Literal["element"]
    index: int = Field(..., ge=0)
    data: ElementDescriptor

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def descriptor(self) -> ElementDescriptor:
        return self.data


class CompleteMessage(BaseModel):
    type: Literal["complete"]
    total_elements: int = Field(..., ge=0)

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def total_count(self) -> int:
        return self.total_elements


class ErrorMessage(BaseModel):
    type: Literal["error"]
    message: str = "Unknown server error"

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def reason(self) -> str:
        return self.message


DecodedMessage = Annotated[
    ElementMessage | CompleteMessage | ErrorMessage,
    Field(discriminator="type"),
]

message_adapter: TypeAdapter[DecodedMessage] = TypeAdapter(DecodedMessage)
