"""Design element descriptors streamed from the backend.

Each descriptor is one discrete design object (text block, image, embed,
shape or video) to be placed on a destination page. Geometry is optional;
a missing field means the host picks its default placement. Styling
attributes are freeform and passed through to the host untouched, so the
models allow extra fields.

Only `image` and `video` descriptors carry an external resource locator
(`ref`) that must be imported into the host before the element is placed.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _ElementBase(BaseModel):
    top: float | None = Field(default=None, ge=0)
    left: float | None = Field(default=None, ge=0)
    width: float | None = Field(default=None, ge=0)
    height: float | None = Field(default=None, ge=0)

    model_config = ConfigDict(extra="allow")

    @property
    def resource_locator(self) -> str | None:
        """External locator that must be resolved before delivery, if any."""
        return None

    def with_reference(self, reference: str) -> _ElementBase:
        """Return a copy pointing at a host-usable reference."""
        return self

    def to_host_payload(self) -> dict[str, Any]:
        """Serialize for the host design API (absent geometry omitted)."""
        return self.model_dump(mode="json", exclude_none=True)


class TextElement(_ElementBase):
    """Text block; `children` holds the text runs."""

    type: Literal["text"]
    children: list[str] = Field(default_factory=list)


class _ResourceElement(_ElementBase):
    ref: str = Field(..., min_length=1)
    alt_text: str | None = Field(default=None, alias="altText")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @property
    def resource_locator(self) -> str | None:
        return self.ref

    def with_reference(self, reference: str) -> _ResourceElement:
        return self.model_copy(update={"ref": reference})

    def to_host_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


class ImageElement(_ResourceElement):
    type: Literal["image"]


class VideoElement(_ResourceElement):
    type: Literal["video"]


class EmbedElement(_ElementBase):
    """Rich media embed addressed by URL; placed by the host as-is."""

    type: Literal["embed"]
    url: str = Field(..., min_length=1)


class ShapeElement(_ElementBase):
    """Vector shape; `paths` entries are host-specific path dicts."""

    type: Literal["shape"]
    paths: list[dict[str, Any]] = Field(default_factory=list)
    view_box: dict[str, float] | None = Field(default=None, alias="viewBox")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_host_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


ElementDescriptor = Annotated[
    TextElement | ImageElement | VideoElement | EmbedElement | ShapeElement,
    Field(discriminator="type"),
]

RESOURCE_KINDS: frozenset[str] = frozenset({"image", "video"})

element_adapter: TypeAdapter[ElementDescriptor] = TypeAdapter(ElementDescriptor)
