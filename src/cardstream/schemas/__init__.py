"""Wire and data schemas for cards, design elements and stream messages."""

from .cards import Card, Dimensions, PageDimensions, StreamRequest
from .elements import ElementDescriptor
from .stream import CompleteMessage, DecodedMessage, ElementMessage, ErrorMessage


__all__ = [
    "Card",
    "CompleteMessage",
    "DecodedMessage",
    "Dimensions",
    "ElementDescriptor",
    "ElementMessage",
    "ErrorMessage",
    "PageDimensions",
    "StreamRequest",
]
