"""Domain exceptions for the card streaming engine.

Every failure the engine can observe maps onto one of these types so that
callers branch on types instead of inspecting generic exceptions. Each
exception carries a stable `error_code` for log and metrics tagging.

Only some of them are fatal to a card stream: decode and resolution errors
are absorbed inside the session (logged, frame dropped or element degraded),
while server, connection and delivery errors terminate the current card.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class CardStreamError(Exception):
    """Base class for card streaming errors."""

    message: str
    error_code: str

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class FrameDecodeError(CardStreamError):
    def __init__(self, message: str = "Inbound frame could not be decoded") -> None:
        super().__init__(message=message, error_code="decode_failed")


class ResourceResolutionError(CardStreamError):
    def __init__(self, message: str = "External resource could not be imported") -> None:
        super().__init__(message=message, error_code="resolve_failed")


class ServerStreamError(CardStreamError):
    """The server terminated the stream with an explicit error message."""

    def __init__(self, message: str = "Server reported an error") -> None:
        super().__init__(message=message, error_code="server_error")


class ConnectionLostError(CardStreamError):
    def __init__(self, message: str = "Stream connection lost") -> None:
        super().__init__(message=message, error_code="connection_error")


class DeliveryError(CardStreamError):
    def __init__(self, message: str = "Element could not be delivered") -> None:
        super().__init__(message=message, error_code="delivery_failed")


class CardCreationError(CardStreamError):
    def __init__(self, message: str = "Failed to create cards") -> None:
        super().__init__(message=message, error_code="create_cards_failed")


class StreamStateError(CardStreamError):
    def __init__(self, message: str = "Operation not valid in current state") -> None:
        super().__init__(message=message, error_code="invalid_state")
