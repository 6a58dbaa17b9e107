"""Client for the backend card creation endpoint."""

from __future__ import annotations

import logging
import uuid

import httpx
from pydantic import TypeAdapter, ValidationError

from cardstream.core.config import Settings, get_settings
from cardstream.core.exceptions import CardCreationError
from cardstream.schemas.cards import Card, CreateCardsRequest
from cardstream.services.models import CardBatch


logger = logging.getLogger(__name__)

CREATE_CARDS_PATH = "/cards/create_cards"

_cards_adapter: TypeAdapter[list[Card]] = TypeAdapter(list[Card])


async def create_cards(
    user_input: str,
    n_cards: int | None = None,
    *,
    session_id: str | None = None,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> CardBatch:
    """Ask the backend to split free text into cards.

    A new session id is generated when none is supplied and returned with
    the cards so later requests can be correlated with this batch.
    """
    settings = settings or get_settings()
    if not user_input or not user_input.strip():
        raise CardCreationError("Please enter some text to generate cards.")

    try:
        request = CreateCardsRequest(
            session_id=session_id or str(uuid.uuid4()),
            user_input=user_input.strip(),
            n_cards=n_cards or settings.DEFAULT_CARD_COUNT,
        )
    except ValidationError as e:
        raise CardCreationError(f"Invalid card request: {e.errors()[0]['msg']}") from e
    url = f"{settings.BACKEND_URL}{CREATE_CARDS_PATH}"

    try:
        if client is not None:
            response = await client.post(url, json=request.to_json())
        else:
            async with httpx.AsyncClient(
                timeout=settings.CARDS_API_TIMEOUT_SECONDS
            ) as own_client:
                response = await own_client.post(url, json=request.to_json())
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as e:
        logger.warning(
            "Card creation failed: %s %s",
            e.response.status_code,
            e.response.reason_phrase,
        )
        raise CardCreationError(
            f"Failed to create cards: {e.response.reason_phrase or e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        logger.warning("Card creation request failed: %s - %s", type(e).__name__, e)
        raise CardCreationError(f"Failed to create cards: {type(e).__name__}") from e
    except ValueError as e:
        raise CardCreationError("Card service returned a non-JSON body") from e

    # Some deployments wrap the list: {"cards": [...]}
    if isinstance(payload, dict) and "cards" in payload:
        payload = payload["cards"]
    try:
        cards = _cards_adapter.validate_python(payload)
    except ValidationError as e:
        raise CardCreationError("Card service returned malformed cards") from e

    logger.info("Created %d card(s)", len(cards))
    return CardBatch(cards=cards, session_id=request.session_id)
