#!/usr/bin/env python3
"""Stream generated design elements for a batch of cards into JSONL pages.

The design host is replaced by a file: every page is a sequence of JSON
lines ``{"page_id", "title", "element"}`` appended in delivery order, which
makes the ordering guarantees of the engine easy to inspect.

Usage:
    # Create cards from free text, then stream them
    python scripts/stream_cards.py --prompt "History of the bicycle" --output pages.jsonl

    # Stream an existing card list (JSON array of {title, description})
    python scripts/stream_cards.py --cards cards.json --output pages.jsonl

    # Resolve all images eagerly and create each page in one go
    python scripts/stream_cards.py --cards cards.json --output pages.jsonl --mode buffered

Requires HOST_API_URL (asset import endpoint) in the environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from collections.abc import Sequence
from pathlib import Path

from cardstream.core.config import get_settings
from cardstream.core.error_handler import setup_logging
from cardstream.schemas.cards import Card, PageDimensions
from cardstream.schemas.elements import ElementDescriptor
from cardstream.services.cards_api import create_cards
from cardstream.services.host_assets import HttpAssetUploader
from cardstream.services.orchestrator import StreamOrchestrator
from cardstream.services.resolver import ResourceResolver
from cardstream.services.transport import websocket_connector


logger = logging.getLogger(__name__)


class JsonlDesignHost:
    """Design host that appends placed elements to a JSON lines file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.titles: dict[str, str] = {}

    async def create_page(
        self, title: str, elements: Sequence[ElementDescriptor] | None = None
    ) -> str:
        page_id = uuid.uuid4().hex[:12]
        self.titles[page_id] = title
        for element in elements or []:
            self._append(page_id, element)
        return page_id

    async def add_element(self, page_id: str, element: ElementDescriptor) -> bool:
        self._append(page_id, element)
        return True

    def _append(self, page_id: str, element: ElementDescriptor) -> None:
        line = {
            "page_id": page_id,
            "title": self.titles.get(page_id),
            "element": element.to_host_payload(),
        }
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(line) + "\n")


def _load_cards(path: Path) -> list[Card]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("cards", [])
    return [Card.model_validate(item) for item in raw]


def _print_progress(delivered: int, label: str) -> None:
    print(f"  [{delivered:>3}] {label}")


def _print_error(message: str) -> None:
    print(f"  ERROR {message}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()

    if args.cards:
        cards = _load_cards(args.cards)
    else:
        batch = await create_cards(args.prompt, args.n_cards)
        cards = batch.cards
        logger.info("Card session %s", batch.session_id)

    if not cards:
        print("No cards to stream.")
        return 1

    resolver = ResourceResolver(HttpAssetUploader(settings=settings), settings=settings)
    orchestrator = StreamOrchestrator(
        JsonlDesignHost(args.output),
        resolver,
        websocket_connector(settings),
        mode=args.mode,
        settings=settings,
    )
    result = await orchestrator.run(
        cards,
        PageDimensions.of(args.width, args.height),
        on_progress=_print_progress,
        on_error=_print_error,
    )

    print("\nSummary:")
    for card_result in result.results:
        status = "ok" if card_result.succeeded else f"FAILED ({card_result.error})"
        print(
            f"  {card_result.position + 1}. {card_result.card.title}: {status} - "
            f"{card_result.delivered_count} element(s), "
            f"{card_result.degraded_count} degraded"
        )
    return 0 if result.all_succeeded else 2


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt", help="Free text to turn into cards")
    source.add_argument("--cards", type=Path, help="JSON file with a list of cards")
    parser.add_argument("--n-cards", type=int, default=None, help="Cards to create")
    parser.add_argument("--output", type=Path, required=True, help="JSONL output file")
    parser.add_argument("--width", type=float, default=1920.0)
    parser.add_argument("--height", type=float, default=1080.0)
    parser.add_argument(
        "--mode",
        choices=["sequential", "buffered"],
        default=None,
        help="Delivery mode (default: DELIVERY_MODE setting)",
    )
    args = parser.parse_args(argv)

    setup_logging()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
