from __future__ import annotations

from pathlib import Path
from urllib.parse import urlsplit

import orjson
from pydantic import ValidationError

from ..domain.cards import Card
from ..observability.logging import get_logger

log = get_logger("cards_repo")


def is_allowed_referral_url(url: str, allowed_domains: tuple[str, ...] | list[str]) -> bool:
    """
    True when `url` is an http(s) link whose host is one of `allowed_domains`
    or a subdomain of one. Host comparison is case-sensitive.
    """
    if not url or not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    # netloc keeps the original casing; strip userinfo and port.
    host = parts.netloc.rsplit("@", 1)[-1].split(":", 1)[0]
    if not host:
        return False
    for domain in allowed_domains:
        if host == domain or host.endswith("." + domain):
            return True
    return False


class CardCatalog:
    """Read-only card catalog loaded from a JSON array on disk."""

    def __init__(self, cards: list[Card]):
        self._cards = list(cards)
        self._by_id = {c.id: c for c in self._cards}

    @classmethod
    def from_file(cls, path: Path, *, allowed_domains: tuple[str, ...] | list[str]) -> "CardCatalog":
        raw = orjson.loads(Path(path).read_bytes())
        if not isinstance(raw, list):
            raise ValueError(f"Card catalog must be a JSON array: {path}")

        cards: list[Card] = []
        seen: set[str] = set()
        for i, item in enumerate(raw):
            try:
                card = Card.model_validate(item)
            except ValidationError as e:
                log.warning("card_invalid", index=i, errors=e.error_count())
                continue
            if card.id in seen:
                log.warning("card_duplicate_id", index=i, card_id=card.id)
                continue
            if not is_allowed_referral_url(card.referral_url, allowed_domains):
                log.warning("card_referral_url_not_allowed", index=i, card_id=card.id)
                continue
            seen.add(card.id)
            cards.append(card)

        log.info("card_catalog_loaded", path=str(path), cards=len(cards), skipped=len(raw) - len(cards))
        return cls(cards)

    def all(self) -> list[Card]:
        return list(self._cards)

    def get(self, card_id: str) -> Card | None:
        return self._by_id.get(card_id)

    def __len__(self) -> int:
        return len(self._cards)
