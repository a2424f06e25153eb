from __future__ import annotations

from collections.abc import Iterable, Mapping
from urllib.parse import urlencode

from pydantic import ValidationError

from ..domain.cards import FEE_ORDER, Card
from ..domain.clicks import Answers

# Mid tiers get a small bonus when the visitor has no fee preference.
_ANY_FEE_SCORES = {"$": 2, "$$": 3, "$$$": 3, "$$$$": 1}


def _fee_index(fee: str) -> int:
    try:
        return FEE_ORDER.index(fee)
    except ValueError:
        return 0


def score_card(card: Card, answers: Answers) -> int:
    base = 10 if answers.priority in card.recommended_for else 0

    if answers.fee_comfort == "any":
        fee_score = _ANY_FEE_SCORES.get(card.annual_fee, 0)
    else:
        fee_score = 4 - abs(_fee_index(card.annual_fee) - _fee_index(answers.fee_comfort))

    if answers.redemption == "simple":
        red_score = card.simplicity
    else:
        red_score = 4 if card.flavor == answers.redemption else 0

    featured = 1 if card.featured else 0
    return base + fee_score + red_score + featured


def rank_cards(
    cards: Iterable[Card],
    answers: Answers,
    *,
    fee_band: str | None = None,
    query: str | None = None,
) -> list[tuple[Card, int]]:
    """
    Cards recommended for the visitor's priority, best score first.

    `fee_band` keeps only an exact annual-fee tier; `query` is a
    case-insensitive substring match on name or issuer.
    """
    scored = [(c, score_card(c, answers)) for c in cards if answers.priority in c.recommended_for]
    # sorted() is stable, so catalog order breaks ties.
    ranked = sorted(scored, key=lambda cs: cs[1], reverse=True)

    if fee_band:
        ranked = [(c, s) for c, s in ranked if c.annual_fee == fee_band]

    q = (query or "").strip().lower()
    if q:
        ranked = [(c, s) for c, s in ranked if q in c.name.lower() or q in c.issuer.lower()]
    return ranked


def parse_share_params(params: Mapping[str, str]) -> Answers | None:
    if params.get("w") != "1":
        return None
    try:
        return Answers.model_validate(
            {"priority": params.get("p"), "feeComfort": params.get("f"), "redemption": params.get("r")}
        )
    except ValidationError:
        return None


def build_share_query(answers: Answers) -> str:
    return urlencode({"w": "1", "p": answers.priority, "f": answers.fee_comfort, "r": answers.redemption})
