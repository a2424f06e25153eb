from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query, Request

from ..domain.clicks import DEFAULT_ANSWERS
from ..repositories.cards_repo import CardCatalog
from ..services.recommendations import build_share_query, parse_share_params, rank_cards

router = APIRouter(tags=["cards"])


def _catalog(request: Request) -> CardCatalog:
    return request.app.state.card_catalog


@router.get("/cards")
def list_cards(request: Request):
    return [c.to_public_dict() for c in _catalog(request).all()]


@router.get("/recommendations")
def recommendations(
    request: Request,
    fee: Literal["$", "$$", "$$$", "$$$$"] | None = Query(default=None),
    q: str | None = Query(default=None, max_length=100),
):
    # Same parameters the share link carries: ?w=1&p=..&f=..&r=..
    answers = parse_share_params(request.query_params) or DEFAULT_ANSWERS
    ranked = rank_cards(_catalog(request).all(), answers, fee_band=fee, query=q)
    return {
        "answers": answers.model_dump(by_alias=True),
        "share": build_share_query(answers),
        "cards": [{**c.to_public_dict(), "score": s} for c, s in ranked],
    }
