from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/", tags=["health"])
def health(request: Request):
    cfg = request.app.state.settings
    return {
        "message": "Card Picks API",
        "version": request.app.version,
        "status": "running",
        "port": cfg.port,
        "environment": cfg.normalized_environment,
        "cards": len(request.app.state.card_catalog),
        "endpoints": [
            "POST /api/click",
            "GET /api/cards",
            "GET /api/recommendations",
        ],
    }
