from __future__ import annotations


def build_allowed_origins(*, frontend_urls: str | None) -> list[str]:
    allowed: set[str] = {
        "http://localhost:3000",
        "http://localhost:3001",
    }

    if frontend_urls:
        for origin in [s.strip() for s in str(frontend_urls).split(",") if s.strip()]:
            allowed.add(origin.rstrip("/"))

    return sorted(allowed)


def build_allowed_origin_regex() -> str:
    """
    Preview deployments live on per-branch subdomains of vercel.app; this
    matches the registrable domain only, not suffixes like "evilvercel.app".
    """
    return r"^https://([a-z0-9-]+\.)*vercel\.app$"
