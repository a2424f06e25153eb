from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .middleware import AccessLogMiddleware, RequestContextMiddleware, SecurityHeadersMiddleware
from .middleware.cors import build_allowed_origin_regex, build_allowed_origins
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response
from .repositories.cards_repo import CardCatalog
from .routers.cards import router as cards_router
from .routers.clicks import router as clicks_router
from .routers.health import router as health_router
from .services.click_log import ClickLog, StructlogClickLog
from .services.rate_limiter import FixedWindowRateLimiter
from .settings import Settings, get_settings
from .workers.rate_limit_sweeper import RateLimitSweeper


@asynccontextmanager
async def _lifespan(app: FastAPI):
    sweeper: RateLimitSweeper = app.state.rate_limit_sweeper
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


def create_app(
    settings: Settings | None = None,
    *,
    rate_limiter: FixedWindowRateLimiter | None = None,
    click_log: ClickLog | None = None,
    card_catalog: CardCatalog | None = None,
) -> FastAPI:
    cfg = settings or get_settings()

    # Logging must be configured before the app starts handling requests.
    configure_logging(level=cfg.log_level, environment=cfg.normalized_environment)
    log = get_logger("startup")

    app = FastAPI(
        title="Card Picks API",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        # Avoid 307/308 redirects between /path and /path/ behind proxies.
        redirect_slashes=False,
        lifespan=_lifespan,
    )

    # Limiter and catalog define __len__, so an empty one is falsy.
    if rate_limiter is None:
        rate_limiter = FixedWindowRateLimiter(
            limit=cfg.click_rate_limit,
            window_ms=cfg.click_rate_window_ms,
            max_entries=cfg.rate_limit_max_entries,
        )
    if click_log is None:
        click_log = StructlogClickLog()
    if card_catalog is None:
        card_catalog = CardCatalog.from_file(cfg.catalog_path, allowed_domains=cfg.allowed_referral_domains)

    app.state.settings = cfg
    app.state.rate_limiter = rate_limiter
    app.state.rate_limit_sweeper = RateLimitSweeper(rate_limiter, interval_seconds=cfg.rate_limit_sweep_seconds)
    app.state.click_log = click_log
    app.state.card_catalog = card_catalog

    log.info("app_starting", settings=cfg.to_log_safe_dict())

    # Middlewares (order matters; last added is outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    # Access logs (structured JSON)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=build_allowed_origins(frontend_urls=cfg.frontend_urls),
        allow_origin_regex=build_allowed_origin_regex(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=3000,
    )
    # Outermost: request context (request-id) wraps everything.
    app.add_middleware(RequestContextMiddleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # Routes
    app.include_router(health_router)
    app.include_router(clicks_router, prefix="/api")
    app.include_router(cards_router, prefix="/api")

    return app


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)
    safe_detail = str(detail) if detail is not None else None

    if status_code == 404:
        safe_detail = "Route not found"

    return problem_response(
        request=request,
        status_code=status_code,
        detail=safe_detail,
        headers=getattr(exc, "headers", None),
    )


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        errors.append(
            {
                "location": list(loc) if isinstance(loc, (list, tuple)) else [],
                "path": ".".join([str(x) for x in loc if x not in ("body", "query")]),
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Full traceback goes to the logs; the response stays generic in production.
    get_logger("unhandled").exception(
        "unhandled_exception",
        request_id=getattr(getattr(request, "state", None), "request_id", None),
        http_method=str(getattr(request, "method", "") or "").upper() or None,
        path=str(getattr(getattr(request, "url", None), "path", "") or ""),
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )


app = create_app()
