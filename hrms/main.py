import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, engine
from .errors import register_exception_handlers
from .headers import SecurityHeadersMiddleware
from .logging import setup_logging, RequestIdMiddleware, RequestTimeoutMiddleware
from .sanitize import SanitizeInputMiddleware
from .auth.router import router as auth_router
from .routes.audit import router as audit_router
from .routes.companies import router as companies_router
from .routes.employees import router as employees_router
from .routes.leaves import router as leaves_router
from .routes.notifications import router as notifications_router


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares (last added runs first)
    app.add_middleware(SanitizeInputMiddleware)
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.cookie_secure)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(audit_router)
    app.include_router(companies_router)
    app.include_router(employees_router)
    app.include_router(leaves_router)
    app.include_router(notifications_router)

    @app.get("/health", tags=["health"])
    def health():
        return {"status": "ok"}

    # Metrics
    if settings.enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        log = structlog.get_logger()
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
            log.info("database_ready", url=engine.url.render_as_string(hide_password=True))
        if settings.jwt_secret == "change-me" and settings.environment != "dev":
            log.warning("insecure_jwt_secret", environment=settings.environment)

    return app


app = create_app()
