"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from practice_core.context import AppContext, build_app_context
from practice_core.core.config import settings

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Audit trail carries identities, Sentry does not
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from practice_core.core.rate_limit import limiter


# ============================================================================
# FastAPI App
# ============================================================================

def create_app(context: AppContext | None = None) -> FastAPI:
    """
    Build the API around an AppContext.

    Tests pass their own context (in-memory database, fake channel senders);
    the module-level app uses the configured database.
    """
    app = FastAPI(
        title="Practice Core API",
        description="Access control, audit, session lifecycle and notifications for a multi-tenant practice platform",
        version=settings.VERSION,
        docs_url="/docs" if settings.ENV == "dev" else None,
        redoc_url="/redoc" if settings.ENV == "dev" else None,
    )
    app.state.context = context or build_app_context()

    @app.on_event("shutdown")
    def _close_context() -> None:
        app.state.context.close()

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS middleware - must be added before routers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,  # Required for cookies
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    # ========================================================================
    # Routers
    # ========================================================================

    from practice_core.routers import audit, auth, internal, notifications
    from practice_core.routers import websocket as ws_router

    app.include_router(auth.router, prefix="/auth", tags=["auth"])

    # Notifications (user-scoped reads, staff creation)
    app.include_router(notifications.router, prefix="/me", tags=["notifications"])
    app.include_router(notifications.admin_router, prefix="/notifications", tags=["notifications"])

    # Audit Trail (audit-logs feature)
    app.include_router(audit.router)

    # Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
    app.include_router(internal.router)

    # WebSocket push and session lifecycle
    app.include_router(ws_router.router)

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health")
    def health(request: Request):
        """
        Health check endpoint.

        Verifies database connectivity and returns environment info.
        """
        with request.app.state.context.session_factory() as db:
            db.execute(text("SELECT 1"))
        return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}

    return app


app = create_app()
