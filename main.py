"""
Social account-linking broker — application entry point.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import router as connectors_router
from api.telegram_routes import router as telegram_router
from broker.errors import BrokerError
from broker.service import AccountBroker, build_broker
from broker.store import AccountStore
from config.settings import Settings, config
from connectors.encryption import TokenCipher
from database.account_store import SqlAccountStore
from database.session import create_tables, make_engine, make_session_factory

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, broker: Optional[AccountBroker] = None) -> FastAPI:
    settings = settings or config
    app = FastAPI(
        title="Social Account Broker",
        version="1.0.0",
        description="OAuth2 PKCE account linking and pooled platform clients.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine = None
    if broker is None:
        store: Optional[AccountStore] = None
        if settings.database_url:
            engine = make_engine(settings.database_url)
            store = SqlAccountStore(make_session_factory(engine), TokenCipher(settings.token_encryption_key))
        broker = build_broker(settings, store)

    app.state.settings = settings
    app.state.broker = broker
    app.state.started_at = time.time()

    app.include_router(connectors_router, prefix="/api/v1/connectors")
    app.include_router(telegram_router, prefix="/api/v1/telegram")

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
        logger.warning("%s %s → %s: %s", request.method, request.url.path, exc.error_type, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "error_type": exc.error_type},
        )

    @app.get("/health")
    async def health() -> dict:
        return {
            "message": "OK",
            "uptime": round(time.time() - app.state.started_at, 3),
            "services": {
                p["provider"]: {"configured": p["configured"]}
                for p in broker.connectors.list_providers()
            },
            "telegram": {"configured": bool(settings.telegram_bot_token)},
            "pending_logins": len(broker.sessions),
            "pooled_clients": len(broker.pool),
        }

    @app.on_event("startup")
    async def on_startup():
        if engine is not None:
            await create_tables(engine)
        configured = broker.connectors.list_configured()
        if not configured:
            logger.warning("No OAuth provider is configured; logins will fail with ConfigurationError")
        broker.start_maintenance(settings.maintenance_interval_seconds)
        logger.info("Broker ready (providers: %s)", ", ".join(configured) or "none")

    @app.on_event("shutdown")
    async def on_shutdown():
        await broker.aclose()
        if engine is not None:
            await engine.dispose()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
