"""Pulse FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp
from fastapi import FastAPI

from .api.routes import router as api_router
from .api.routes import webhook_router
from .config import Settings
from .delivery.telegram import TelegramNotifier
from .events.ingress import EventIngressService, Notifier
from .storage.schema import connect, init_database
from .storage.store import MetricsStore


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MetricsStore] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Configuration (defaults to the environment)
        store: Metrics store; opened from settings.db_path when omitted
        notifier: Delivery collaborator; Telegram when omitted
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_store = store is None
        app_store = store
        if owned_store:
            init_database(settings.db_path)
            app_store = MetricsStore(connect(settings.db_path))

        timeout = aiohttp.ClientTimeout(total=30, connect=10)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            app_notifier = notifier or TelegramNotifier(
                session, settings.telegram_bot_token, settings.telegram_chat_id
            )
            app.state.store = app_store
            app.state.ingress = EventIngressService(app_store, app_notifier)
            try:
                yield
            finally:
                if owned_store:
                    app_store.conn.close()

    app = FastAPI(
        title="Pulse API",
        version="0.1.0",
        description="Portfolio metrics reports and RevenueCat event ingress",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(webhook_router)
    app.include_router(api_router)

    return app


app = create_app()
