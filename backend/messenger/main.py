"""FastAPI application entry point with startup initialisation and logging."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from messenger.config import settings
from messenger.db.session import AsyncSessionLocal, engine
from messenger.db.init_db import init_db
from messenger.routers import (
    auth_router,
    buddies_router,
    messages_router,
    users_router,
    ws_router,
)
from messenger.services.chat_store import ChatStore
from messenger.services.realtime_hub import RealtimeHub


def _configure_logging() -> None:
    """Set up structured logging for the application."""
    root_logger = logging.getLogger("messenger")
    root_logger.setLevel(logging.INFO)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


_configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    await init_db()
    app.state.hub.start()
    yield
    await app.state.hub.shutdown()
    await engine.dispose()


app = FastAPI(title="YM7 Messenger", lifespan=lifespan)
app.state.hub = RealtimeHub(ChatStore(AsyncSessionLocal))

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(buddies_router)
app.include_router(users_router)
app.include_router(messages_router)
app.include_router(ws_router)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint with the live connection count and gate counters."""
    return {"status": "healthy", **request.app.state.hub.stats()}
