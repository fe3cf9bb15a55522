from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from backend import MemoryBackend, create_backend
from dispatcher import BroadcastDispatcher
from membership import MembershipService
from constants import BROADCAST_BACKEND, CORS_ORIGINS, LOG_FILE, LOG_LEVEL
from typing import Optional
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(backend: Optional[MemoryBackend] = None) -> FastAPI:
    """Build the application. A backend may be injected; otherwise one is
    created from BROADCAST_BACKEND when the app starts."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub = backend if backend is not None else create_backend(BROADCAST_BACKEND)
        await hub.start()
        app.state.backend = hub
        app.state.membership = MembershipService(BroadcastDispatcher(hub))
        logger.info(f"ChatSphere ready with {type(hub).__name__}")
        yield
        stats = app.state.membership.get_stats()
        logger.info(f"[SHUTDOWN] Closing server gracefully ({stats['rooms']} rooms, {stats['connections']} connections)")
        await hub.stop()
        logger.info("[SHUTDOWN] Server closed")

    app = FastAPI(title="ChatSphere", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    return app


app = create_app()

logger.info("FastAPI application initialized")
