from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .managers.coordinator import ConnectionCoordinator
from .managers.registry import SessionRegistry
from .persistence.firebase import build_gateway
from .persistence.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


def register_handlers(sio: socketio.AsyncServer, coordinator: ConnectionCoordinator):
    @sio.event
    async def connect(sid, environ, auth=None):
        logger.info("Client connected: %s", sid)

    @sio.event
    async def disconnect(sid, reason=None):
        logger.info("Client disconnected: %s", sid)
        await coordinator.disconnect(sid)

    @sio.on('joinGame')
    async def join_game(sid, data=None):
        await coordinator.join(sid, data)

    @sio.on('playerAction')
    async def player_action(sid, data=None):
        await coordinator.player_action(sid, data)

    @sio.on('markMessagesSeen')
    async def mark_messages_seen(sid, data=None):
        await coordinator.mark_messages_seen(sid, data)


def create_app(settings=Settings, gateway: Optional[PersistenceGateway] = None):
    """Build the Socket.IO server, its session registry and the ASGI app around them."""
    sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=settings.ALLOWED_ORIGINS)
    registry = SessionRegistry(sio, gateway or build_gateway(settings.FIREBASE_SERVICE_ACCOUNT_KEY))
    coordinator = ConnectionCoordinator(sio, registry, settings)
    register_handlers(sio, coordinator)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await registry.close()

    app = FastAPI(title="Scrabble Server", version="0.2.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=['GET', 'POST'],
        allow_headers=['*'],
    )
    app.state.sio = sio
    app.state.registry = registry
    app.state.coordinator = coordinator

    return socketio.ASGIApp(sio, other_asgi_app=app)


logging.basicConfig(
    level=Settings.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

# Export ASGI app for uvicorn
application = create_app()

# For local running: uvicorn scrabble_server.main:application --reload --port 3000
if __name__ == '__main__':
    import uvicorn
    uvicorn.run('scrabble_server.main:application', host='0.0.0.0', port=Settings.PORT)
