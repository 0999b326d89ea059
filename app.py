from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from backend import RoomRegistry
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, ROOM_TTL_SECONDS
from gateway import ConnectionManager, SessionGateway
from logging_config import get_logger, setup_logging
from routers.rooms import rooms_router, users_router
from schemas.rooms import HealthResponse
from utils import generate_connection_id

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(ttl_seconds: Optional[float] = None) -> FastAPI:
    """Build an application with its own room registry and connection tracking."""
    registry = RoomRegistry(ttl_seconds=ttl_seconds if ttl_seconds is not None else ROOM_TTL_SECONDS)
    connections = ConnectionManager()
    gateway = SessionGateway(registry, connections)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Room relay starting")
        yield
        await gateway.drain()
        registry.close()
        logger.info("Room relay stopped")

    app = FastAPI(title="Ephemeral Room Relay", lifespan=lifespan)
    app.state.registry = registry
    app.state.connections = connections
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    app.include_router(users_router)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", rooms=len(registry), connections=len(connections.connections))

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Event socket: every frame is a JSON envelope {"event": ..., "data": ...}."""
        await websocket.accept()
        connection_id = generate_connection_id()
        connections.connect(connection_id, websocket)
        logger.info(f"New connection: {connection_id}")

        try:
            while True:
                data = await websocket.receive_text()
                await gateway.handle_frame(connection_id, data)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {connection_id}")
        except Exception as e:
            logger.error(f"Error on connection {connection_id}: {e}", exc_info=True)
            raise
        finally:
            connections.disconnect(connection_id)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
