from fastapi import Request, WebSocket

from .services.driver_store import DriverLocationStore
from .services.event_service import EventProtocolHandler
from .services.proximity_service import ProximityQueryEngine
from .utils.redis_client import RedisClient


# Collaborators are built once in the lifespan and kept on app.state
def get_redis_client(request: Request) -> RedisClient:
    return request.app.state.redis_client


def get_driver_store(request: Request) -> DriverLocationStore:
    return request.app.state.driver_store


def get_proximity_engine(request: Request) -> ProximityQueryEngine:
    return request.app.state.proximity_engine


def get_event_handler(websocket: WebSocket) -> EventProtocolHandler:
    return websocket.app.state.event_handler
