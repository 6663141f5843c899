from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
import logging

from ..dependencies import get_event_handler
from ..services.event_service import EventProtocolHandler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def event_stream(websocket: WebSocket, handler: EventProtocolHandler = Depends(get_event_handler)):
    """Driver location updates and rider requests, one JSON event per message.

    Messages on one connection are handled strictly in arrival order.
    """
    await websocket.accept()
    client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    logger.info(f"WebSocket connected: {client}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            # Text and binary frames carry the same JSON events
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            response = await handler.handle_message(data)
            if response is not None:
                await websocket.send_json(response)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {client}")
