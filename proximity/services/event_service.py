import json
import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..exceptions import InvalidCoordinate, MalformedPayload, StoreUnavailable, UnrecognizedEventType
from ..models.driver import DriverRecord, Position
from ..schemas.events import (
    DriverLocation,
    DriverLocationUpdateEvent,
    ErrorEvent,
    LocationAckEvent,
    NearbyDriver,
    NearbyDriversEvent,
    RiderRequestEvent,
)
from .driver_store import DriverLocationStore
from .proximity_service import ProximityQueryEngine
from .spatial_index import SpatialIndexCodec

logger = logging.getLogger(__name__)

COORDINATE_FIELDS = ("latitude", "longitude")


class EventProtocolHandler:
    """Decode one inbound event, dispatch it, and build the reply.

    Holds no per-connection state. Every failure is turned into an error event
    so a bad message never closes the connection or touches other clients.
    """

    DRIVER_LOCATION_UPDATE = "driver-location-update"
    RIDER_REQUEST = "rider-request"

    def __init__(
        self,
        codec: SpatialIndexCodec,
        store: DriverLocationStore,
        engine: ProximityQueryEngine,
        reject_unknown_events: bool = True,
    ):
        self.codec = codec
        self.store = store
        self.engine = engine
        self.reject_unknown_events = reject_unknown_events
        self._handlers = {
            self.DRIVER_LOCATION_UPDATE: self.handle_location_update,
            self.RIDER_REQUEST: self.handle_rider_request,
        }

    async def handle_message(self, raw: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        """Process one message; returns the reply, or None when nothing is sent back"""
        try:
            payload = self._decode(raw)
            event_type = payload.get("type")
            if not isinstance(event_type, str):
                raise MalformedPayload("Missing event type")

            handler = self._handlers.get(event_type)
            if handler is None:
                raise UnrecognizedEventType(event_type)
            return await handler(payload)

        except UnrecognizedEventType as e:
            logger.warning(f"Dropping event: {e}")
            return self._error(str(e)) if self.reject_unknown_events else None
        except (InvalidCoordinate, MalformedPayload) as e:
            logger.warning(f"Rejected event: {e}")
            return self._error(str(e))
        except StoreUnavailable as e:
            logger.error(f"Store failure while processing event: {e}")
            return self._error(str(e))
        except Exception as e:
            logger.exception(f"Error processing event: {e}")
            return self._error("Server error")

    async def handle_location_update(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event = self._validate(DriverLocationUpdateEvent, payload)
        position = Position(event.latitude, event.longitude)
        record = DriverRecord(
            driver_id=event.driver_id,
            position=position,
            cell_id=self.codec.encode(position),
        )
        await self.store.put(record)
        logger.info(f"Driver {record.driver_id} location updated: {record.cell_id}")

        return LocationAckEvent(driver_id=record.driver_id, cell_id=record.cell_id).model_dump(by_alias=True)

    async def handle_rider_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event = self._validate(RiderRequestEvent, payload)
        records = await self.engine.find_nearby(Position(event.latitude, event.longitude))
        logger.info(f"Rider {event.rider_id} nearby drivers: {[r.driver_id for r in records]}")

        response = NearbyDriversEvent(
            drivers=[
                NearbyDriver(
                    driver_id=record.driver_id,
                    location=DriverLocation(
                        cell_id=record.cell_id,
                        latitude=record.position.latitude,
                        longitude=record.position.longitude,
                    ),
                )
                for record in records
            ]
        )
        return response.model_dump(by_alias=True)

    def _decode(self, raw: Union[str, bytes]) -> Dict[str, Any]:
        try:
            payload = json.loads(raw)
        except (ValueError, TypeError) as e:
            raise MalformedPayload(f"Invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise MalformedPayload("Event must be a JSON object")
        return payload

    def _validate(self, model, payload: Dict[str, Any]):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            errors = e.errors()
            missing = [str(err["loc"][0]) for err in errors if err["type"] == "missing"]
            if missing:
                raise MalformedPayload(f"Missing required field(s): {', '.join(missing)}") from e

            fields = [str(err["loc"][0]) if err["loc"] else "payload" for err in errors]
            if all(field in COORDINATE_FIELDS for field in fields):
                raise InvalidCoordinate(f"{', '.join(fields)} must be a number") from e
            raise MalformedPayload(f"Invalid field(s): {', '.join(fields)}") from e

    @staticmethod
    def _error(message: str) -> Dict[str, Any]:
        return ErrorEvent(message=message).model_dump()
