class ProximityError(Exception):
    """Base class for errors raised by the proximity service"""


class InvalidCoordinate(ProximityError, ValueError):
    """Latitude/longitude missing its numeric type or outside the valid range"""


class MalformedPayload(ProximityError):
    """Inbound event that cannot be decoded or lacks required fields"""


class UnrecognizedEventType(MalformedPayload):
    def __init__(self, event_type):
        self.event_type = event_type
        super().__init__(f"Unrecognized event type: {event_type}")


class StoreUnavailable(ProximityError):
    """Backing key-value store cannot be reached"""


class QueryTimeout(StoreUnavailable):
    """Driver scan did not finish within the configured timeout"""
