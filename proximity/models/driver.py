from dataclasses import dataclass, field
from datetime import datetime, timezone
import math

from ..exceptions import InvalidCoordinate


def validate_coordinates(latitude, longitude) -> None:
    """Raise InvalidCoordinate unless both values are finite and in range"""
    for name, value, limit in (("latitude", latitude, 90), ("longitude", longitude, 180)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidCoordinate(f"{name} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise InvalidCoordinate(f"{name} must be finite, got {value!r}")
        if not -limit <= value <= limit:
            raise InvalidCoordinate(f"{name} must be within [-{limit}, {limit}], got {value!r}")


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DriverRecord:
    """Last known location of a driver, one per driver id"""

    driver_id: str
    position: Position
    cell_id: str
    updated_at: datetime = field(default_factory=utcnow)

    def to_store(self) -> dict:
        """Value persisted under driver:<driver_id>"""
        return {
            "cellId": self.cell_id,
            "latitude": self.position.latitude,
            "longitude": self.position.longitude,
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_store(cls, driver_id: str, data: dict) -> "DriverRecord":
        # Records written before cellId/updatedAt existed carry h3Index only
        cell_id = data.get("cellId") or data.get("h3Index")
        if not cell_id:
            raise ValueError(f"Driver {driver_id} record has no cell id")

        updated_at = data.get("updatedAt")
        if updated_at:
            updated_at = datetime.fromisoformat(updated_at)
            if updated_at.tzinfo is None:
                updated_at = updated_at.replace(tzinfo=timezone.utc)
        else:
            updated_at = datetime.fromtimestamp(0, timezone.utc)

        return cls(
            driver_id=driver_id,
            position=Position(data["latitude"], data["longitude"]),
            cell_id=cell_id,
            updated_at=updated_at,
        )

    def __repr__(self):
        return f"<DriverRecord(driver_id={self.driver_id}, cell_id={self.cell_id}, updated_at={self.updated_at.isoformat()})>"
