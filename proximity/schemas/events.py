from pydantic import BaseModel, Field
from typing import Literal


# Inbound events
class DriverLocationUpdateEvent(BaseModel):
    type: Literal["driver-location-update"]
    driver_id: str = Field(..., alias="driverId", min_length=1)
    latitude: float
    longitude: float

    class Config:
        populate_by_name = True
        strict = True


class RiderRequestEvent(BaseModel):
    type: Literal["rider-request"]
    rider_id: str = Field(..., alias="riderId", min_length=1)
    latitude: float
    longitude: float

    class Config:
        populate_by_name = True
        strict = True


# Outbound events
class DriverLocation(BaseModel):
    cell_id: str = Field(..., alias="cellId")
    latitude: float
    longitude: float

    class Config:
        populate_by_name = True


class NearbyDriver(BaseModel):
    driver_id: str = Field(..., alias="driverId")
    location: DriverLocation

    class Config:
        populate_by_name = True


class NearbyDriversEvent(BaseModel):
    type: Literal["nearby-drivers"] = "nearby-drivers"
    drivers: list[NearbyDriver]


class LocationAckEvent(BaseModel):
    type: Literal["location-ack"] = "location-ack"
    driver_id: str = Field(..., alias="driverId")
    cell_id: str = Field(..., alias="cellId")

    class Config:
        populate_by_name = True


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
