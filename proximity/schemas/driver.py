from pydantic import BaseModel, Field
from datetime import datetime


# Response schemas
class NearbyDriverIdsResponse(BaseModel):
    driver_ids: list[str] = Field(..., alias="driverIds")

    class Config:
        populate_by_name = True


class DriverRecordResponse(BaseModel):
    driver_id: str = Field(..., alias="driverId")
    cell_id: str = Field(..., alias="cellId")
    latitude: float
    longitude: float
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        populate_by_name = True
