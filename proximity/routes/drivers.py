from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional
import logging

from ..dependencies import get_driver_store, get_proximity_engine
from ..exceptions import InvalidCoordinate, StoreUnavailable
from ..models.driver import DriverRecord, Position
from ..schemas.driver import DriverRecordResponse, NearbyDriverIdsResponse
from ..services.driver_store import DriverLocationStore
from ..services.proximity_service import ProximityQueryEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["drivers"])


def _to_response(record: DriverRecord) -> DriverRecordResponse:
    return DriverRecordResponse(
        driver_id=record.driver_id,
        cell_id=record.cell_id,
        latitude=record.position.latitude,
        longitude=record.position.longitude,
        updated_at=record.updated_at,
    )


def _store_unavailable(e: StoreUnavailable) -> HTTPException:
    logger.error(f"Driver store unavailable: {e}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(e)
    )


@router.get("/nearby-drivers", response_model=NearbyDriverIdsResponse)
async def get_nearby_drivers(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    engine: ProximityQueryEngine = Depends(get_proximity_engine)
):
    """Ids of drivers around a point, the synchronous form of a rider request"""
    if latitude is None or longitude is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="latitude and longitude are required"
        )

    try:
        records = await engine.find_nearby(Position(latitude, longitude))
    except InvalidCoordinate as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except StoreUnavailable as e:
        raise _store_unavailable(e)

    return NearbyDriverIdsResponse(driver_ids=[record.driver_id for record in records])


@router.get("/drivers", response_model=list[DriverRecordResponse])
async def list_drivers(store: DriverLocationStore = Depends(get_driver_store)):
    """Every stored driver record (for debugging/admin purposes)"""
    try:
        return [_to_response(record) async for record in store.scan_all()]
    except StoreUnavailable as e:
        raise _store_unavailable(e)


@router.get("/drivers/{driver_id}", response_model=DriverRecordResponse)
async def get_driver(driver_id: str, store: DriverLocationStore = Depends(get_driver_store)):
    """Last known location of one driver"""
    try:
        record = await store.get(driver_id)
    except StoreUnavailable as e:
        raise _store_unavailable(e)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Driver not found"
        )
    return _to_response(record)
