from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from datetime import datetime, timezone
import logging

from ..dependencies import get_redis_client
from ..utils.redis_client import RedisClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: datetime
    dependencies: dict


@router.get("/health", response_model=HealthResponse)
async def health_check(response: Response, redis_client: RedisClient = Depends(get_redis_client)):
    """Readiness check: the service is only useful while Redis is reachable"""
    redis_healthy = await redis_client.health_check()

    if not redis_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if redis_healthy else "unhealthy",
        service="driver-proximity",
        timestamp=datetime.now(timezone.utc),
        dependencies={"redis": "connected" if redis_healthy else "disconnected"},
    )
