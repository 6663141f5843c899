from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys
import structlog

from .config import Settings, settings as default_settings
from .utils.redis_client import RedisClient
from .services.driver_store import DriverLocationStore
from .services.event_service import EventProtocolHandler
from .services.proximity_service import ProximityQueryEngine
from .services.reaper import StaleDriverReaper
from .services.spatial_index import SpatialIndexCodec
from .routes import health, drivers, realtime


def configure_logging(level: str = "INFO"):
    """Configure structured logging"""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def create_app(settings: Optional[Settings] = None, redis_client: Optional[RedisClient] = None) -> FastAPI:
    settings = settings or default_settings
    redis_client = redis_client or RedisClient(settings.redis_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        # Startup
        logger.info("Starting Driver Proximity Service")

        # A failed connect propagates and aborts startup
        await redis_client.connect()
        logger.info("Connected to Redis")

        codec = SpatialIndexCodec(settings.h3_resolution)
        store = DriverLocationStore(
            redis_client,
            key_prefix=settings.driver_key_prefix,
            batch_size=settings.scan_batch_size,
        )
        engine = ProximityQueryEngine(
            codec,
            store,
            radius=settings.neighborhood_radius,
            scan_timeout=settings.scan_timeout_seconds,
        )
        reaper = StaleDriverReaper(
            store,
            ttl_seconds=settings.driver_ttl_seconds,
            interval_seconds=settings.reaper_interval_seconds,
        )

        app.state.redis_client = redis_client
        app.state.driver_store = store
        app.state.proximity_engine = engine
        app.state.event_handler = EventProtocolHandler(
            codec,
            store,
            engine,
            reject_unknown_events=settings.reject_unknown_events,
        )
        app.state.reaper = reaper
        reaper.start()

        try:
            yield
        finally:
            # Shutdown
            logger.info("Shutting down Driver Proximity Service")
            try:
                await reaper.stop()
            except Exception as e:
                logger.error(f"Error stopping stale driver reaper: {e}")
            try:
                await redis_client.disconnect()
            except Exception as e:
                logger.error(f"Error during shutdown: {e}")

    app = FastAPI(
        title="Driver Proximity Service",
        description="Real-time matching of riders to nearby drivers on an H3 grid",
        version="1.0.0",
        debug=settings.debug,
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware for request logging
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests"""
        correlation_id = request.headers.get("x-correlation-id", "unknown")

        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            correlation_id=correlation_id
        )

        response = await call_next(request)

        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            correlation_id=correlation_id
        )

        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Bad query parameters are a client error, reported as 400 instead of 422
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    # Include routers
    app.include_router(health.router)
    app.include_router(drivers.router)
    app.include_router(realtime.router)

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "service": "driver-proximity",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "websocket": "/ws",
                "nearby_drivers": "/nearby-drivers",
                "drivers": "/drivers",
                "health": "/api/health",
                "docs": "/docs",
            }
        }

    # Health check for load balancers
    @app.get("/health")
    async def simple_health():
        """Simple liveness check"""
        return {"status": "ok"}

    return app


configure_logging(default_settings.log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "proximity.main:app",
        host="0.0.0.0",
        port=default_settings.port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower()
    )
