import asyncio
import logging
from typing import FrozenSet, List

from ..exceptions import QueryTimeout
from ..models.driver import DriverRecord, Position
from .driver_store import DriverLocationStore
from .spatial_index import CellId, SpatialIndexCodec

logger = logging.getLogger(__name__)


class ProximityQueryEngine:
    """Finds drivers whose cell lies within a fixed number of rings of the rider's cell"""

    def __init__(
        self,
        codec: SpatialIndexCodec,
        store: DriverLocationStore,
        radius: int = 3,
        scan_timeout: float = 5.0,
    ):
        self.codec = codec
        self.store = store
        self.radius = radius
        self.scan_timeout = scan_timeout

    def neighborhood_for(self, position: Position) -> FrozenSet[CellId]:
        center = self.codec.encode(position)
        return self.codec.neighborhood(center, self.radius)

    async def _candidates(self, cells: FrozenSet[CellId]) -> List[DriverRecord]:
        # Linear scan over every driver; swap for a store-side cell index when one exists
        matches = []
        scanned = 0
        async for record in self.store.scan_all():
            scanned += 1
            if record.cell_id in cells:
                matches.append(record)
        logger.debug(f"Scanned {scanned} drivers, {len(matches)} inside {len(cells)} cells")
        return matches

    async def find_nearby(self, position: Position) -> List[DriverRecord]:
        """Drivers inside the rider's neighborhood, unranked and uncapped"""
        cells = self.neighborhood_for(position)
        try:
            return await asyncio.wait_for(self._candidates(cells), timeout=self.scan_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Driver scan exceeded {self.scan_timeout}s")
            raise QueryTimeout(f"Driver scan exceeded {self.scan_timeout}s") from e
