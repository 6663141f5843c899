from typing import FrozenSet

import h3

from ..models.driver import Position, validate_coordinates


CellId = str


class SpatialIndexCodec:
    """Maps coordinates onto H3 hexagonal cells at a fixed resolution.

    Changing the resolution invalidates every cell id already stored, so it is
    fixed for the lifetime of the service.
    """

    def __init__(self, resolution: int = 9):
        if isinstance(resolution, bool) or not isinstance(resolution, int) or not 0 <= resolution <= 15:
            raise ValueError(f"H3 resolution must be an integer in [0, 15], got {resolution!r}")
        self.resolution = resolution

    def encode(self, position: Position) -> CellId:
        """Cell containing the position"""
        validate_coordinates(position.latitude, position.longitude)
        return h3.latlng_to_cell(position.latitude, position.longitude, self.resolution)

    def neighborhood(self, cell_id: CellId, radius: int) -> FrozenSet[CellId]:
        """All cells within `radius` grid steps of `cell_id`, center included"""
        if isinstance(radius, bool) or not isinstance(radius, int) or radius < 0:
            raise ValueError(f"Neighborhood radius must be a non-negative integer, got {radius!r}")
        if not isinstance(cell_id, str) or not h3.is_valid_cell(cell_id):
            raise ValueError(f"Invalid cell id: {cell_id!r}")

        return frozenset(h3.grid_disk(cell_id, radius))
