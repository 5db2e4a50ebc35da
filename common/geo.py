from __future__ import annotations

import math
from typing import Tuple

from common.types import BoundingBox, GeoPoint, TileId


# Web Mercator is undefined at the poles; valid tiles stop at about +/-85.0511 deg.
MERCATOR_MAX_LAT = 85.0511287798066


# -------------------------
# Slippy-map tile scheme (spherical Web Mercator)
# -------------------------
def forward(lat: float, lon: float, zoom: int) -> TileId:
    """
    Geodetic (deg) -> tile index at `zoom`, OSM tiling.

    Kept in the `tan + sec` form with floor() so indices match the canonical
    tile server bit for bit. |lat| == 90 is outside the domain; latitudes past
    MERCATOR_MAX_LAT give y outside [0, 2^zoom) and are clipped by callers.
    """
    lat_rad = lat * math.pi / 180.0
    n = 2 ** zoom
    x = math.floor((lon + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    return TileId(zoom=zoom, x=int(x), y=int(y))


def inverse(x: float, y: float, zoom: int) -> GeoPoint:
    """
    Tile index -> lat/lon (deg) of the tile's north-west corner.
    Fractional x/y address points inside the tile. Debug/verification only.

    NOTE: forward(inverse(x, y)) can land on the neighbouring tile when the
    corner sits exactly on a boundary and rounding goes the wrong way; use
    tile_center() when a round trip must be exact.
    """
    n = 2 ** zoom
    lon = x / n * 360.0 - 180.0
    lat_rad = math.atan(math.sinh(math.pi * (1.0 - 2.0 * y / n)))
    lat = lat_rad * 180.0 / math.pi
    return GeoPoint(lat=lat, lon=lon)


def tile_center(tile: TileId) -> GeoPoint:
    return inverse(tile.x + 0.5, tile.y + 0.5, tile.zoom)


def tile_bounds(tile: TileId) -> BoundingBox:
    """Geographic extent of a tile (north-west corner to south-east corner)."""
    nw = inverse(tile.x, tile.y, tile.zoom)
    se = inverse(tile.x + 1, tile.y + 1, tile.zoom)
    return BoundingBox(north=nw.lat, south=se.lat, east=se.lon, west=nw.lon)


def tile_count(zoom: int) -> int:
    """Number of tiles along one axis at `zoom`."""
    return 1 << zoom


def clip_range(lo: int, hi: int, zoom: int) -> Tuple[int, int]:
    """Clip an inclusive index range to [0, 2^zoom). May return lo > hi (empty)."""
    return max(lo, 0), min(hi, tile_count(zoom) - 1)
