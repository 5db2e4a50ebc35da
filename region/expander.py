from __future__ import annotations

import logging
from typing import Iterator, List, Tuple

from common.errors import InvalidRequestError
from common.geo import clip_range, forward, inverse
from common.logging_setup import get_logger, log_fields
from common.types import (
    BoundingBox,
    BoundingBoxRequest,
    GeoPoint,
    RadiusRequest,
    TileId,
    TileRegionRequest,
)


log = get_logger("region")

DEFAULT_MAX_ZOOM = 19


# -------------------------
# Validation
# -------------------------
def _check_lat(lat: float, what: str) -> None:
    if not (-90.0 < lat < 90.0):
        raise InvalidRequestError(f"{what} latitude {lat} outside (-90, 90)")


def _check_lon(lon: float, what: str) -> None:
    if not (-180.0 <= lon <= 180.0):
        raise InvalidRequestError(f"{what} longitude {lon} outside [-180, 180]")


def validate_zoom_range(min_zoom: int, max_zoom: int, limit: int = DEFAULT_MAX_ZOOM) -> None:
    if min_zoom < 0:
        raise InvalidRequestError(f"min zoom {min_zoom} < 0")
    if min_zoom > max_zoom:
        raise InvalidRequestError(f"inverted zoom range {min_zoom}-{max_zoom}")
    if max_zoom > limit:
        raise InvalidRequestError(f"max zoom {max_zoom} > {limit}")


def validate_box(box: BoundingBox) -> None:
    _check_lat(box.north, "north")
    _check_lat(box.south, "south")
    _check_lon(box.east, "east")
    _check_lon(box.west, "west")
    if box.north <= box.south or box.east <= box.west:
        raise InvalidRequestError(
            f"empty region: north={box.north} south={box.south} east={box.east} west={box.west}"
        )


def validate_request(request: TileRegionRequest, max_zoom: int = DEFAULT_MAX_ZOOM) -> None:
    """Raise InvalidRequestError if `request` cannot be expanded. Touches no I/O."""
    validate_zoom_range(request.min_zoom, request.max_zoom, max_zoom)
    if isinstance(request, RadiusRequest):
        _check_lat(request.center.lat, "center")
        _check_lon(request.center.lon, "center")
        if request.radius < 0:
            raise InvalidRequestError(f"radius {request.radius} < 0")
    elif isinstance(request, BoundingBoxRequest):
        validate_box(request.box)
    else:
        raise InvalidRequestError(f"unsupported request type: {type(request).__name__}")


# -------------------------
# Single-zoom expansion
# -------------------------
Ranges = Tuple[int, int, int, int]


def _box_ranges(box: BoundingBox, zoom: int) -> Ranges:
    top_left = forward(box.north, box.west, zoom)
    bottom_right = forward(box.south, box.east, zoom)
    x0, x1 = clip_range(top_left.x, bottom_right.x, zoom)
    y0, y1 = clip_range(top_left.y, bottom_right.y, zoom)
    return x0, x1, y0, y1


def _radius_ranges(center: GeoPoint, radius: int, zoom: int) -> Ranges:
    c = forward(center.lat, center.lon, zoom)
    x0, x1 = clip_range(c.x - radius, c.x + radius, zoom)
    y0, y1 = clip_range(c.y - radius, c.y + radius, zoom)
    return x0, x1, y0, y1


def _request_ranges(request: TileRegionRequest, zoom: int) -> Ranges:
    if isinstance(request, RadiusRequest):
        return _radius_ranges(request.center, request.radius, zoom)
    return _box_ranges(request.box, zoom)


def _enumerate(zoom: int, ranges: Ranges) -> List[TileId]:
    # row-major: x outer, y inner; empty when lo > hi on either axis
    x0, x1, y0, y1 = ranges
    return [TileId(zoom, x, y) for x in range(x0, x1 + 1) for y in range(y0, y1 + 1)]


def expand_bounding_box(box: BoundingBox, zoom: int) -> List[TileId]:
    """
    All tiles covering `box` at `zoom`, row-major (x outer, y inner).
    Indices outside [0, 2^zoom) are dropped; a degenerate box gives [].
    """
    return _enumerate(zoom, _box_ranges(box, zoom))


def viewport_tiles(box: BoundingBox, zoom: int) -> List[TileId]:
    """Tiles visible in a map viewport; same rule as expand_bounding_box."""
    return expand_bounding_box(box, zoom)


def expand_radius(center: GeoPoint, radius: int, zoom: int) -> List[TileId]:
    """
    (2*radius+1)^2 window around the tile containing `center`, minus whatever
    falls outside the grid.
    """
    return _enumerate(zoom, _radius_ranges(center, radius, zoom))


def _expand_one(request: TileRegionRequest, zoom: int) -> List[TileId]:
    if isinstance(request, RadiusRequest) and log.isEnabledFor(logging.DEBUG):
        c = forward(request.center.lat, request.center.lon, zoom)
        nw = inverse(c.x, c.y, zoom)
        log.debug(
            "center tile z%d: (%.6f, %.6f) -> %d/%d (nw corner %.6f, %.6f)",
            zoom, request.center.lat, request.center.lon, c.x, c.y, nw.lat, nw.lon,
        )
    return _enumerate(zoom, _request_ranges(request, zoom))


# -------------------------
# Multi-zoom
# -------------------------
def iter_tiles(request: TileRegionRequest) -> Iterator[TileId]:
    """Lazily yield tiles zoom by zoom, ascending. No de-duplication across zooms."""
    for zoom in range(request.min_zoom, request.max_zoom + 1):
        yield from _expand_one(request, zoom)


def expand_multi_zoom(request: TileRegionRequest, max_zoom: int = DEFAULT_MAX_ZOOM) -> List[TileId]:
    validate_request(request, max_zoom)
    tiles = list(iter_tiles(request))
    log.info(
        "expanded region: %d tiles over zooms %d-%d",
        len(tiles), request.min_zoom, request.max_zoom,
        extra=log_fields(tiles=len(tiles), kind=type(request).__name__),
    )
    return tiles


def count_tiles(request: TileRegionRequest) -> int:
    """Tile count of a request without materializing ids (for sizing a run up front)."""
    total = 0
    for zoom in range(request.min_zoom, request.max_zoom + 1):
        x0, x1, y0, y1 = _request_ranges(request, zoom)
        total += max(0, x1 - x0 + 1) * max(0, y1 - y0 + 1)
    return total
