from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


def _check_zoom(zoom: int) -> None:
    if zoom < 0:
        raise ValueError("zoom must be >= 0")


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """WGS84 position in degrees."""
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError("lat/lon out of range")


@dataclass(frozen=True, slots=True, order=True)
class TileId:
    """
    Slippy-map tile address.

    Ordering is (zoom, x, y), which is also the row-major order tiles are
    attempted in within one zoom level.
    """
    zoom: int
    x: int
    y: int

    def __post_init__(self) -> None:
        _check_zoom(self.zoom)

    @property
    def path(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"

    def is_valid(self) -> bool:
        n = 1 << self.zoom
        return 0 <= self.x < n and 0 <= self.y < n

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """
    Geographic rectangle in degrees. No anti-meridian wraparound:
    callers must keep east > west and north > south.
    """
    north: float
    south: float
    east: float
    west: float

    def contains(self, lat: float, lon: float) -> bool:
        return (self.south <= lat <= self.north) and (self.west <= lon <= self.east)

    def as_dict(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


@dataclass(frozen=True, slots=True)
class BoundingBoxRequest:
    box: BoundingBox
    min_zoom: int
    max_zoom: int
    preset: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RadiusRequest:
    """Square window of +/- `radius` tiles around the tile containing `center`."""
    center: GeoPoint
    radius: int
    min_zoom: int
    max_zoom: int


TileRegionRequest = Union[BoundingBoxRequest, RadiusRequest]


@dataclass(slots=True)
class RunReport:
    """
    Outcome of one orchestrator run. Local to the run; never persisted.

    Attributes:
        total_considered: tiles taken from the sequence (cached ones included).
        downloaded: tiles fetched and written during this run, in order.
        failed: tiles whose fetch failed, in order.
        cancelled: run stopped early via its stop event.
    """
    total_considered: int = 0
    downloaded: List[TileId] = field(default_factory=list)
    failed: List[TileId] = field(default_factory=list)
    cancelled: bool = False
    zoom_range: Optional[Tuple[int, int]] = None

    @property
    def skipped(self) -> int:
        return self.total_considered - len(self.downloaded) - len(self.failed)

    @property
    def needs_rerun(self) -> bool:
        return bool(self.failed) or self.cancelled

    def downloaded_at(self, zoom: int) -> int:
        return sum(1 for t in self.downloaded if t.zoom == zoom)

    def to_dict(self, max_downloaded: Optional[int] = None, max_failed: Optional[int] = None) -> Dict[str, Any]:
        """JSON-friendly summary; id lists are truncated for display when limits are given."""
        d: Dict[str, Any] = {
            "total_tiles": self.total_considered,
            "downloaded": len(self.downloaded),
            "failed": len(self.failed),
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "needs_rerun": self.needs_rerun,
            "downloaded_tiles": [t.path for t in self.downloaded[:max_downloaded]],
            "failed_tiles": [t.path for t in self.failed[:max_failed]],
        }
        if self.zoom_range is not None:
            d["zoom_levels"] = f"{self.zoom_range[0]}-{self.zoom_range[1]}"
        return d
