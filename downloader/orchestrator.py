from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol, Tuple

from common.errors import InvalidRequestError, StorageError
from common.logging_setup import get_logger, log_fields
from common.types import (
    BoundingBox,
    BoundingBoxRequest,
    GeoPoint,
    RadiusRequest,
    RunReport,
    TileId,
    TileRegionRequest,
)
from downloader.tile_source import OSM_URL_TEMPLATE, TileSource
from downloader.tile_store import FileTileStore, TileStore
from region.expander import DEFAULT_MAX_ZOOM, expand_multi_zoom, validate_request
from region.presets import Preset, load_presets, resolve_preset


log = get_logger("downloader")


class TileFetcher(Protocol):
    def fetch(self, tile: TileId) -> bytes: ...


@dataclass(frozen=True)
class DownloadPolicy:
    """
    Throttling for one run: a single in-flight request and a fixed pause of
    `delay_ms` after every successful download. Failures are not delayed.
    """
    delay_ms: int = 150
    progress_every: int = 100

    def __post_init__(self) -> None:
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        if self.progress_every <= 0:
            raise ValueError("progress_every must be > 0")

    @property
    def delay_s(self) -> float:
        return self.delay_ms / 1000.0


# -------------------------
# Core loop
# -------------------------
def _log_zoom_done(report: RunReport, zoom: int) -> None:
    log.info(
        "zoom %d done: %d new tiles",
        zoom, report.downloaded_at(zoom),
        extra=log_fields(zoom=zoom, downloaded=report.downloaded_at(zoom)),
    )


def _abort(report: RunReport, tile: TileId, err: Exception) -> None:
    # the tile is still missing from the cache, so it counts as failed and the
    # partial report asks for a rerun
    report.failed.append(tile)
    log.error(
        "cache store unusable, aborting run at tile %s: %s", tile, err,
        exc_info=True, extra=log_fields(tile=tile.path),
    )


def run_download(
    tiles: Iterable[TileId],
    store: TileStore,
    fetcher: TileFetcher,
    policy: DownloadPolicy = DownloadPolicy(),
    *,
    stop_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Walk `tiles` in order, one at a time:
      - already in `store` -> skipped
      - fetched OK -> written, recorded, then `policy.delay_ms` pause
      - fetch raised -> recorded as failed, logged, next tile (no pause)

    Invalid tile ids are dropped without being counted or fetched.
    StorageError from the store (on the existence check or the write) ends
    the run; the tile it happened on is recorded as failed, the partial report
    rides on `err.report`, and everything written so far stays in the store.
    `stop_event` is checked before each tile, so a cancelled run never stops
    mid-write.
    """
    total = len(tiles) if hasattr(tiles, "__len__") else None  # type: ignore[arg-type]
    report = RunReport()
    current_zoom: Optional[int] = None

    log.info(
        "download run started: %s tiles, delay %d ms",
        "?" if total is None else total, policy.delay_ms,
        extra=log_fields(tiles=total, delay_ms=policy.delay_ms),
    )
    t0 = time.perf_counter()

    for tile in tiles:
        if stop_event is not None and stop_event.is_set():
            report.cancelled = True
            log.warning("download run cancelled after %d tiles", report.total_considered)
            break
        if not tile.is_valid():
            log.warning("dropping out-of-range tile %s", tile)
            continue
        if current_zoom is not None and tile.zoom != current_zoom:
            _log_zoom_done(report, current_zoom)
        current_zoom = tile.zoom
        report.total_considered += 1

        try:
            cached = store.exists(tile)
        except StorageError as e:
            _abort(report, tile, e)
            e.report = report
            raise
        except OSError as e:
            _abort(report, tile, e)
            raise StorageError(f"cannot check tile {tile}: {e}", report=report) from e
        if cached:
            continue

        try:
            data = fetcher.fetch(tile)
            if not data:
                raise ValueError("fetcher returned no data")
        except Exception as e:
            report.failed.append(tile)
            log.warning("failed to download tile %s: %s", tile, e, extra=log_fields(tile=tile.path))
            continue

        try:
            store.write(tile, data)
        except StorageError as e:
            _abort(report, tile, e)
            e.report = report
            raise
        except OSError as e:
            _abort(report, tile, e)
            raise StorageError(f"cannot write tile {tile}: {e}", report=report) from e
        report.downloaded.append(tile)

        if len(report.downloaded) % policy.progress_every == 0:
            pct = "" if not total else f" ({round(report.total_considered / total * 100)}%)"
            log.info("progress: %d tiles downloaded%s", len(report.downloaded), pct)

        if policy.delay_ms > 0:
            sleep(policy.delay_s)

    if current_zoom is not None:
        _log_zoom_done(report, current_zoom)

    log.info(
        "download run finished: considered=%d downloaded=%d failed=%d skipped=%d in %.1fs",
        report.total_considered, len(report.downloaded), len(report.failed), report.skipped,
        time.perf_counter() - t0,
        extra=log_fields(**report.to_dict(max_downloaded=0, max_failed=0)),
    )
    return report


def download_region(
    request: TileRegionRequest,
    store: TileStore,
    fetcher: TileFetcher,
    policy: DownloadPolicy = DownloadPolicy(),
    *,
    max_zoom: int = DEFAULT_MAX_ZOOM,
    stop_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunReport:
    """
    Expand `request` and download it. InvalidRequestError is raised before
    the store or the fetcher is touched.
    """
    validate_request(request, max_zoom)
    tiles = expand_multi_zoom(request, max_zoom)
    zoom_range = (request.min_zoom, request.max_zoom)
    try:
        report = run_download(tiles, store, fetcher, policy, stop_event=stop_event, sleep=sleep)
    except StorageError as e:
        if e.report is not None:
            e.report.zoom_range = zoom_range
        raise
    report.zoom_range = zoom_range
    return report


# -------------------------
# Invocation surface
# -------------------------
def _opt_int(params: Mapping[str, Any], *keys: str) -> Optional[int]:
    for k in keys:
        v = params.get(k)
        if v is not None:
            try:
                return int(v)
            except (TypeError, ValueError) as e:
                raise InvalidRequestError(f"{k} must be an integer, got {v!r}") from e
    return None


def _opt_float(params: Mapping[str, Any], *keys: str) -> Optional[float]:
    for k in keys:
        v = params.get(k)
        if v is not None:
            try:
                return float(v)
            except (TypeError, ValueError) as e:
                raise InvalidRequestError(f"{k} must be a number, got {v!r}") from e
    return None


class RegionDownloader:
    """
    Ties store, fetcher, presets and policy together behind one call:

        dl = RegionDownloader.from_config(load_config())
        report = dl.download_region(dl.build_request({"preset": "seoul", "max_zoom": 12}))
    """

    def __init__(
        self,
        store: TileStore,
        fetcher: TileFetcher,
        policy: DownloadPolicy = DownloadPolicy(),
        presets: Optional[Mapping[str, Preset]] = None,
        defaults: Optional[Mapping[str, Any]] = None,
        report_limits: Tuple[int, int] = (20, 10),
        sleep: Callable[[float], None] = time.sleep,
    ):
        d = dict(defaults or {})
        self.store = store
        self.fetcher = fetcher
        self.policy = policy
        self.presets: Dict[str, Preset] = dict(presets) if presets is not None else load_presets()
        self.default_radius = int(d.get("default_radius", 2))
        self.default_min_zoom = int(d.get("default_min_zoom", 10))
        self.default_max_zoom = int(d.get("default_max_zoom", 16))
        self.max_zoom = int(d.get("max_zoom", DEFAULT_MAX_ZOOM))
        self.report_limits = report_limits
        self.honor_preset_delay = True
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], **kwargs: Any) -> "RegionDownloader":
        src = cfg.get("source", {})
        dl = cfg.get("download", {})
        rep = cfg.get("report", {})
        store = kwargs.pop("store", None)
        if store is None:
            store = FileTileStore(cfg.get("tiles", {}).get("cache_root", "data/tiles"))
        fetcher = kwargs.pop("fetcher", None)
        if fetcher is None:
            fetcher = TileSource(
                url_template=src.get("url_template", OSM_URL_TEMPLATE),
                user_agent=src.get("user_agent", "LocalMapApp/1.0"),
                timeout=float(src.get("timeout_s", 10.0)),
                verify_image=bool(src.get("verify_image", False)),
            )
        return cls(
            store=store,
            fetcher=fetcher,
            policy=DownloadPolicy(delay_ms=int(dl.get("delay_ms", 150))),
            presets=load_presets(cfg),
            defaults=dl,
            report_limits=(int(rep.get("max_downloaded_listed", 20)), int(rep.get("max_failed_listed", 10))),
            **kwargs,
        )

    def build_request(self, params: Mapping[str, Any]) -> TileRegionRequest:
        """
        Build a request from loose parameters, one of:
          {preset, [min_zoom], [max_zoom]}
          {north, south, east, west, [min_zoom], [max_zoom], [zoom]}
          {lat, lon, [radius], [min_zoom], [max_zoom], [zoom]}
        Omitted zooms fall back to `zoom`, then to configured defaults.
        """
        min_zoom = _opt_int(params, "min_zoom")
        max_zoom = _opt_int(params, "max_zoom")
        zoom = _opt_int(params, "zoom")

        preset = params.get("preset")
        if preset:
            return resolve_preset(str(preset), self.presets, min_zoom, max_zoom)

        lo = min_zoom if min_zoom is not None else (zoom if zoom is not None else self.default_min_zoom)
        hi = max_zoom if max_zoom is not None else (zoom if zoom is not None else self.default_max_zoom)

        edges = [_opt_float(params, k) for k in ("north", "south", "east", "west")]
        if any(e is not None for e in edges):
            if any(e is None for e in edges):
                raise InvalidRequestError("bounding box needs north, south, east and west")
            n, s, e, w = edges
            return BoundingBoxRequest(box=BoundingBox(north=n, south=s, east=e, west=w), min_zoom=lo, max_zoom=hi)  # type: ignore[arg-type]

        lat = _opt_float(params, "lat")
        lon = _opt_float(params, "lon", "lng")
        if lat is None or lon is None:
            raise InvalidRequestError("need a preset, a bounding box, or lat/lon")
        radius = _opt_int(params, "radius")
        try:
            center = GeoPoint(lat=lat, lon=lon)
        except ValueError as e:
            raise InvalidRequestError(f"center ({lat}, {lon}): {e}") from e
        return RadiusRequest(
            center=center,
            radius=self.default_radius if radius is None else radius,
            min_zoom=lo,
            max_zoom=hi,
        )

    def policy_for(self, request: TileRegionRequest) -> DownloadPolicy:
        if self.honor_preset_delay and isinstance(request, BoundingBoxRequest) and request.preset:
            p = self.presets.get(request.preset)
            if p is not None and p.delay_ms is not None:
                return DownloadPolicy(delay_ms=p.delay_ms, progress_every=self.policy.progress_every)
        return self.policy

    def download_region(
        self, request: TileRegionRequest, stop_event: Optional[threading.Event] = None
    ) -> RunReport:
        return download_region(
            request,
            self.store,
            self.fetcher,
            self.policy_for(request),
            max_zoom=self.max_zoom,
            stop_event=stop_event,
            sleep=self._sleep,
        )

    def summarize(self, request: TileRegionRequest, report: RunReport) -> Dict[str, Any]:
        """Report dict for display; preset runs list more ids (50/20)."""
        if isinstance(request, BoundingBoxRequest) and request.preset:
            max_dl, max_failed = 50, 20
        else:
            max_dl, max_failed = self.report_limits
        out = report.to_dict(max_downloaded=max_dl, max_failed=max_failed)
        out["success"] = True
        if isinstance(request, BoundingBoxRequest):
            out["bounds"] = request.box.as_dict()
            if request.preset:
                out["preset"] = request.preset
        return out
