from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from common.config import load_config
from common.errors import InvalidRequestError, StorageError, UnknownPresetError
from common.geo import tile_bounds, tile_center
from common.logging_setup import get_logger, setup_logging
from common.types import TileId
from downloader.orchestrator import RegionDownloader


log = get_logger("downloader.server")

# Legacy client value for the full Seoul download
_LEGACY_DOWNLOAD_TYPES = {"seoul_complete": "seoul"}


class DownloadBody(BaseModel):
    """
    POST /download payload. Accepts snake_case names and the camelCase
    names used by the map front end (lng, startZoom, endZoom, downloadType).
    """
    model_config = ConfigDict(populate_by_name=True)

    lat: Optional[float] = None
    lon: Optional[float] = Field(None, alias="lng")
    zoom: Optional[int] = None
    min_zoom: Optional[int] = Field(None, alias="startZoom")
    max_zoom: Optional[int] = Field(None, alias="endZoom")
    radius: Optional[int] = None
    preset: Optional[str] = None
    download_type: Optional[str] = Field(None, alias="downloadType")
    north: Optional[float] = None
    south: Optional[float] = None
    east: Optional[float] = None
    west: Optional[float] = None

    def to_params(self) -> Dict[str, Any]:
        params = self.model_dump(exclude_none=True, by_alias=False)
        legacy = params.pop("download_type", None)
        if legacy in _LEGACY_DOWNLOAD_TYPES and "preset" not in params:
            params["preset"] = _LEGACY_DOWNLOAD_TYPES[legacy]
        return params


def _tile_or_400(z: int, x: int, y: int) -> TileId:
    try:
        tile = TileId(zoom=z, x=x, y=y)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid_tile")
    if not tile.is_valid():
        raise HTTPException(status_code=400, detail="invalid_tile")
    return tile


def create_app(cfg: Optional[Mapping[str, Any]] = None, downloader: Optional[RegionDownloader] = None) -> FastAPI:
    P = dict(cfg) if cfg is not None else load_config()
    log_cfg = P.get("logging") or {}
    if log_cfg.get("level") or log_cfg.get("file"):
        setup_logging(log_cfg.get("level"), log_cfg.get("file"))
    dl = downloader or RegionDownloader.from_config(P)

    app = FastAPI(title="Offline Tile Downloader API", version="1.0.0")

    # (Optional) CORS for the local map front end
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten as needed
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.downloader = dl

    def _stats() -> Dict[str, Any]:
        stats = getattr(dl.store, "stats", None)
        return stats() if callable(stats) else {}

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "tiles": _stats(),
            "delay_ms": dl.policy.delay_ms,
            "max_zoom": dl.max_zoom,
        }

    @app.get("/stats")
    def stats():
        return {"tiles": _stats()}

    @app.get("/presets")
    def presets():
        return {
            name: {
                "description": p.description,
                "bounds": p.box.as_dict(),
                "min_zoom": p.min_zoom,
                "max_zoom": p.max_zoom,
            }
            for name, p in sorted(dl.presets.items())
        }

    @app.post("/download")
    def download(body: DownloadBody):
        """
        Download a region into the cache and return the run summary.

        Runs synchronously in the worker thread; concurrent calls are
        separate runs sharing only the cache store.
        """
        try:
            request = dl.build_request(body.to_params())
            report = dl.download_region(request)
        except UnknownPresetError as e:
            return JSONResponse({"success": False, "error": "unknown_preset", "detail": str(e)}, status_code=404)
        except InvalidRequestError as e:
            return JSONResponse({"success": False, "error": "invalid_request", "detail": str(e)}, status_code=400)
        except StorageError as e:
            partial = e.report.to_dict(*dl.report_limits) if e.report is not None else None
            return JSONResponse(
                {"success": False, "error": "storage_error", "detail": str(e), "partial": partial},
                status_code=507,
            )
        return dl.summarize(request, report)

    @app.get("/tiles/{z}/{x}/{y}.png")
    def tile_png(z: int, x: int, y: int):
        """Serve a cached tile for offline rendering."""
        tile = _tile_or_400(z, x, y)
        read = getattr(dl.store, "read", None)
        data = read(tile) if callable(read) else None
        if data is None:
            raise HTTPException(status_code=404, detail="tile_not_cached")
        return Response(content=data, media_type="image/png", headers={"Cache-Control": "public, max-age=86400"})

    @app.get("/tiles/{z}/{x}/{y}/meta")
    def tile_meta(z: int, x: int, y: int):
        tile = _tile_or_400(z, x, y)
        c = tile_center(tile)
        return {
            "z": tile.zoom,
            "x": tile.x,
            "y": tile.y,
            "cached": dl.store.exists(tile),
            "bounds": tile_bounds(tile).as_dict(),
            "center": {"lat": c.lat, "lon": c.lon},
        }

    return app


app = create_app()


# -------- local dev entrypoint --------
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
