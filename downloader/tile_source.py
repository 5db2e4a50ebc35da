from __future__ import annotations

"""
Remote slippy-map tile source (OpenStreetMap by default).

OSM tile usage policy:
- Every request must carry an identifying User-Agent; anonymous/default
  library agents get blocked.
- Bulk downloading must be throttled; the orchestrator owns the delay,
  this class only performs one GET per call.

Usage:
    src = TileSource(user_agent="LocalMapApp/1.0")
    data = src.fetch(TileId(13, 6985, 3172))   # PNG bytes or TileFetchError
"""

import io
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from common.errors import TileFetchError
from common.logging_setup import get_logger
from common.types import TileId


log = get_logger("downloader.source")

OSM_URL_TEMPLATE = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"


class TileSource:
    def __init__(
        self,
        url_template: str = OSM_URL_TEMPLATE,
        user_agent: str = "LocalMapApp/1.0",
        timeout: float = 10.0,
        verify_image: bool = False,
        session: Optional[requests.Session] = None,
    ):
        """
        Params:
            url_template: URL with {z}/{x}/{y} placeholders
            user_agent: identifying client string sent with every request
            timeout: per-request timeout in seconds
            verify_image: reject bodies Pillow cannot identify as an image
            session: optional requests.Session for connection reuse
        """
        if not user_agent:
            raise ValueError("An identifying user_agent is required by tile servers.")
        for ph in ("{z}", "{x}", "{y}"):
            if ph not in url_template:
                raise ValueError(f"url_template is missing {ph}: {url_template}")
        self.url_template = url_template
        self.user_agent = user_agent
        self.timeout = float(timeout)
        self.verify_image = verify_image
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    # ----------------------------
    # Public API
    # ----------------------------
    def build_url(self, tile: TileId) -> str:
        """Tile URL (no request performed)."""
        return self.url_template.format(z=tile.zoom, x=tile.x, y=tile.y)

    def fetch(self, tile: TileId) -> bytes:
        """
        GET one tile and return its raw bytes.

        Raises TileFetchError on transport errors, non-2xx status, an empty
        body, or (with verify_image) a body that is not an image.
        """
        url = self.build_url(tile)
        log.debug("GET %s", url)
        try:
            r = self.session.get(url, timeout=self.timeout, headers={"User-Agent": self.user_agent})
        except requests.RequestException as e:
            raise TileFetchError(tile, f"request failed: {e}") from e

        if not (200 <= r.status_code < 300):
            raise TileFetchError(tile, f"HTTP error status {r.status_code}", status=r.status_code)
        data = r.content
        if not data:
            raise TileFetchError(tile, "empty response body", status=r.status_code)
        if self.verify_image:
            self._check_image(tile, data)
        return data

    # ----------------------------
    # Helpers
    # ----------------------------
    @staticmethod
    def _check_image(tile: TileId, data: bytes) -> None:
        # Some servers answer 200 with an HTML error page
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise TileFetchError(tile, f"body is not a valid image: {e}") from e
