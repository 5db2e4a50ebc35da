from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from common.errors import StorageError
from common.types import TileId


def tile_key(tile: TileId, ext: str = "png") -> str:
    """Storage key for a tile: "{z}/{x}/{y}.{ext}". Backend independent."""
    return f"{tile.zoom}/{tile.x}/{tile.y}.{ext}"


class TileStore(Protocol):
    """The two operations the orchestrator needs from a cache backend."""

    def exists(self, tile: TileId) -> bool: ...

    def write(self, tile: TileId, data: bytes) -> None: ...


class FileTileStore:
    """
    Tile cache on the local filesystem, TMS-like layout:

        root/
          └─ {z}/
              └─ {x}/
                  └─ {y}.png

    Entries are written once and never modified. Writes go to a temp file in
    the target directory and are renamed into place, so a concurrent
    `exists()` never sees a truncated tile.
    """

    def __init__(self, root: str = "data/tiles", ext: str = "png"):
        self.root = Path(root)
        self.ext = ext

    # -------- public API --------

    def path_for(self, tile: TileId) -> Path:
        return self.root / tile_key(tile, self.ext)

    def exists(self, tile: TileId) -> bool:
        p = self.path_for(tile)
        return p.is_file()

    def write(self, tile: TileId, data: bytes) -> None:
        dest = self.path_for(tile)
        tmp_name: Optional[str] = None
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{tile.y}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, dest)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"cannot write tile {tile} to {dest}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def read(self, tile: TileId) -> Optional[bytes]:
        p = self.path_for(tile)
        try:
            return p.read_bytes()
        except FileNotFoundError:
            return None

    def stats(self) -> Dict[str, object]:
        """Counts of cached tiles, total and per zoom."""
        per_zoom: Dict[int, int] = {}
        if self.root.exists():
            for img in self.root.glob(f"*/*/*.{self.ext}"):
                # Expect .../{z}/{x}/{y}.png
                try:
                    z = int(img.parent.parent.name)
                    int(img.parent.name)
                    int(img.stem)
                except ValueError:
                    continue
                per_zoom[z] = per_zoom.get(z, 0) + 1
        return {
            "zooms": len(per_zoom),
            "tiles": sum(per_zoom.values()),
            "per_zoom": {str(z): per_zoom[z] for z in sorted(per_zoom)},
        }


class MemoryTileStore:
    """Dict-backed store keyed by tile_key(); handy for tests and dry runs."""

    def __init__(self, ext: str = "png"):
        self.ext = ext
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def exists(self, tile: TileId) -> bool:
        with self._lock:
            return tile_key(tile, self.ext) in self._data

    def write(self, tile: TileId, data: bytes) -> None:
        with self._lock:
            self._data[tile_key(tile, self.ext)] = bytes(data)

    def read(self, tile: TileId) -> Optional[bytes]:
        with self._lock:
            return self._data.get(tile_key(tile, self.ext))

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
