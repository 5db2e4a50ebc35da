from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from common.types import RunReport, TileId


class TileDownloadError(Exception):
    """Base class for every error raised by the tile downloader."""


class InvalidRequestError(TileDownloadError):
    """Region request cannot be expanded into tiles (bad zoom range, coordinates, region)."""


class TileFetchError(TileDownloadError):
    """
    One tile could not be fetched from the remote source.

    Always recovered by the orchestrator: the tile is recorded as failed
    and the run moves on.
    """

    def __init__(self, tile: "TileId", message: str, status: Optional[int] = None):
        super().__init__(f"{tile}: {message}")
        self.tile = tile
        self.status = status


class StorageError(TileDownloadError):
    """
    Cache medium is unwritable. Terminal for the whole run.

    `report` is filled in by the orchestrator with the partial RunReport
    so callers can see what was committed before the failure.
    """

    def __init__(self, message: str, report: Optional["RunReport"] = None):
        super().__init__(message)
        self.report = report


class UnknownPresetError(InvalidRequestError):
    """Named region is not defined."""

    def __init__(self, name: str):
        super().__init__(f"unknown preset region: {name!r}")
        self.name = name
