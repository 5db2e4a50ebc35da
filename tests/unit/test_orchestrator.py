"""
Unit tests for the download orchestrator
"""

import threading
from unittest.mock import Mock

import pytest

from common.errors import InvalidRequestError, StorageError
from common.types import BoundingBox, BoundingBoxRequest, GeoPoint, RadiusRequest, TileId
from downloader.orchestrator import DownloadPolicy, RegionDownloader, download_region, run_download
from downloader.tile_store import FileTileStore, MemoryTileStore
from region.expander import expand_multi_zoom

SEOUL = GeoPoint(37.5665, 126.9780)


def _request(radius=1, lo=12, hi=13):
    return RadiusRequest(center=SEOUL, radius=radius, min_zoom=lo, max_zoom=hi)


class FlakyStore(MemoryTileStore):
    """Write fails with OSError (disk full) once `limit` tiles are stored."""

    def __init__(self, limit):
        super().__init__()
        self.limit = limit

    def write(self, tile, data):
        if len(self) >= self.limit:
            raise OSError(28, "No space left on device")
        super().write(tile, data)


class UnreadableStore(MemoryTileStore):
    """Existence check fails the way Path.is_file does on an unreadable cache dir."""

    def exists(self, tile):
        raise PermissionError(13, "Permission denied")


class TestRunDownload:
    def test_downloads_in_order_and_records(self, make_fetcher, no_sleep):
        sleep, slept = no_sleep
        tiles = expand_multi_zoom(_request())
        store, fetcher = MemoryTileStore(), make_fetcher()
        report = run_download(tiles, store, fetcher, DownloadPolicy(delay_ms=150), sleep=sleep)
        assert fetcher.calls == tiles
        assert report.downloaded == tiles
        assert report.failed == []
        assert report.total_considered == len(tiles) == 18
        assert report.skipped == 0
        assert all(store.read(t) == fetcher.payload + t.path.encode() for t in tiles)

    def test_fixed_delay_after_each_success_only(self, make_fetcher, no_sleep):
        sleep, slept = no_sleep
        tiles = expand_multi_zoom(_request(radius=1, lo=13, hi=13))
        fetcher = make_fetcher(fail={tiles[0], tiles[4]})
        report = run_download(tiles, MemoryTileStore(), fetcher, DownloadPolicy(delay_ms=150), sleep=sleep)
        assert len(report.downloaded) == 7
        assert slept == [0.15] * 7

    def test_zero_delay_never_sleeps(self, make_fetcher, no_sleep):
        sleep, slept = no_sleep
        run_download(expand_multi_zoom(_request()), MemoryTileStore(), make_fetcher(), DownloadPolicy(delay_ms=0), sleep=sleep)
        assert slept == []

    def test_second_run_is_all_skipped(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        store = MemoryTileStore()
        tiles = expand_multi_zoom(_request())
        first = run_download(tiles, store, make_fetcher(), sleep=sleep)
        fetcher = make_fetcher()
        second = run_download(tiles, store, fetcher, sleep=sleep)
        assert len(first.downloaded) == len(tiles)
        assert second.downloaded == []
        assert second.skipped == second.total_considered == len(tiles)
        assert fetcher.calls == []
        assert not second.needs_rerun

    def test_every_fetch_fails_without_run_error(self, make_fetcher, no_sleep):
        sleep, slept = no_sleep
        tiles = expand_multi_zoom(_request())
        report = run_download(tiles, MemoryTileStore(), make_fetcher(fail_all=True), sleep=sleep)
        assert report.downloaded == []
        assert len(report.failed) == report.total_considered == len(tiles)
        assert report.failed == tiles
        assert report.needs_rerun
        assert slept == []

    def test_fetcher_returning_nothing_is_a_failure(self, no_sleep):
        sleep, _ = no_sleep
        fetcher = Mock()
        fetcher.fetch.return_value = b""
        report = run_download([TileId(1, 0, 0)], MemoryTileStore(), fetcher, sleep=sleep)
        assert report.failed == [TileId(1, 0, 0)]

    def test_invalid_tiles_are_never_fetched(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        fetcher = make_fetcher()
        tiles = [TileId(1, 2, 0), TileId(1, 0, -1), TileId(1, 1, 1)]
        report = run_download(tiles, MemoryTileStore(), fetcher, sleep=sleep)
        assert fetcher.calls == [TileId(1, 1, 1)]
        assert report.total_considered == 1

    def test_accepts_generators(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        report = run_download((TileId(2, x, 0) for x in range(4)), MemoryTileStore(), make_fetcher(), sleep=sleep)
        assert len(report.downloaded) == 4

    def test_storage_error_is_terminal_and_keeps_progress(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        store = FlakyStore(limit=2)
        tiles = expand_multi_zoom(_request())
        fetcher = make_fetcher()
        with pytest.raises(StorageError) as ei:
            run_download(tiles, store, fetcher, sleep=sleep)
        partial = ei.value.report
        assert partial is not None
        assert partial.downloaded == tiles[:2]
        assert len(fetcher.calls) == 3
        assert all(store.exists(t) for t in tiles[:2])

    def test_storage_abort_tile_is_failed_not_skipped(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        tiles = expand_multi_zoom(_request())
        with pytest.raises(StorageError) as ei:
            run_download(tiles, FlakyStore(limit=2), make_fetcher(), sleep=sleep)
        partial = ei.value.report
        assert partial.failed == [tiles[2]]
        assert partial.skipped == 0
        assert partial.needs_rerun
        assert partial.to_dict()["needs_rerun"] is True

    def test_unreadable_store_raises_storage_error(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        fetcher = make_fetcher()
        with pytest.raises(StorageError) as ei:
            run_download([TileId(1, 0, 0), TileId(1, 1, 0)], UnreadableStore(), fetcher, sleep=sleep)
        assert isinstance(ei.value.__cause__, PermissionError)
        partial = ei.value.report
        assert partial.total_considered == 1
        assert partial.failed == [TileId(1, 0, 0)]
        assert partial.skipped == 0
        assert partial.needs_rerun
        assert fetcher.calls == []

    def test_file_store_storage_error_carries_report(self, tmp_path, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"")
        with pytest.raises(StorageError) as ei:
            run_download([TileId(1, 0, 0)], FileTileStore(str(blocker)), make_fetcher(), sleep=sleep)
        assert ei.value.report.total_considered == 1

    def test_cancel_stops_before_next_request(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        stop = threading.Event()
        fetcher = make_fetcher()
        original = fetcher.fetch

        def fetch_then_cancel(tile):
            data = original(tile)
            if len(fetcher.calls) == 2:
                stop.set()
            return data

        fetcher.fetch = fetch_then_cancel
        store = MemoryTileStore()
        tiles = expand_multi_zoom(_request())
        report = run_download(tiles, store, fetcher, stop_event=stop, sleep=sleep)
        assert report.cancelled
        assert report.downloaded == tiles[:2]
        assert len(store) == 2
        assert report.needs_rerun


class TestDownloadRegion:
    def test_inverted_zoom_touches_nothing(self):
        store, fetcher = Mock(), Mock()
        with pytest.raises(InvalidRequestError):
            download_region(_request(lo=14, hi=12), store, fetcher)
        store.exists.assert_not_called()
        store.write.assert_not_called()
        fetcher.fetch.assert_not_called()

    def test_reports_zoom_range(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        report = download_region(_request(radius=0, lo=10, hi=12), MemoryTileStore(), make_fetcher(), sleep=sleep)
        assert report.zoom_range == (10, 12)
        assert [t.zoom for t in report.downloaded] == [10, 11, 12]
        assert report.to_dict()["zoom_levels"] == "10-12"

    def test_storage_error_report_keeps_zoom_range(self, make_fetcher, no_sleep):
        sleep, _ = no_sleep
        with pytest.raises(StorageError) as ei:
            download_region(_request(radius=0, lo=10, hi=12), FlakyStore(limit=0), make_fetcher(), sleep=sleep)
        partial = ei.value.report
        assert partial.zoom_range == (10, 12)
        out = partial.to_dict()
        assert out["zoom_levels"] == "10-12"
        assert out["total_tiles"] == 1
        assert out["skipped"] == 0
        assert out["needs_rerun"] is True

    def test_policy_validation(self):
        with pytest.raises(ValueError):
            DownloadPolicy(delay_ms=-1)


class TestRegionDownloader:
    def _dl(self, fetcher, **kw):
        return RegionDownloader(MemoryTileStore(), fetcher, DownloadPolicy(delay_ms=150), sleep=lambda s: None, **kw)

    def test_point_defaults(self, make_fetcher):
        req = self._dl(make_fetcher()).build_request({"lat": 37.5665, "lng": 126.978})
        assert isinstance(req, RadiusRequest)
        assert (req.radius, req.min_zoom, req.max_zoom) == (2, 10, 16)

    def test_single_zoom_fallback(self, make_fetcher):
        req = self._dl(make_fetcher()).build_request({"lat": 37.5, "lon": 127.0, "zoom": 14, "radius": 0})
        assert (req.min_zoom, req.max_zoom, req.radius) == (14, 14, 0)

    def test_zoom_zero_is_not_treated_as_missing(self, make_fetcher):
        req = self._dl(make_fetcher()).build_request({"lat": 1.0, "lon": 1.0, "min_zoom": 0, "max_zoom": 0})
        assert (req.min_zoom, req.max_zoom) == (0, 0)

    def test_bounding_box(self, make_fetcher):
        req = self._dl(make_fetcher()).build_request(
            {"north": 37.6, "south": 37.5, "east": 127.1, "west": 127.0, "min_zoom": 12, "max_zoom": 13}
        )
        assert isinstance(req, BoundingBoxRequest)
        assert req.box == BoundingBox(north=37.6, south=37.5, east=127.1, west=127.0)

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"north": 37.6, "south": 37.5},
            {"lat": 95.0, "lon": 0.0},
            {"lat": "abc", "lon": 0.0},
            {"lat": 1.0, "lon": 1.0, "radius": "two"},
        ],
    )
    def test_bad_params(self, make_fetcher, params):
        with pytest.raises(InvalidRequestError):
            self._dl(make_fetcher()).build_request(params)

    def test_preset_uses_its_own_delay(self, make_fetcher):
        dl = self._dl(make_fetcher())
        req = dl.build_request({"preset": "seoul", "min_zoom": 10, "max_zoom": 10})
        assert dl.policy_for(req).delay_ms == 100
        dl.honor_preset_delay = False
        assert dl.policy_for(req).delay_ms == 150
        assert dl.policy_for(_request()).delay_ms == 150

    def test_summary_truncates_lists(self, make_fetcher):
        dl = self._dl(make_fetcher())
        req = _request(radius=2, lo=13, hi=14)
        report = dl.download_region(req)
        out = dl.summarize(req, report)
        assert out["success"] is True
        assert out["downloaded"] == 50
        assert len(out["downloaded_tiles"]) == 20
        assert out["downloaded_tiles"][0] == "13/6983/3170"
        assert out["failed_tiles"] == []

    def test_preset_summary(self, make_fetcher):
        dl = self._dl(make_fetcher())
        req = dl.build_request({"preset": "seoul", "min_zoom": 12, "max_zoom": 12})
        out = dl.summarize(req, dl.download_region(req))
        assert out["preset"] == "seoul"
        assert out["bounds"]["north"] == 37.701
        assert len(out["downloaded_tiles"]) <= 50
