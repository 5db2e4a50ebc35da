from __future__ import annotations

"""
Command line downloader: fill the local tile cache for a region.

Examples:
  # 5x5 tiles around Seoul City Hall, zooms 12-14
  python -m downloader.service --lat 37.5665 --lon 126.9780 --radius 2 --min-zoom 12 --max-zoom 14

  # Built-in preset, zooms 10-12, stop after 10 minutes
  python -m downloader.service --preset seoul --min-zoom 10 --max-zoom 12 --duration 600

  # Bounding box (N S E W)
  python -m downloader.service --bbox 37.60 37.53 127.03 126.93 --zoom 15
"""

import argparse
import json
import sys
import threading
from typing import Any, Dict, List, Optional

from common.config import load_config
from common.errors import InvalidRequestError, StorageError
from common.logging_setup import get_logger, setup_logging
from downloader.orchestrator import RegionDownloader


log = get_logger("downloader.service")

EXIT_OK = 0
EXIT_FAILED_TILES = 1
EXIT_INVALID = 2
EXIT_STORAGE = 3


def _params_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "preset": args.preset,
        "lat": args.lat,
        "lon": args.lon,
        "radius": args.radius,
        "zoom": args.zoom,
        "min_zoom": args.min_zoom,
        "max_zoom": args.max_zoom,
    }
    if args.bbox:
        params.update(dict(zip(("north", "south", "east", "west"), args.bbox)))
    return {k: v for k, v in params.items() if v is not None}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Download map tiles for offline use.")
    gsrc = ap.add_mutually_exclusive_group(required=True)
    gsrc.add_argument("--preset", help="Named region (see config presets; built-in: seoul)")
    gsrc.add_argument("--lat", type=float, help="Center latitude (with --lon)")
    gsrc.add_argument("--bbox", type=float, nargs=4, metavar=("N", "S", "E", "W"), help="Bounding box in degrees")

    ap.add_argument("--lon", type=float, help="Center longitude (with --lat)")
    ap.add_argument("--radius", type=int, default=None, help="Tile radius around the center tile")
    ap.add_argument("--zoom", type=int, default=None, help="Single zoom level (min = max)")
    ap.add_argument("--min-zoom", type=int, default=None, help="First zoom level")
    ap.add_argument("--max-zoom", type=int, default=None, help="Last zoom level (inclusive)")

    ap.add_argument("--config", default=None, help="YAML params file (default: config/params.yaml)")
    ap.add_argument("--cache-root", default=None, help="Override tiles.cache_root")
    ap.add_argument("--delay-ms", type=int, default=None, help="Pause after each downloaded tile")
    ap.add_argument("--user-agent", default=None, help="Identifying User-Agent for the tile server")
    ap.add_argument("--duration", type=float, default=None, help="Stop before the next request after N seconds")
    ap.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR")
    ap.add_argument("--log-file", default=None, help="Also append JSON log lines to this file")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        cfg = load_config(args.config)
        if args.cache_root:
            cfg["tiles"]["cache_root"] = args.cache_root
        if args.user_agent:
            cfg["source"]["user_agent"] = args.user_agent
        if args.delay_ms is not None:
            cfg["download"]["delay_ms"] = args.delay_ms
        log_cfg = cfg["logging"]
        setup_logging(args.log_level or log_cfg.get("level"), args.log_file or log_cfg.get("file"))
        dl = RegionDownloader.from_config(cfg)
        request = dl.build_request(_params_from_args(args))
    except (InvalidRequestError, ValueError, OSError) as e:
        # bad arguments, bad config, or an unopenable --log-file
        log.error("cannot start run: %s", e)
        return EXIT_INVALID
    if args.delay_ms is not None:
        # explicit flag beats a preset's own delay
        dl.honor_preset_delay = False

    stop = threading.Event()
    timer: Optional[threading.Timer] = None
    if args.duration is not None:
        timer = threading.Timer(float(args.duration), stop.set)
        timer.daemon = True
        timer.start()

    try:
        report = dl.download_region(request, stop_event=stop)
    except InvalidRequestError as e:
        log.error("invalid request: %s", e)
        return EXIT_INVALID
    except StorageError as e:
        log.error("storage error: %s", e)
        if e.report is not None:
            print(json.dumps(e.report.to_dict(*dl.report_limits), indent=2))
        return EXIT_STORAGE
    finally:
        if timer is not None:
            timer.cancel()

    print(json.dumps(dl.summarize(request, report), indent=2))
    return EXIT_FAILED_TILES if report.needs_rerun else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
