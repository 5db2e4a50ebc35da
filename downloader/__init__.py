"""
Tile downloader — fills the offline cache

- tile_store: {z}/{x}/{y}.png filesystem cache with atomic writes
- tile_source: HTTP tile fetcher (OSM by default, identifying User-Agent)
- orchestrator: sequential, throttled download runs -> RunReport
- server: FastAPI surface (/download, /tiles/{z}/{x}/{y}.png, /stats, /presets, /health)
- service: command line entry point
"""
