"""
Offline tile downloader test suite

Structure:
- unit/: tile math, region expansion, cache store, tile source, orchestrator
- integration/: HTTP API and command line runs against in-memory / tmp caches
"""
