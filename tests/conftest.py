import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from common.types import TileId


class FakeFetcher:
    """Records every fetch; fails the tiles listed in `fail` (or all with fail_all)."""

    def __init__(self, fail=(), fail_all=False, payload=b"\x89PNG fake tile"):
        self.calls = []
        self.fail = set(fail)
        self.fail_all = fail_all
        self.payload = payload

    def fetch(self, tile: TileId) -> bytes:
        self.calls.append(tile)
        if self.fail_all or tile in self.fail:
            raise ConnectionError(f"boom {tile}")
        return self.payload + tile.path.encode()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def no_sleep():
    calls = []
    return calls.append, calls


@pytest.fixture
def make_fetcher():
    return FakeFetcher
