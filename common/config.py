from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/params.yaml"

DEFAULTS: Dict[str, Any] = {
    "tiles": {"cache_root": "data/tiles"},
    "source": {
        "url_template": "https://tile.openstreetmap.org/{z}/{x}/{y}.png",
        # OSM tile usage policy requires an identifying client string
        "user_agent": "LocalMapApp/1.0",
        "timeout_s": 10.0,
        "verify_image": False,
    },
    "download": {
        "delay_ms": 150,
        "default_radius": 2,
        "default_min_zoom": 10,
        "default_max_zoom": 16,
        "max_zoom": 19,
    },
    "report": {"max_downloaded_listed": 20, "max_failed_listed": 10},
    "presets": {},
    # level: DEBUG/INFO/...; file: JSON-lines run log appended next to stdout
    "logging": {"level": None, "file": None},
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any], where: str = "") -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        key = f"{where}{k}"
        if isinstance(out.get(k), dict):
            # an empty section (`tiles:` with nothing under it) keeps the defaults
            if v is None:
                continue
            if not isinstance(v, dict):
                raise ValueError(f"config section '{key}' must be a mapping, got {type(v).__name__}")
            out[k] = _deep_merge(out[k], v, f"{key}.")
        else:
            out[k] = v
    return out


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML params merged over DEFAULTS.
    Path precedence: explicit arg, env TILES_CONFIG, config/params.yaml.
    A missing file is not an error; defaults are returned.
    Unparseable YAML or a section of the wrong shape raises ValueError.
    """
    path = path or os.environ.get("TILES_CONFIG") or DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return copy.deepcopy(DEFAULTS)
    with open(path, "r") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"cannot parse config {path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ValueError(f"config root must be a mapping: {path}")
    return _deep_merge(DEFAULTS, loaded)
