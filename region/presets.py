from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from common.errors import InvalidRequestError, UnknownPresetError
from common.types import BoundingBox, BoundingBoxRequest


@dataclass(frozen=True)
class Preset:
    """A named bounding box with the zoom range and delay it is normally fetched with."""
    name: str
    box: BoundingBox
    description: str = ""
    min_zoom: int = 10
    max_zoom: int = 18
    delay_ms: Optional[int] = None


BUILTIN_PRESETS: Dict[str, Preset] = {
    # Greater Seoul with margin: Uijeongbu (N), Anyang/Gwacheon (S), Guri/Hanam (E), Bucheon/Gimpo (W)
    "seoul": Preset(
        name="seoul",
        box=BoundingBox(north=37.701, south=37.413, east=127.183, west=126.764),
        description="Greater Seoul",
        min_zoom=10,
        max_zoom=18,
        delay_ms=100,
    ),
}


def _preset_from_config(name: str, raw: Mapping[str, Any]) -> Preset:
    try:
        box = BoundingBox(
            north=float(raw["north"]),
            south=float(raw["south"]),
            east=float(raw["east"]),
            west=float(raw["west"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"preset {name!r}: needs numeric north/south/east/west ({e})") from e
    return Preset(
        name=name,
        box=box,
        description=str(raw.get("description", "")),
        min_zoom=int(raw.get("min_zoom", 10)),
        max_zoom=int(raw.get("max_zoom", 18)),
        delay_ms=int(raw["delay_ms"]) if raw.get("delay_ms") is not None else None,
    )


def load_presets(config: Optional[Mapping[str, Any]] = None) -> Dict[str, Preset]:
    """Built-ins overlaid with `presets:` from config (config wins on name clash)."""
    presets = dict(BUILTIN_PRESETS)
    for name, raw in ((config or {}).get("presets") or {}).items():
        presets[str(name)] = _preset_from_config(str(name), raw or {})
    return presets


def resolve_preset(
    name: str,
    presets: Mapping[str, Preset],
    min_zoom: Optional[int] = None,
    max_zoom: Optional[int] = None,
) -> BoundingBoxRequest:
    """Turn a preset name (+ optional zoom override) into a bounding-box request."""
    preset = presets.get(name)
    if preset is None:
        raise UnknownPresetError(name)
    lo = preset.min_zoom if min_zoom is None else int(min_zoom)
    hi = preset.max_zoom if max_zoom is None else int(max_zoom)
    if lo > hi:
        raise InvalidRequestError(f"inverted zoom range {lo}-{hi} for preset {name!r}")
    return BoundingBoxRequest(box=preset.box, min_zoom=lo, max_zoom=hi, preset=name)
