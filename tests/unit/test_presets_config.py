"""
Unit tests for preset regions and YAML config loading
"""

import pytest

from common.config import DEFAULTS, load_config
from common.errors import InvalidRequestError, UnknownPresetError
from common.types import BoundingBoxRequest
from region.presets import BUILTIN_PRESETS, load_presets, resolve_preset


class TestPresets:
    def test_builtin_seoul(self):
        seoul = BUILTIN_PRESETS["seoul"]
        assert seoul.box.north == 37.701
        assert seoul.box.south == 37.413
        assert seoul.box.east == 127.183
        assert seoul.box.west == 126.764
        assert (seoul.min_zoom, seoul.max_zoom) == (10, 18)
        assert seoul.delay_ms == 100

    def test_resolve_defaults_and_override(self):
        presets = load_presets()
        req = resolve_preset("seoul", presets)
        assert isinstance(req, BoundingBoxRequest)
        assert (req.min_zoom, req.max_zoom, req.preset) == (10, 18, "seoul")
        req = resolve_preset("seoul", presets, min_zoom=11, max_zoom=12)
        assert (req.min_zoom, req.max_zoom) == (11, 12)

    def test_unknown_preset(self):
        with pytest.raises(UnknownPresetError):
            resolve_preset("atlantis", load_presets())

    def test_inverted_override(self):
        with pytest.raises(InvalidRequestError):
            resolve_preset("seoul", load_presets(), min_zoom=15, max_zoom=12)

    def test_config_presets_merge(self):
        cfg = {"presets": {"busan": {"north": 35.3, "south": 35.0, "east": 129.3, "west": 128.9, "max_zoom": 14}}}
        presets = load_presets(cfg)
        assert "seoul" in presets
        assert presets["busan"].box.east == 129.3
        assert presets["busan"].max_zoom == 14
        assert presets["busan"].delay_ms is None

    def test_bad_config_preset(self):
        with pytest.raises(ValueError):
            load_presets({"presets": {"broken": {"north": 1.0}}})


class TestConfig:
    def test_missing_file_returns_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "nope.yaml"))
        assert cfg == DEFAULTS
        cfg["download"]["delay_ms"] = 1
        assert DEFAULTS["download"]["delay_ms"] == 150

    def test_partial_file_is_merged(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("download:\n  delay_ms: 500\nsource:\n  user_agent: TestAgent/2.0\n")
        cfg = load_config(str(p))
        assert cfg["download"]["delay_ms"] == 500
        assert cfg["download"]["default_radius"] == 2
        assert cfg["source"]["user_agent"] == "TestAgent/2.0"
        assert cfg["source"]["url_template"] == DEFAULTS["source"]["url_template"]

    def test_env_path(self, tmp_path, monkeypatch):
        p = tmp_path / "env.yaml"
        p.write_text("tiles:\n  cache_root: /srv/tiles\n")
        monkeypatch.setenv("TILES_CONFIG", str(p))
        assert load_config()["tiles"]["cache_root"] == "/srv/tiles"

    def test_non_mapping_root(self, tmp_path):
        p = tmp_path / "bad.yaml"
        p.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_config(str(p))

    def test_empty_section_keeps_defaults(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("tiles:\nsource: null\ndownload:\n  delay_ms: 0\n")
        cfg = load_config(str(p))
        assert cfg["tiles"] == DEFAULTS["tiles"]
        assert cfg["source"] == DEFAULTS["source"]
        assert cfg["download"]["delay_ms"] == 0

    def test_scalar_section_is_rejected(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("source:\n  user_agent: A/1\ndownload: fast\n")
        with pytest.raises(ValueError, match="'download'"):
            load_config(str(p))

    def test_list_section_is_rejected(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("report: [1, 2]\n")
        with pytest.raises(ValueError, match="'report'"):
            load_config(str(p))

    def test_unparseable_yaml(self, tmp_path):
        p = tmp_path / "params.yaml"
        p.write_text("download: {delay_ms: 1\n")
        with pytest.raises(ValueError, match="cannot parse"):
            load_config(str(p))

