"""Tests for startup configuration parsing and parameter snapshots."""
from __future__ import annotations

import json

import pytest

from rov_vision_system.config.settings import SystemConfig
from rov_vision_system.core.config_store import InMemoryConfigStore, Keys, PipelineParameters
from rov_vision_system.exceptions import ConfigurationError


def _valid():
    return {
        "team": 1234,
        "ntmode": "client",
        "cameras": [
            {"name": "vision_left_stereo", "path": "/dev/video0"},
            {"name": "right_stereo", "path": "/dev/video1", "fps": 15},
        ],
    }


class TestSystemConfig:
    def test_parses_cameras(self):
        config = SystemConfig.from_dict(_valid())
        assert config.team == 1234
        assert not config.server
        assert [c.name for c in config.cameras] == ["vision_left_stereo", "right_stereo"]
        assert config.cameras[1].fps == 15
        assert config.output_names() == ["vision_left_stereoProcessed", "right_stereoProcessed"]

    def test_server_mode(self):
        data = _valid()
        data["ntmode"] = "Server"
        assert SystemConfig.from_dict(data).server

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("team"),
        lambda d: d.update(team="abc"),
        lambda d: d.update(ntmode="peer"),
        lambda d: d.pop("cameras"),
        lambda d: d["cameras"].append({"path": "/dev/video2"}),
        lambda d: d["cameras"].append({"name": "nopath"}),
    ])
    def test_invalid_documents(self, mutate):
        data = _valid()
        mutate(data)
        with pytest.raises(ConfigurationError):
            SystemConfig.from_dict(data)

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError):
            SystemConfig.from_dict([])

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "frc.json"
        path.write_text(json.dumps(_valid()))
        assert len(SystemConfig.load_from_file(str(path)).cameras) == 2

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            SystemConfig.load_from_file(str(tmp_path / "nope.json"))


class TestPipelineParameters:
    def test_refresh_reads_every_key(self):
        store = InMemoryConfigStore({Keys.HMN: 10, Keys.VMX: 200, Keys.TUNING_MODE: True,
                                     Keys.NN_MIN_CONFIDENCE: 0.7})
        params = PipelineParameters()
        params.refresh(store)
        assert params.hsv_lower == (10, 1, 1)
        assert params.hsv_upper == (255, 255, 200)
        assert params.tuning_mode
        assert params.confidence_threshold == 0.7

    def test_snapshot_is_independent(self):
        params = PipelineParameters()
        snapshot = params.snapshot()
        params.hsv_thresholds[0] = 99
        params.set_target(5, 6)
        assert snapshot.hsv_thresholds[0] == 1
        assert (snapshot.target_center_x, snapshot.target_center_y) == (0, 0)
