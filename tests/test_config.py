import json

import pytest

from dronerf.config import DEFAULT_GRIDS, PipelineConfig, SpectrogramConfig, binary_label
from dronerf.errors import ConfigurationError


def test_defaults():
    cfg = PipelineConfig().validate()
    assert cfg.spectrogram.window_length == 1024
    assert cfg.spectrogram.step == 512
    assert cfg.spectrogram.n_features == 122 * 122
    assert cfg.classes == ("ar", "bebop", "phantom", "background")


def test_overrides_skip_none_and_merge_grids():
    cfg = PipelineConfig().with_overrides(
        spectrogram=dict(raster_size=32, window=None),
        train=dict(grids={"logreg": {"C": [1.0]}}, learners=["logreg"]),
        classes=["x", "background"],
    )
    assert cfg.spectrogram.raster_size == 32
    assert cfg.spectrogram.window == "hamming"
    assert cfg.train.grids["logreg"] == {"C": [1.0]}
    assert cfg.train.grids["rf"] == DEFAULT_GRIDS["rf"]
    assert cfg.train.learners == ("logreg",)
    assert cfg.classes == ("x", "background")


def test_json_round_trip(tmp_path):
    cfg = PipelineConfig().with_overrides(split=dict(seed=3), chunk_size=8)
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps(cfg.to_dict()))
    assert PipelineConfig.from_json(p) == cfg


@pytest.mark.parametrize("bad", [
    {"nope": 1},
    {"spectrogram": {"bogus": 1}},
])
def test_unknown_keys_rejected(bad):
    with pytest.raises(ConfigurationError):
        PipelineConfig.from_dict(bad)


@pytest.mark.parametrize("kw", [
    dict(overlap=1.0),
    dict(window="kaiser"),
    dict(raster_size=1),
    dict(window_s=1e-9),
    dict(amplitude_scale="log2"),
])
def test_invalid_spectrogram_settings(kw):
    with pytest.raises(ConfigurationError):
        SpectrogramConfig(**kw).validate()


def test_invalid_pipeline_settings():
    with pytest.raises(ConfigurationError):
        PipelineConfig().with_overrides(train=dict(n_folds=1)).validate()
    with pytest.raises(ConfigurationError):
        PipelineConfig().with_overrides(split=dict(holdout_fraction=0.0)).validate()
    with pytest.raises(ConfigurationError):
        PipelineConfig().with_overrides(train=dict(learners=["svm"])).validate()
    with pytest.raises(ConfigurationError):
        PipelineConfig().with_overrides(classes=["a", "a"]).validate()


def test_binary_label():
    assert binary_label("background") == "background"
    assert binary_label("phantom") == "drone"
