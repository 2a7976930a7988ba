from collections import Counter

import numpy as np
import pytest

from dronerf.dataset import (
    FeatureTable,
    binary_labels,
    build_feature_table,
    build_feature_table_from_rasters,
    discover_corpus,
    load_feature_table,
    stratified_partition,
)
from dronerf.errors import ConfigurationError

from conftest import write_corpus


def _table(counts, size=2, seed=0):
    labels = np.array([c for c, n in counts.items() for _ in range(n)], dtype=str)
    X = np.random.default_rng(seed).random((labels.size, size * size))
    ids = [f"r{i}" for i in range(labels.size)]
    return FeatureTable(X=X, labels=labels, identifiers=ids, class_names=tuple(counts), raster_size=size)


DRONE_RF_COUNTS = {"ar": 50, "bebop": 50, "phantom": 50, "background": 77}


def test_binary_collapse_counts():
    t = _table(DRONE_RF_COUNTS)
    y = t.label_view("binary")
    assert Counter(y.tolist()) == {"drone": 150, "background": 77}
    np.testing.assert_array_equal(t.label_view("multiclass"), t.labels)


def test_binary_split_counts_match_expected():
    y = _table(DRONE_RF_COUNTS).label_view("binary")
    part = stratified_partition(y, 0.25, seed=42)
    tr = Counter(y[part.train_idx].tolist())
    ho = Counter(y[part.holdout_idx].tolist())
    assert abs(tr["drone"] - 113) <= 1 and abs(tr["background"] - 58) <= 1
    assert abs(ho["drone"] - 37) <= 1 and abs(ho["background"] - 19) <= 1


@pytest.mark.parametrize("view", ["binary", "multiclass"])
@pytest.mark.parametrize("seed", [0, 1, 42])
def test_partition_is_stratified_and_disjoint(view, seed):
    y = _table(DRONE_RF_COUNTS).label_view(view)
    part = stratified_partition(y, 0.25, seed)
    assert np.intersect1d(part.train_idx, part.holdout_idx).size == 0
    np.testing.assert_array_equal(np.sort(np.concatenate([part.train_idx, part.holdout_idx])), np.arange(y.size))
    for idx in (part.train_idx, part.holdout_idx):
        for c in set(y.tolist()):
            p_part = np.mean(y[idx] == c)
            p_full = np.mean(y == c)
            assert abs(p_part - p_full) <= 1.0 / idx.size


def test_partition_is_reproducible():
    y = _table(DRONE_RF_COUNTS).labels
    a = stratified_partition(y, 0.25, 42)
    b = stratified_partition(y, 0.25, 42)
    np.testing.assert_array_equal(a.train_idx, b.train_idx)


def test_partition_with_singleton_class_is_fatal():
    with pytest.raises(ConfigurationError):
        stratified_partition(np.array(["a"] * 10 + ["b"]), 0.25, 0)


def test_binary_view_requires_background():
    t = _table({"ar": 3, "bebop": 3})
    with pytest.raises(ConfigurationError):
        t.label_view("binary")
    with pytest.raises(ConfigurationError):
        t.label_view("ternary")


def test_binary_labels_helper():
    np.testing.assert_array_equal(
        binary_labels(["ar", "background", "phantom"]), ["drone", "background", "drone"]
    )


def test_table_schema_is_validated():
    with pytest.raises(ConfigurationError):
        FeatureTable(X=np.zeros((2, 5)), labels=["a", "b"], identifiers=["1", "2"],
                     class_names=("a", "b"), raster_size=2)
    with pytest.raises(ConfigurationError):
        FeatureTable(X=np.zeros((2, 4)), labels=["a", "zz"], identifiers=["1", "2"],
                     class_names=("a", "b"), raster_size=2)


def test_empty_declared_class_is_fatal():
    t = _table({"ar": 3, "background": 0})
    with pytest.raises(ConfigurationError, match="background"):
        t.check_complete()


def test_build_feature_table(corpus, small_cfg, tmp_path):
    raster_dir = tmp_path / "rasters"
    t = build_feature_table(corpus, small_cfg, raster_dir=raster_dir)
    assert t.X.shape == (48, 256)
    assert t.class_counts() == {"ar": 12, "bebop": 12, "phantom": 12, "background": 12}
    assert t.failures == []
    assert t.X.min() >= 0.0 and t.X.max() <= 1.0
    assert len(list((raster_dir / "bebop").glob("*.png"))) == 12
    assert t.identifiers[0] == "ar_000"


def test_bad_recordings_are_skipped_and_logged(corpus, small_cfg):
    (corpus / "phantom" / "broken.csv").write_text("1.0,2.0,oops\n")
    (corpus / "ar" / "nan.csv").write_text("1.0,nan,2.0\n")
    t = build_feature_table(corpus, small_cfg)
    assert len(t) == 48
    assert sorted(f.identifier for f in t.failures) == ["broken", "nan"]
    assert all(f.reason for f in t.failures)


def test_short_recordings_skipped_when_padding_disabled(tmp_path, small_cfg):
    root = write_corpus(tmp_path / "c", {"ar": 3, "background": 3}, n_samples=512)
    np.savetxt(root / "ar" / "short.csv", np.ones((1, 10)), delimiter=",")
    cfg = small_cfg.with_overrides(spectrogram=dict(pad_short=False), classes=["ar", "background"])
    t = build_feature_table(root, cfg)
    assert [f.identifier for f in t.failures] == ["short"]

    padded = build_feature_table(root, cfg.with_overrides(spectrogram=dict(pad_short=True)))
    assert padded.failures == [] and len(padded) == 7


def test_class_with_only_bad_files_is_fatal(tmp_path, small_cfg):
    root = write_corpus(tmp_path / "c", {"ar": 3})
    (root / "background").mkdir()
    (root / "background" / "x.csv").write_text("garbage\n")
    cfg = small_cfg.with_overrides(classes=["ar", "background"])
    with pytest.raises(ConfigurationError, match="background"):
        build_feature_table(root, cfg)


def test_missing_class_directory_is_fatal(tmp_path, small_cfg):
    root = write_corpus(tmp_path / "c", {"ar": 3})
    with pytest.raises(ConfigurationError, match="bebop"):
        discover_corpus(root, ["ar", "bebop"])


def test_feature_table_round_trip(corpus, small_cfg, tmp_path):
    t = build_feature_table(corpus, small_cfg)
    paths = t.save(tmp_path / "out")

    from_npz = load_feature_table(paths["npz"])
    np.testing.assert_array_equal(from_npz.X, t.X)
    np.testing.assert_array_equal(from_npz.identifiers, t.identifiers)
    assert from_npz.class_names == t.class_names

    from_csv = load_feature_table(paths["csv"])
    np.testing.assert_allclose(from_csv.X, t.X, atol=1e-6)
    np.testing.assert_array_equal(from_csv.labels, t.labels)
    header = paths["csv"].read_text().splitlines()[0].split(",")
    assert header[0] == "label" and len(header) == 1 + 256


def test_features_from_saved_rasters_match(corpus, small_cfg, tmp_path):
    t = build_feature_table(corpus, small_cfg, raster_dir=tmp_path / "rasters")
    again = build_feature_table_from_rasters(tmp_path / "rasters", small_cfg)
    np.testing.assert_array_equal(again.labels, t.labels)
    np.testing.assert_allclose(again.X, t.X, atol=1e-6)
