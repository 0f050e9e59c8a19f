from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from aoa_engine.errors import InvalidInput
from aoa_engine.folds import random_folds, spatial_folds
from aoa_engine.models.landcover import LandCoverConfig, LandCoverModel


@pytest.fixture
def toy():
    rng = np.random.default_rng(0)
    X = pd.DataFrame(rng.normal(size=(120, 3)), columns=["signal", "noise1", "noise2"])
    y = (X["signal"] > 0).astype(int).to_numpy()
    groups = np.repeat(np.arange(12), 10)
    return X, y, groups


def test_fit_predict_evaluate(toy):
    X, y, _ = toy
    model = LandCoverModel(LandCoverConfig(n_estimators=30)).fit(X, y)
    assert model.classes_ == [0, 1]
    metrics = model.evaluate(X, y)
    assert metrics["accuracy"] > 0.95
    assert -1.0 <= metrics["kappa"] <= 1.0
    assert set(metrics["f1_per_class"]) == {"0", "1"}
    assert np.array(metrics["confusion_matrix"]).sum() == len(y)


def test_cross_validate_returns_out_of_fold_predictions(toy):
    X, y, groups = toy
    model = LandCoverModel(LandCoverConfig(n_estimators=30))
    rnd = model.cross_validate(X, y, random_folds(len(y), 4, seed=1))
    sp = model.cross_validate(X, y, spatial_folds(groups, 4, seed=1))
    for rep in (rnd, sp):
        assert rep["n_folds"] == 4
        assert len(rep["oof_predictions"]) == len(y)
        assert sum(f["n"] for f in rep["per_fold"]) == len(y)
        assert 0.0 <= rep["accuracy"] <= 1.0
    assert model.pipeline_ is None


def test_cross_validate_rejects_bad_folds(toy):
    X, y, _ = toy
    model = LandCoverModel(LandCoverConfig(n_estimators=5))
    with pytest.raises(InvalidInput):
        model.cross_validate(X, y, np.zeros(len(y), dtype=int))
    with pytest.raises(InvalidInput):
        model.cross_validate(X, y, [0, 1])


@pytest.mark.parametrize("kind", ["model", "permutation"])
def test_feature_importance_favours_signal(toy, kind):
    X, y, _ = toy
    model = LandCoverModel(LandCoverConfig(n_estimators=50, importance=kind, permutation_repeats=3)).fit(X, y)
    imp = model.feature_importance(X, y)
    assert list(imp) == ["signal", "noise1", "noise2"]
    assert all(v >= 0 for v in imp.values())
    assert imp["signal"] == max(imp.values())


def test_permutation_importance_needs_data(toy):
    X, y, _ = toy
    model = LandCoverModel(LandCoverConfig(n_estimators=5, importance="permutation")).fit(X, y)
    with pytest.raises(InvalidInput):
        model.feature_importance()


def test_save_load_roundtrip(tmp_path: Path, toy):
    X, y, _ = toy
    model = LandCoverModel(LandCoverConfig(n_estimators=10)).fit(X, y)
    path = tmp_path / "model.joblib"
    model.save(str(path))
    loaded = LandCoverModel.load(str(path))
    assert loaded.feature_names_in_ == ["signal", "noise1", "noise2"]
    assert np.array_equal(loaded.predict(X.to_numpy()), model.predict(X))


def test_unfitted_and_unknown_importance():
    with pytest.raises(RuntimeError):
        LandCoverModel().predict(np.zeros((1, 2)))
    with pytest.raises(InvalidInput):
        LandCoverModel(LandCoverConfig(importance="shap"))


def test_model_registry():
    from aoa_engine.models import AOAEstimator, create_model, list_models

    assert {"aoa", "landcover"} <= set(list_models())
    est = create_model("AOA", {"threshold_method": "quantile", "bogus": 1})
    assert isinstance(est, AOAEstimator) and est.config.threshold_method == "quantile"
    rf = create_model("rf_classifier", {"n_estimators": 7})
    assert isinstance(rf, LandCoverModel) and rf.cfg.n_estimators == 7
    with pytest.raises(KeyError):
        create_model("gnn")
