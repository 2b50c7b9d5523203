import pandas as pd
import pytest

from bfpower.config import DesignGrid
from bfpower.tasks.replication import ContextTaskReplication, make_dataset
from bfpower.types import DGPParameters


@pytest.fixture
def landscape() -> pd.DataFrame:
    rows = []
    for n in (20, 30, 40):
        for trials in (50, 100):
            for effect in (0.1, 0.2):
                power = min(1.0, n * trials * effect / 800)
                rows.append(
                    {
                        "n_participants": n,
                        "n_trials": trials,
                        "effect_size": effect,
                        "power_two_sided": power / 2,
                        "power_one_sided": power,
                    }
                )
    return pd.DataFrame(rows)


@pytest.fixture
def fitted(fast_handle, landscape) -> ContextTaskReplication:
    task = ContextTaskReplication(model_handle=fast_handle)
    task.landscape_ = landscape
    task.fitted = True
    return task


def test_make_dataset():
    grid = DesignGrid((10, 20), (5,), (0.1,), 3)
    assert len(make_dataset(grid)) == grid.size


def test_predictions_need_fit(fast_handle):
    task = ContextTaskReplication(model_handle=fast_handle)
    with pytest.raises(ValueError):
        task.predict_n(effect_size=0.2, n_trials=100)


def test_predict_n(fitted):
    # power = n * 100 * 0.2 / 800 >= 0.8 needs n >= 32
    assert fitted.predict_n(effect_size=0.2, n_trials=100, power=0.8) == 40
    assert fitted.predict_n(effect_size=0.2, n_trials=100, power=0.5) == 20
    assert fitted.predict_n(effect_size=0.1, n_trials=50, power=0.8) is None
    assert (
        fitted.predict_n(
            effect_size=0.2, n_trials=100, power=0.5, rule="two_sided"
        )
        == 40
    )


def test_predict_trials(fitted):
    assert fitted.predict_trials(effect_size=0.2, n_participants=40, power=0.5) == 50


def test_predict_mde(fitted):
    assert fitted.predict_mde(n_participants=40, n_trials=100, power=0.5) == 0.1
    assert fitted.predict_mde(n_participants=20, n_trials=50, power=0.9) is None


def test_unknown_rule(fitted):
    with pytest.raises(ValueError):
        fitted.predict_mde(n_participants=40, n_trials=100, rule="bayes")


def test_fit_from_grid(fast_handle):
    task = ContextTaskReplication(
        model_handle=fast_handle,
        dgp_params=DGPParameters(n_participants=8, n_trials=10),
    )
    task.fit(DesignGrid((6,), (10,), (0.0, 0.4), 3))

    assert task.fitted
    assert len(task.landscape_) == 2
    assert (task.landscape_["n_attempted"] == 3).all()
