import numpy as np
import pandas as pd
import pytest

from bfpower.dgps import (
    build_correlation_matrix,
    build_covariance,
    draw_random_effects,
    dgps,
    simulate_trials,
    summarise_trials,
)
from bfpower.types import DGPParameters, FixedEffects, RandomEffectSDs
from bfpower.utils import betas_to_interaction


@pytest.fixture
def dgp_params() -> DGPParameters:
    return DGPParameters(
        n_participants=12,
        n_trials=7,
        fixed_effects=FixedEffects(0.1, 0.3, 0.25, 0.2),
        random_effect_sds=RandomEffectSDs(0.5, 0.2, 0.2, 0.1),
        correlations=(0.2, 0.0, -0.1, 0.3, 0.0, 0.1),
    )


@pytest.fixture
def noiseless() -> RandomEffectSDs:
    return RandomEffectSDs(0.0, 0.0, 0.0, 0.0)


def test_registered():
    assert dgps.get("dgp::binomial_glmm") is simulate_trials


@pytest.mark.parametrize(
    ["n_participants", "n_trials"], [(1, 1), (12, 7), (40, 25)]
)
def test_shape_and_ranges(dgp_params, n_participants, n_trials):
    params = DGPParameters(
        n_participants=n_participants,
        n_trials=n_trials,
        fixed_effects=dgp_params.fixed_effects,
        random_effect_sds=dgp_params.random_effect_sds,
        correlations=dgp_params.correlations,
    )
    df = simulate_trials(params, rng=3)

    assert len(df) == n_participants * n_trials * 4
    assert set(df["response"].unique()) <= {0, 1}
    assert ((df["probability"] > 0) & (df["probability"] < 1)).all()
    assert df["participant"].nunique() == n_participants
    # every participant sees n_trials trials in each of the four cells
    counts = df.groupby(["participant", "context", "task"]).size()
    assert len(counts) == n_participants * 4
    assert (counts == n_trials).all()


def test_participant_ids_are_padded():
    df = simulate_trials(DGPParameters(n_participants=12, n_trials=1), rng=0)
    assert sorted(df["participant"].unique())[:2] == ["S01", "S02"]


def test_same_seed_same_data(dgp_params):
    pd.testing.assert_frame_equal(
        simulate_trials(dgp_params, rng=42), simulate_trials(dgp_params, rng=42)
    )


def test_different_seeds_differ(dgp_params):
    a = simulate_trials(dgp_params, rng=1)["response"].to_numpy()
    b = simulate_trials(dgp_params, rng=2)["response"].to_numpy()
    assert not np.array_equal(a, b)


def test_contrast_codes(dgp_params):
    df = simulate_trials(dgp_params, rng=5)
    assert (df.loc[df["context"] == "al", "X_context"] == -0.5).all()
    assert (df.loc[df["context"] == "ar", "X_context"] == 0.5).all()
    assert (df.loc[df["task"] == "contrasting", "X_task"] == 0.5).all()
    assert (df.loc[df["task"] == "matching", "X_task"] == -0.5).all()


def test_noiseless_linear_predictor(noiseless):
    fixed = FixedEffects(0.1, 0.3, 0.25, 0.2)
    df = simulate_trials(
        DGPParameters(
            n_participants=3,
            n_trials=2,
            fixed_effects=fixed,
            random_effect_sds=noiseless,
        ),
        rng=0,
    )
    expected = (
        fixed.intercept
        + fixed.context * df["X_context"]
        + fixed.task * df["X_task"]
        + fixed.interaction * df["X_context"] * df["X_task"]
    )
    np.testing.assert_allclose(df["linear_predictor"], expected)
    np.testing.assert_allclose(
        df["probability"], 1 / (1 + np.exp(-expected))
    )


def _cell_contrast(df: pd.DataFrame) -> float:
    p = df.groupby(["context", "task"])["probability"].mean()
    return (p[("ar", "contrasting")] - p[("al", "contrasting")]) - (
        p[("ar", "matching")] - p[("al", "matching")]
    )


def test_interaction_contrast_increases_with_effect(noiseless):
    effects = np.array([-0.4, 0.0, 0.1, 0.2, 0.8])
    contrasts = [
        _cell_contrast(
            simulate_trials(
                DGPParameters(
                    n_participants=2,
                    n_trials=1,
                    fixed_effects=FixedEffects(0.0, 0.3, 0.25, effect),
                    random_effect_sds=noiseless,
                ),
                rng=0,
            )
        )
        for effect in effects
    ]
    assert np.all(np.diff(contrasts) > 0)
    np.testing.assert_allclose(
        contrasts,
        betas_to_interaction(0.0, 0.3, 0.25, effects),
        rtol=1e-9,
        atol=1e-12,
    )


def test_random_effects_follow_covariance():
    sds = np.array([1.0, 0.5, 0.5, 0.2])
    correlations = (0.5, 0.0, 0.0, 0.3, 0.0, 0.0)
    effects = draw_random_effects(
        20_000, sds, correlations, np.random.default_rng(7)
    )
    values = effects.drop(columns="participant").to_numpy()
    np.testing.assert_allclose(values.std(axis=0), sds, rtol=0.05)
    np.testing.assert_allclose(
        np.corrcoef(values.T)[0, 1], 0.5, atol=0.03
    )


def test_zero_sds_give_zero_random_effects(noiseless):
    effects = draw_random_effects(
        5, noiseless.as_array(), (0.0,) * 6, np.random.default_rng(0)
    )
    assert np.allclose(effects.drop(columns="participant").to_numpy(), 0.0)


def test_correlation_matrix_layout():
    corr = build_correlation_matrix((0.1, 0.2, 0.3, 0.4, 0.5, 0.6))
    assert corr[0, 1] == corr[1, 0] == 0.1
    assert corr[0, 3] == 0.3
    assert corr[1, 2] == 0.4
    assert corr[2, 3] == corr[3, 2] == 0.6
    np.testing.assert_array_equal(np.diag(corr), np.ones(4))


@pytest.mark.parametrize(
    "correlations",
    [
        (0.0,) * 5,
        (1.5, 0, 0, 0, 0, 0),
        # pairwise valid, jointly impossible
        (0.9, 0.9, 0.0, -0.9, 0.0, 0.0),
    ],
)
def test_invalid_correlations(correlations):
    with pytest.raises(ValueError):
        build_covariance(np.ones(4), correlations)


def test_negative_sd():
    with pytest.raises(ValueError):
        build_covariance(np.array([0.1, -0.1, 0.1, 0.1]), (0.0,) * 6)


@pytest.mark.parametrize(
    ["n_participants", "n_trials"], [(0, 10), (10, 0), (-3, 10), (2.5, 10)]
)
def test_invalid_counts(n_participants, n_trials):
    with pytest.raises(ValueError):
        simulate_trials(
            DGPParameters(n_participants=n_participants, n_trials=n_trials),
            rng=0,
        )


def test_summarise_trials(dgp_params):
    trials = simulate_trials(dgp_params, rng=11)
    summary = summarise_trials(trials)

    assert len(summary) == dgp_params.n_participants * 4
    assert (summary["trials"] == dgp_params.n_trials).all()
    assert summary["successes"].sum() == trials["response"].sum()
    assert set(summary.columns) >= {
        "participant",
        "context",
        "task",
        "successes",
        "trials",
        "X_context",
        "X_task",
    }
