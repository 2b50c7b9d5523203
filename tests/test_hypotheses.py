import math

import numpy as np
import pandas as pd
import pytest
from scipy.stats import norm

from bfpower.hypotheses import evaluate, hypotheses, one_sided, two_sided
from bfpower.posterior import (
    TERMS,
    LinearHypothesis,
    PosteriorSummary,
    parse_hypothesis,
)


def make_summary(interaction_mean: float, interaction_sd: float, n: int = 40_000, seed: int = 0):
    rng = np.random.default_rng(seed)
    draws = pd.DataFrame(
        rng.normal(0.0, 0.05, size=(n, len(TERMS))), columns=list(TERMS)
    )
    draws["context:task"] = rng.normal(interaction_mean, interaction_sd, size=n)
    return PosteriorSummary(
        draws=draws,
        prior_sds={"Intercept": 1.0, "context": 0.1, "task": 0.1, "context:task": 0.1},
    )


@pytest.mark.parametrize(
    ["expr", "weights", "operator", "rhs"],
    [
        ("context:task = 0", {"context:task": 1.0}, "=", 0.0),
        ("context:task > 0", {"context:task": 1.0}, ">", 0.0),
        ("2*context - task < 0.5", {"context": 2.0, "task": -1.0}, "<", 0.5),
        ("-Intercept + context = -1", {"Intercept": -1.0, "context": 1.0}, "=", -1.0),
    ],
)
def test_parse_hypothesis(expr, weights, operator, rhs):
    assert parse_hypothesis(expr) == LinearHypothesis(
        weights=weights, operator=operator, rhs=rhs
    )


@pytest.mark.parametrize("expr", ["context:task", "context task = 0", "= 0", "2context > 0"])
def test_parse_hypothesis_errors(expr):
    with pytest.raises(ValueError):
        parse_hypothesis(expr)


def test_savage_dickey_matches_normal_densities():
    summary = make_summary(0.05, 0.04)
    expected = norm.pdf(0, 0.05, 0.04) / norm.pdf(0, 0, 0.1)
    np.testing.assert_allclose(
        summary.evidence_ratio("context:task = 0"), expected, rtol=0.05
    )


def test_directional_posterior_odds():
    summary = make_summary(0.05, 0.04)
    p = np.mean(summary.draws["context:task"] > 0)
    np.testing.assert_allclose(
        summary.evidence_ratio("context:task > 0"), p / (1 - p)
    )
    np.testing.assert_allclose(
        summary.evidence_ratio("context:task < 0"), (1 - p) / p
    )


def test_linear_combination_prior():
    summary = make_summary(0.0, 0.1)
    hypothesis = parse_hypothesis("context - task = 0")
    assert summary.prior_sd(hypothesis) == pytest.approx(math.sqrt(0.02))


def test_all_draws_positive_gives_infinite_odds():
    summary = make_summary(5.0, 0.01)
    assert summary.evidence_ratio("context:task > 0") == math.inf


@pytest.mark.parametrize(
    "draws",
    [
        pd.DataFrame({"context": [0.1, 0.2]}),
        pd.DataFrame({term: [0.1] * 10 for term in TERMS}),
        pd.DataFrame({term: [] for term in TERMS}, dtype=float),
    ],
)
def test_unsupported_queries_return_nan(draws):
    summary = PosteriorSummary(draws=draws, prior_sds={t: 0.1 for t in TERMS})
    assert math.isnan(summary.evidence_ratio("context:task = 0"))


def test_registry():
    assert hypotheses.get("hypothesis::two_sided") is two_sided
    assert hypotheses.get("hypothesis::one_sided") is one_sided


def test_evaluate_strong_positive_effect():
    ratios = evaluate(make_summary(0.3, 0.05))
    assert ratios.two_sided > 10
    assert ratios.one_sided > 10
    assert not ratios.is_missing


def test_evaluate_null_effect():
    ratios = evaluate(make_summary(0.0, 0.03))
    # evidence favours the null and neither direction
    assert ratios.two_sided < 1
    assert 0.5 < ratios.one_sided < 2


def test_two_sided_is_inverse_of_point_null():
    summary = make_summary(0.1, 0.05)
    assert two_sided(summary) == pytest.approx(
        1 / summary.evidence_ratio("context:task = 0")
    )


def test_evaluate_propagates_nan():
    summary = PosteriorSummary(
        draws=pd.DataFrame({"context": [0.1, 0.2]}), prior_sds={"context": 0.1}
    )
    ratios = evaluate(summary)
    assert ratios.is_missing
    assert math.isnan(ratios.two_sided) and math.isnan(ratios.one_sided)
