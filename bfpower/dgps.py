from itertools import product

import catalogue
import numpy as np
import pandas as pd
from numpy.random import Generator, SeedSequence

from .contrasts import CONTEXT_LEVELS, TASK_LEVELS, encode_frame
from .types import DGPParameters
from .utils import inv_logit

dgps = catalogue.create("bfpower", "dgps")

RANDOM_EFFECT_COLUMNS = ["S_0", "S_context", "S_task", "S_context_task"]


def build_correlation_matrix(correlations) -> np.ndarray:
    """
    Builds the 4x4 by-participant correlation matrix from its upper triangle,
    given in row-major order.

    Raises:
        ValueError: if there are not exactly 6 correlations, any of them lies
            outside [-1, 1], or the matrix is not positive semi-definite.
    """
    correlations = np.asarray(correlations, dtype=float)
    if correlations.shape != (6,):
        raise ValueError(
            f"Expected 6 pairwise correlations, got shape {correlations.shape}."
        )
    if np.any(~np.isfinite(correlations)) or np.any(np.abs(correlations) > 1):
        raise ValueError("Correlations must lie in [-1, 1].")

    rows, cols = np.triu_indices(4, k=1)
    corr = np.eye(4)
    corr[rows, cols] = correlations
    corr[cols, rows] = correlations

    if np.linalg.eigvalsh(corr).min() < -1e-10:
        raise ValueError(
            "The provided correlations do not yield a positive semi-definite matrix."
        )
    return corr


def build_covariance(sds, correlations) -> np.ndarray:
    sds = np.asarray(sds, dtype=float)
    if sds.shape != (4,):
        raise ValueError(f"Expected 4 standard deviations, got shape {sds.shape}.")
    if np.any(~np.isfinite(sds)) or np.any(sds < 0):
        raise ValueError("Random-effect standard deviations must be non-negative.")
    return build_correlation_matrix(correlations) * np.outer(sds, sds)


def validate_dgp_params(dgp_params: DGPParameters) -> np.ndarray:
    """
    Checks the design counts and returns the random-effect covariance matrix.
    """
    for name in ("n_participants", "n_trials"):
        value = getattr(dgp_params, name)
        if int(value) != value or value <= 0:
            raise ValueError(f"{name} must be a positive integer, got {value}.")
    return build_covariance(
        dgp_params.random_effect_sds.as_array(), dgp_params.correlations
    )


def make_ids(n: int, prefix: str = "S") -> list[str]:
    width = len(str(n))
    return [f"{prefix}{i:0{width}d}" for i in range(1, n + 1)]


def draw_random_effects(
    n_participants: int, sds, correlations, rng: Generator
) -> pd.DataFrame:
    """
    Draws one correlated vector of by-participant deviations (intercept,
    context, task and interaction slopes) per participant.
    """
    cov = build_covariance(sds, correlations)
    # eigh tolerates singular covariances, e.g. some SDs set to zero
    effects = rng.multivariate_normal(
        mean=np.zeros(4), cov=cov, size=n_participants, method="eigh"
    )
    df = pd.DataFrame(effects, columns=RANDOM_EFFECT_COLUMNS)
    df.insert(0, "participant", make_ids(n_participants))
    return df


@dgps.register("dgp::binomial_glmm")
def simulate_trials(
    dgp_params: DGPParameters, rng: Generator | SeedSequence | int | None = None
) -> pd.DataFrame:
    """
    Simulates trial-level binary responses from a logistic mixed model with
    by-participant varying intercepts and slopes for context, task and
    their interaction.

    Args:
        dgp_params (DGPParameters): design counts, fixed effects and the
            random-effect SDs and correlations.
        rng (Generator | SeedSequence | int | None): random state; the same
            seed always yields the same dataset.

    Returns:
        pd.DataFrame: n_participants * n_trials * 4 rows with columns
            participant, trial, context, task, X_context, X_task,
            linear_predictor, probability, response.
    """
    validate_dgp_params(dgp_params)
    rng = np.random.default_rng(rng)

    trials = pd.DataFrame(
        product(
            range(1, dgp_params.n_trials + 1), CONTEXT_LEVELS, TASK_LEVELS
        ),
        columns=["trial", "context", "task"],
    )
    participants = draw_random_effects(
        dgp_params.n_participants,
        dgp_params.random_effect_sds.as_array(),
        dgp_params.correlations,
        rng,
    )

    df = encode_frame(participants.merge(trials, how="cross"))

    b = dgp_params.fixed_effects
    b_0 = b.intercept + df["S_0"]
    b_context = b.context + df["S_context"]
    b_task = b.task + df["S_task"]
    b_context_task = b.interaction + df["S_context_task"]

    df["linear_predictor"] = (
        b_0
        + b_context * df["X_context"]
        + b_task * df["X_task"]
        + b_context_task * df["X_context"] * df["X_task"]
    )
    df["probability"] = inv_logit(df["linear_predictor"].to_numpy())
    df["response"] = rng.binomial(1, df["probability"].to_numpy())

    return df[
        [
            "participant",
            "trial",
            "context",
            "task",
            "X_context",
            "X_task",
            "linear_predictor",
            "probability",
            "response",
        ]
    ]


def summarise_trials(trials: pd.DataFrame) -> pd.DataFrame:
    """
    Collapses trial-level responses into the binomial sufficient statistic:
    one row per participant x context x task with the number of positive
    responses out of the number of trials, plus the contrast codes.
    """
    summary = (
        trials.groupby(["participant", "context", "task"], sort=True)["response"]
        .agg(successes="sum", trials="size")
        .reset_index()
    )
    return encode_frame(summary)
