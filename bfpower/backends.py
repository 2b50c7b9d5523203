"""
Fit backends for the binomial mixed model

    successes | trials(trials) ~ 1 + context * task
                                 + (1 + context * task | participant)

Every backend is a function `(handle, data, seed) -> PosteriorSummary`
registered in `backends`. A `ModelHandle` only describes the model; it is
frozen and shared read-only by every task of a grid.
PyMC models are built once per process, handle and dataset size, and
later fits only swap their data in.
"""

import logging
import math
import warnings
from dataclasses import dataclass, field
from functools import lru_cache

import catalogue
import numpy as np
import pandas as pd
from numpy.random import SeedSequence
from scipy import sparse

from .logging import get_logger
from .posterior import TERMS, PosteriorSummary

_logger = get_logger(__name__)

backends = catalogue.create("bfpower", "backends")

FORMULA = (
    "successes | trials(trials) ~ 1 + context * task"
    " + (1 + context * task | participant)"
)


class FitError(RuntimeError):
    """A model fit did not produce a usable posterior."""


@dataclass(frozen=True)
class ModelSpec:
    formula: str = FORMULA
    intercept_prior_sd: float = 1.0
    slope_prior_sd: float = 0.1
    lkj_eta: float = 1.0
    sd_prior_nu: float = 3.0
    sd_prior_scale: float = 2.5
    # prior SD of the log random-effect SDs, variational backend only
    vcp_prior_sd: float = 1.0
    max_rhat: float = 1.05

    @property
    def prior_sds(self) -> dict[str, float]:
        return {
            "Intercept": self.intercept_prior_sd,
            **{term: self.slope_prior_sd for term in TERMS[1:]},
        }


@dataclass(frozen=True)
class SamplerConfig:
    total_draws: int = 40_000
    warmup: int = 1_000
    chains: int = 2
    cores: int = 2
    target_accept: float = 0.8

    @property
    def draws_per_chain(self) -> int:
        return math.ceil(self.total_draws / self.chains)


@dataclass(frozen=True)
class ModelHandle:
    backend: str = "backend::pymc"
    spec: ModelSpec = field(default_factory=ModelSpec)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    terms: tuple[str, ...] = TERMS


def design_matrix(data: pd.DataFrame) -> np.ndarray:
    """
    Fixed-effect design matrix with columns Intercept, context, task and
    context:task, built from the contrast codes of a binomial summary.
    """
    x_context = data["X_context"].to_numpy(dtype=float)
    x_task = data["X_task"].to_numpy(dtype=float)
    return np.column_stack(
        [np.ones(len(data)), x_context, x_task, x_context * x_task]
    )


def _int_seed(seed: SeedSequence | int | None) -> int:
    return int(np.random.default_rng(seed).integers(2**31 - 1))


def child_seeds(seed: SeedSequence | int | None, n: int) -> list[SeedSequence]:
    """
    `n` independent children of `seed`. Unlike `SeedSequence.spawn`, the
    parent is not modified, so the same seed always gives the same children.
    """
    parent = seed if isinstance(seed, SeedSequence) else SeedSequence(seed)
    return [
        SeedSequence(
            parent.entropy,
            spawn_key=(*parent.spawn_key, i),
            pool_size=parent.pool_size,
        )
        for i in range(n)
    ]


@lru_cache(maxsize=16)
def pymc_model(handle: ModelHandle, n_participants: int, n_rows: int):
    """
    Builds the PyMC model for datasets of a given size once per process.

    The design matrix, participant index, trial counts and successes are
    `pm.Data` containers, so every later fit of the same handle and size
    only swaps the data in with `pm.set_data`.
    """
    import pymc as pm

    spec = handle.spec
    coords = {
        "participant": np.arange(n_participants),
        "term": list(handle.terms),
        "slope": list(handle.terms[1:]),
        "row": np.arange(n_rows),
    }

    with pm.Model(coords=coords) as model:
        X = pm.Data("X", np.zeros((n_rows, len(handle.terms))), dims=("row", "term"))
        participant_idx = pm.Data(
            "participant_idx", np.zeros(n_rows, dtype=int), dims="row"
        )
        trials = pm.Data("trials", np.ones(n_rows, dtype=int), dims="row")
        observed = pm.Data(
            "observed_successes", np.zeros(n_rows, dtype=int), dims="row"
        )

        intercept = pm.Normal(
            "Intercept", mu=0.0, sigma=spec.intercept_prior_sd
        )
        slopes = pm.Normal("b", mu=0.0, sigma=spec.slope_prior_sd, dims="slope")
        chol, _, _ = pm.LKJCholeskyCov(
            "chol",
            n=len(handle.terms),
            eta=spec.lkj_eta,
            sd_dist=pm.HalfStudentT.dist(
                nu=spec.sd_prior_nu,
                sigma=spec.sd_prior_scale,
                size=len(handle.terms),
            ),
            compute_corr=True,
        )
        z = pm.Normal("z", mu=0.0, sigma=1.0, dims=("participant", "term"))
        ranef = pm.Deterministic(
            "ranef", pm.math.dot(z, chol.T), dims=("participant", "term")
        )
        beta = pm.math.concatenate([intercept[None], slopes])
        eta = pm.math.sum((beta[None, :] + ranef[participant_idx]) * X, axis=1)
        pm.Binomial(
            "successes", n=trials, logit_p=eta, observed=observed, dims="row"
        )

    _logger.debug(
        "Built PyMC model for %d participants, %d rows", n_participants, n_rows
    )
    return model


@backends.register("backend::pymc")
def fit_pymc(
    handle: ModelHandle,
    data: pd.DataFrame,
    seed: SeedSequence | int | None = None,
) -> PosteriorSummary:
    """
    Full Bayesian fit with NUTS: normal priors on the fixed effects, an LKJ
    prior on the by-participant correlations and half-Student-t priors on the
    by-participant SDs.
    """
    import arviz as az
    import pymc as pm
    from pymc.sampling.parallel import ParallelSamplingError

    logging.getLogger("pymc").setLevel(logging.ERROR)

    spec, sampler = handle.spec, handle.sampler
    participants, participant_idx = np.unique(
        data["participant"].to_numpy(), return_inverse=True
    )
    model = pymc_model(handle, len(participants), len(data))

    with model:
        pm.set_data(
            {
                "X": design_matrix(data),
                "participant_idx": participant_idx,
                "trials": data["trials"].to_numpy(dtype=int),
                "observed_successes": data["successes"].to_numpy(dtype=int),
            }
        )
        try:
            idata = pm.sample(
                draws=sampler.draws_per_chain,
                tune=sampler.warmup,
                chains=sampler.chains,
                cores=sampler.cores,
                target_accept=sampler.target_accept,
                random_seed=_int_seed(seed),
                progressbar=False,
                compute_convergence_checks=False,
            )
        except (
            pm.exceptions.SamplingError,
            ParallelSamplingError,
            FloatingPointError,
            ValueError,
        ) as e:
            raise FitError(f"sampling failed: {e}") from e

    posterior = idata.posterior
    draws = pd.DataFrame(
        np.column_stack(
            [
                posterior["Intercept"].to_numpy().reshape(-1),
                posterior["b"].to_numpy().reshape(-1, len(handle.terms) - 1),
            ]
        ),
        columns=list(handle.terms),
    )

    rhat = float(
        az.rhat(idata, var_names=["Intercept", "b"]).to_array().max()
    )
    divergences = int(idata.sample_stats["diverging"].sum())
    if sampler.chains > 1 and not rhat <= spec.max_rhat:
        raise FitError(f"no convergence (max R-hat {rhat:.3f})")

    return PosteriorSummary(
        draws=draws,
        prior_sds=spec.prior_sds,
        diagnostics={"max_rhat": rhat, "divergences": divergences},
    )


def expand_binomial(data: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
    """
    Turns a binomial summary back into 0/1 responses. Returns the responses
    and, for each response, the index of its summary row.
    """
    n_trials = data["trials"].to_numpy(dtype=int)
    successes = data["successes"].to_numpy(dtype=int)
    rows = np.repeat(np.arange(len(data)), n_trials)
    starts = np.concatenate([[0], np.cumsum(n_trials)[:-1]])
    rank = np.arange(rows.size) - np.repeat(starts, n_trials)
    endog = (rank < np.repeat(successes, n_trials)).astype(float)
    return endog, rows


@backends.register("backend::statsmodels_vb")
def fit_statsmodels_vb(
    handle: ModelHandle,
    data: pd.DataFrame,
    seed: SeedSequence | int | None = None,
) -> PosteriorSummary:
    """
    Variational Bayes approximation of the same model. Random effects are
    independent variance components and every fixed effect shares the slope
    prior SD. Posterior draws are sampled from the Gaussian approximation.
    """
    from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM

    spec, sampler = handle.spec, handle.sampler
    fit_seed, draw_seed = child_seeds(seed, 2)
    endog, rows = expand_binomial(data)
    exog = design_matrix(data)[rows]

    participants, participant_idx = np.unique(
        data["participant"].to_numpy(), return_inverse=True
    )
    participant_idx = participant_idx[rows]
    n_terms, n_participants = len(handle.terms), len(participants)
    exog_vc = sparse.csr_matrix(
        (
            exog.T.ravel(),
            (
                np.tile(np.arange(len(endog)), n_terms),
                (
                    np.arange(n_terms)[:, None] * n_participants
                    + participant_idx[None, :]
                ).ravel(),
            ),
        ),
        shape=(len(endog), n_terms * n_participants),
    )
    ident = np.repeat(np.arange(n_terms), n_participants)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            model = BinomialBayesMixedGLM(
                endog,
                exog,
                exog_vc,
                ident,
                vcp_p=spec.vcp_prior_sd,
                fe_p=spec.slope_prior_sd,
                fep_names=list(handle.terms),
                vcp_names=[f"sd({term})" for term in handle.terms],
            )
            result = model.fit_vb(rng=np.random.default_rng(fit_seed))
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
            raise FitError(f"variational fit failed: {e}") from e

    for w in caught:
        if "converge" in str(w.message):
            raise FitError(f"no convergence ({w.message})")

    fe_mean = np.asarray(result.fe_mean, dtype=float)
    fe_sd = np.asarray(result.fe_sd, dtype=float)
    if not (np.all(np.isfinite(fe_mean)) and np.all(np.isfinite(fe_sd))):
        raise FitError("variational fit returned non-finite moments")

    rng = np.random.default_rng(draw_seed)
    draws = pd.DataFrame(
        rng.normal(fe_mean, fe_sd, size=(sampler.total_draws, n_terms)),
        columns=list(handle.terms),
    )
    return PosteriorSummary(
        draws=draws,
        prior_sds={term: spec.slope_prior_sd for term in handle.terms},
        diagnostics={"fe_mean": fe_mean.tolist(), "fe_sd": fe_sd.tolist()},
    )


def fit_or_update(
    handle: ModelHandle,
    data: pd.DataFrame,
    seed: SeedSequence | int | None = None,
) -> PosteriorSummary:
    """
    Fits the model described by `handle` to a binomial summary. The handle is
    never modified; every call returns a new summary.

    Raises:
        FitError: if the backend does not produce a usable posterior.
    """
    return backends.get(handle.backend)(handle, data, seed)


def compile_model(
    spec: ModelSpec | None = None,
    sampler: SamplerConfig | None = None,
    backend: str = "backend::pymc",
    reference_data: pd.DataFrame | None = None,
    seed: SeedSequence | int | None = None,
) -> ModelHandle:
    """
    Builds the model handle shared by every task of a grid.

    If `reference_data` is given, the model is fitted once to it. This checks
    the model structure before any grid work starts and, for `backend::pymc`,
    builds the model that later fits of the same dataset size reuse.
    """
    handle = ModelHandle(
        backend=backend,
        spec=spec or ModelSpec(),
        sampler=sampler or SamplerConfig(),
    )
    backends.get(backend)

    if reference_data is not None:
        summary = fit_or_update(handle, reference_data, seed)
        means = summary.draws.mean()
        _logger.info(
            "Reference fit with %s: %s",
            backend,
            ", ".join(f"{term}={means[term]:.3f}" for term in handle.terms),
        )

    return handle
