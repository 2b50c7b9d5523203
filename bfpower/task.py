import numpy as np
import pandas as pd
from numpy.random import SeedSequence

from .backends import ModelHandle, fit_or_update
from .dgps import dgps, summarise_trials
from .hypotheses import evaluate
from .logging import get_logger
from .types import DGPParameters, DesignPoint, TaskResult

_logger = get_logger(__name__)


def derive_seed(base_seed: int, point: DesignPoint) -> SeedSequence:
    """
    Independent, reproducible seed for one design point and replication.

    The seed only depends on the base seed and on the four fields of the
    point, so results do not depend on the order in which tasks run.
    """
    effect_bits = int(np.float64(point.effect_size).view(np.uint64))
    return SeedSequence(
        entropy=[
            int(base_seed) % 2**64,
            int(point.n_participants),
            int(point.n_trials),
            effect_bits,
            int(point.replication) % 2**64,
        ]
    )


def simulate_design_point(
    point: DesignPoint,
    dgp_params: DGPParameters,
    seed: SeedSequence,
    dgp: str = "dgp::binomial_glmm",
) -> pd.DataFrame:
    """
    Simulates the trials of one design point and returns their binomial
    summary.
    """
    trials = dgps.get(dgp)(dgp_params.with_design(point), rng=seed)
    return summarise_trials(trials)


def run_task(
    point: DesignPoint,
    handle: ModelHandle,
    dgp_params: DGPParameters,
    base_seed: int,
    dgp: str = "dgp::binomial_glmm",
) -> TaskResult:
    """
    Simulates one dataset, fits the model to it and extracts the two-sided
    and one-sided evidence ratios for the interaction.

    Exceptions raised by the fit or the evaluation become failed results
    tagged with the exception type, as do missing evidence ratios.
    """
    data_seed, fit_seed = derive_seed(base_seed, point).spawn(2)
    summary = simulate_design_point(point, dgp_params, data_seed, dgp=dgp)

    try:
        posterior = fit_or_update(handle, summary, fit_seed)
        ratios = evaluate(posterior)
    except Exception as e:
        _logger.warning("Task %s failed: %s", point, e)
        return TaskResult.failure(point, f"{type(e).__name__}: {e}")

    if ratios.is_missing:
        _logger.warning("Task %s returned missing evidence ratios", point)
        return TaskResult.failure(point, "missing evidence ratio")

    return TaskResult(
        point=point, two_sided=ratios.two_sided, one_sided=ratios.one_sided
    )
