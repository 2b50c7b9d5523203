import time
from typing import Callable

import pandas as pd
from joblib import Parallel, delayed
from sklearn.base import BaseEstimator
from tqdm.auto import tqdm

from .backends import ModelHandle
from .compute_power import compute_power, missing_cells, power_table
from .config import DEFAULT_DGP
from .dgps import validate_dgp_params
from .grid import make_grid
from .logging import get_logger, log
from .task import run_task
from .types import DGPParameters, DesignPoint, GridProgress, TaskResult

_logger = get_logger(__name__)


def _indexed_task(index: int, *args, **kwargs) -> tuple[int, TaskResult]:
    return index, run_task(*args, **kwargs)


def run_points(
    points: list[DesignPoint],
    model_handle: ModelHandle,
    dgp_params: DGPParameters = DEFAULT_DGP,
    worker_count: int = 1,
    seed: int = 14051998,
    dgp: str = "dgp::binomial_glmm",
    progress_callback: Callable[[GridProgress], None] | None = None,
) -> list[TaskResult]:
    """
    Runs one simulate-and-fit task per design point on a pool of
    `worker_count` workers.

    Results are returned in the order of `points`. A failing task never
    stops the run; an interrupted run returns the results that completed.
    """
    validate_dgp_params(dgp_params)
    for n_participants, n_trials, effect_size in {p.key for p in points}:
        validate_dgp_params(
            dgp_params.with_design(
                DesignPoint(n_participants, n_trials, effect_size, 0)
            )
        )

    total = len(points)
    _logger.info(
        "Running %d simulations on %d worker(s) with %s",
        total,
        worker_count,
        model_handle.backend,
    )

    tasks = (
        delayed(_indexed_task)(
            i, point, model_handle, dgp_params, seed, dgp=dgp
        )
        for i, point in enumerate(points)
    )

    collected: dict[int, TaskResult] = {}
    failed = 0
    start = time.perf_counter()
    try:
        outputs = Parallel(
            n_jobs=worker_count,
            return_as="generator" if worker_count == 1 else "generator_unordered",
        )(tasks)
        for index, result in tqdm(
            outputs, total=total, desc="Simulating and fitting"
        ):
            collected[index] = result
            failed += not result.succeeded
            if progress_callback is not None:
                progress_callback(
                    GridProgress(
                        completed=len(collected),
                        total=total,
                        failed=failed,
                        elapsed=time.perf_counter() - start,
                    )
                )
    except KeyboardInterrupt:
        log(
            _logger.warning,
            f"Interrupted after {len(collected)}/{total} simulations, "
            "keeping the completed ones",
            "bold_yellow",
        )

    elapsed = time.perf_counter() - start
    log(
        _logger.info,
        f"The power analysis took {pd.Timedelta(seconds=round(elapsed, 2))} "
        f"({len(collected)}/{total} completed, {failed} failed)",
        "green",
    )
    return [collected[i] for i in sorted(collected)]


def run_grid(
    participant_counts: list[int],
    trial_counts: list[int],
    effect_sizes: list[float],
    n_replications: int,
    worker_count: int,
    model_handle: ModelHandle,
    dgp_params: DGPParameters = DEFAULT_DGP,
    seed: int = 14051998,
    progress_callback: Callable[[GridProgress], None] | None = None,
) -> list[TaskResult]:
    """
    Simulates and fits every point of the cartesian design grid.

    Returns one result (success or tagged failure) per design point.

    Raises:
        ValueError: on invalid design parameters, before any task runs.
    """
    points = make_grid(
        participant_counts, trial_counts, effect_sizes, n_replications
    )
    return run_points(
        points,
        model_handle,
        dgp_params=dgp_params,
        worker_count=worker_count,
        seed=seed,
        progress_callback=progress_callback,
    )


class PowerEstimator(BaseEstimator):
    def __init__(
        self,
        model_handle: ModelHandle,
        dgp_params: DGPParameters = DEFAULT_DGP,
        dgp: str = "dgp::binomial_glmm",
        decision_threshold: float = 10.0,
        random_state: int = 14051998,
        n_jobs: int = 1,
    ):
        self.model_handle = model_handle
        self.dgp_params = dgp_params
        self.dgp = dgp
        self.decision_threshold = decision_threshold
        self.random_state = random_state
        self.n_jobs = n_jobs

    def fit(self, X: list[DesignPoint], y=None):
        """
        Estimate the power landscape over the design points in `X`.
        """
        start = time.perf_counter()
        self.results_ = run_points(
            list(X),
            self.model_handle,
            dgp_params=self.dgp_params,
            worker_count=self.n_jobs,
            seed=self.random_state,
            dgp=self.dgp,
        )
        self.duration_ = time.perf_counter() - start
        self.n_failed_ = sum(not r.succeeded for r in self.results_)
        self.cells_ = compute_power(self.results_, self.decision_threshold)
        self.missing_cells_ = missing_cells(self.results_)
        self.landscape_ = power_table(self.cells_)

        if self.landscape_.empty:
            raise ValueError(
                "No valid power estimates were computed. Check the failed simulations."
            )

        return self
