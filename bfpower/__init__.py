from .backends import FitError, ModelHandle, compile_model, fit_or_update
from .compute_power import compute_power, missing_cells, power_table
from .dgps import simulate_trials, summarise_trials
from .estimator import PowerEstimator, run_grid
from .grid import make_grid
from .hypotheses import evaluate
from .task import run_task

__all__ = [
    "FitError",
    "ModelHandle",
    "PowerEstimator",
    "compile_model",
    "compute_power",
    "evaluate",
    "fit_or_update",
    "make_grid",
    "missing_cells",
    "power_table",
    "run_grid",
    "run_task",
    "simulate_trials",
    "summarise_trials",
]
