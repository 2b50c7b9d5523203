"""
Batch power analysis over the full design grid.

    python main.py --output results/power-analysis.csv
    python main.py --backend backend::statsmodels_vb --replications 20
"""

import argparse
import json

from bfpower.backends import compile_model
from bfpower.compute_power import compute_power, missing_cells, power_table
from bfpower.config import StudyConfig
from bfpower.estimator import run_grid
from bfpower.logging import get_logger
from bfpower.task import derive_seed, simulate_design_point
from bfpower.types import DesignPoint
from bfpower.utils import save_results

_logger = get_logger("bfpower.main")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--config", help="JSON file with StudyConfig values.")
    parser.add_argument("--backend", help="Fit backend name.")
    parser.add_argument("--replications", type=int)
    parser.add_argument("--cores-per-fit", type=int)
    parser.add_argument("--workers", type=int)
    parser.add_argument("--threshold", type=float)
    parser.add_argument("--seed", type=int)
    parser.add_argument("--output", default="results/power-analysis.csv")
    return parser.parse_args()


def load_config(args: argparse.Namespace) -> StudyConfig:
    values = {}
    if args.config:
        with open(args.config) as f:
            values = json.load(f)
    config = StudyConfig.from_dict(values)

    overrides = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.threshold is not None:
        overrides["decision_threshold"] = args.threshold
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.replications is not None:
        overrides["grid"] = {
            **vars(config.grid),
            "n_replications": args.replications,
        }
    if args.cores_per_fit is not None or args.workers is not None:
        overrides["parallel"] = {
            **vars(config.parallel),
            **(
                {"cores_per_fit": args.cores_per_fit}
                if args.cores_per_fit is not None
                else {}
            ),
            **({"n_workers": args.workers} if args.workers is not None else {}),
        }
    return StudyConfig.from_dict({**values, **overrides})


if __name__ == "__main__":
    args = parse_args()
    config = load_config(args)
    grid = config.grid
    n_workers = config.parallel.resolve_workers()

    # the reference fit validates the model before the grid starts
    reference_point = DesignPoint(
        config.dgp.n_participants,
        config.dgp.n_trials,
        config.dgp.fixed_effects.interaction,
        0,
    )
    reference_data = simulate_design_point(
        reference_point, config.dgp, derive_seed(config.seed, reference_point)
    )
    handle = compile_model(
        spec=config.model,
        sampler=config.sampler,
        backend=config.backend,
        reference_data=reference_data,
        seed=config.seed,
    )

    _logger.info(
        "Grid of %d simulations, %d workers x %d cores per fit",
        grid.size,
        n_workers,
        config.parallel.cores_per_fit,
    )
    results = run_grid(
        participant_counts=list(grid.participant_counts),
        trial_counts=list(grid.trial_counts),
        effect_sizes=list(grid.effect_sizes),
        n_replications=grid.n_replications,
        worker_count=n_workers,
        model_handle=handle,
        dgp_params=config.dgp,
        seed=config.seed,
    )

    path = save_results(results, args.output)
    _logger.info("Raw results saved to %s", path)

    table = power_table(compute_power(results, config.decision_threshold))
    n_missing = len(missing_cells(results))
    if n_missing:
        _logger.warning("%d cell(s) have no power estimate", n_missing)
    print(table.to_string(index=False))
