from pathlib import Path

import numpy as np
import pandas as pd
from scipy.special import expit, logit as _logit

from .contrasts import encode
from .types import DesignPoint, TaskResult

RESULT_COLUMNS = [
    "participant_count",
    "trial_count",
    "effect_size",
    "replication_id",
    "two_sided_ratio",
    "one_sided_ratio",
    "error",
]


def logit(x):
    return _logit(x)


def inv_logit(x):
    return expit(x)


def betas_to_proportions(
    b0: float, b_context: float, b_task: float, b_int: float
) -> pd.DataFrame:
    """
    Returns the probability of a positive response in each of the four cells
    implied by a set of fixed effects (no participant variability).

    Columns are named `<context>_<task>`, e.g. `al_matching`.
    """
    cells = {}
    for context in ("al", "ar"):
        for task in ("matching", "contrasting"):
            x_context = encode(context, "context")
            x_task = encode(task, "task")
            eta = (
                b0
                + b_context * x_context
                + b_task * x_task
                + b_int * x_context * x_task
            )
            cells[f"{context}_{task}"] = np.atleast_1d(inv_logit(eta))
    return pd.DataFrame(cells)


def betas_to_interaction(
    b0: float, b_context: float, b_task: float, b_int: float
) -> np.ndarray:
    """
    Interaction contrast on the probability scale:
    (ar_contrasting - al_contrasting) - (ar_matching - al_matching).
    """
    p = betas_to_proportions(b0, b_context, b_task, b_int)
    return (
        (p["ar_contrasting"] - p["al_contrasting"])
        - (p["ar_matching"] - p["al_matching"])
    ).to_numpy()


def sample_interaction(summary: pd.DataFrame) -> float:
    """
    Observed interaction contrast of a binomial summary, pooling participants.
    """
    cells = summary.groupby(["context", "task"])[["successes", "trials"]].sum()
    p = cells["successes"] / cells["trials"]
    return float(
        (p[("ar", "contrasting")] - p[("al", "contrasting")])
        - (p[("ar", "matching")] - p[("al", "matching")])
    )


def results_to_frame(results: list[TaskResult]) -> pd.DataFrame:
    """
    Flattens task results into one row per design point and replication.
    """
    rows = [
        (
            r.point.n_participants,
            r.point.n_trials,
            r.point.effect_size,
            r.point.replication,
            r.two_sided,
            r.one_sided,
            r.error,
        )
        for r in results
    ]
    return pd.DataFrame(rows, columns=RESULT_COLUMNS)


def results_from_frame(df: pd.DataFrame) -> list[TaskResult]:
    missing = set(RESULT_COLUMNS[:-1]) - set(df.columns)
    if missing:
        raise ValueError(f"Result table is missing columns: {sorted(missing)}")

    errors = (
        df["error"]
        if "error" in df.columns
        else pd.Series(None, index=df.index, dtype=object)
    )
    results = []
    for row, error in zip(df.itertuples(index=False), errors):
        point = DesignPoint(
            n_participants=int(row.participant_count),
            n_trials=int(row.trial_count),
            effect_size=float(row.effect_size),
            replication=int(row.replication_id),
        )
        results.append(
            TaskResult(
                point=point,
                two_sided=float(row.two_sided_ratio),
                one_sided=float(row.one_sided_ratio),
                error=None if pd.isna(error) else str(error),
            )
        )
    return results


def save_results(results: list[TaskResult], path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    results_to_frame(results).to_csv(path, index=False)
    return path


def load_results(path: str | Path) -> list[TaskResult]:
    return results_from_frame(pd.read_csv(path))
