import math
from collections import defaultdict

import pandas as pd

from .logging import get_logger
from .types import AggregatedCell, TaskResult

_logger = get_logger(__name__)


def _group(results: list[TaskResult]) -> dict[tuple, list[TaskResult]]:
    groups: dict[tuple, list[TaskResult]] = defaultdict(list)
    for result in results:
        groups[result.point.key].append(result)
    return groups


def _power(k: int, n: int) -> tuple[float, float]:
    p = k / n
    return p, math.sqrt(p * (1 - p) / n)


def missing_cells(results: list[TaskResult]) -> list[tuple[int, int, float]]:
    """
    Design cells for which every replication failed.
    """
    return sorted(
        key
        for key, group in _group(results).items()
        if not any(r.succeeded for r in group)
    )


def compute_power(
    results: list[TaskResult], decision_threshold: float = 10.0
) -> list[AggregatedCell]:
    """
    Empirical power of each design cell: the proportion of successful
    replications whose evidence ratio is at least `decision_threshold`, with
    its binomial standard error, for the two-sided and one-sided rules.

    Results may arrive in any order. Failed replications only count as
    attempted; cells without any successful replication get no row.
    """
    cells = []
    for key, group in sorted(_group(results).items()):
        succeeded = [r for r in group if r.succeeded]
        n = len(succeeded)
        if n == 0:
            _logger.warning(
                "No successful replication for %d participants, %d trials, "
                "effect %s (%d attempted)",
                *key,
                len(group),
            )
            continue

        k_two = sum(r.two_sided >= decision_threshold for r in succeeded)
        k_one = sum(r.one_sided >= decision_threshold for r in succeeded)
        power_two, se_two = _power(k_two, n)
        power_one, se_one = _power(k_one, n)

        n_participants, n_trials, effect_size = key
        cells.append(
            AggregatedCell(
                n_participants=n_participants,
                n_trials=n_trials,
                effect_size=effect_size,
                n_attempted=len(group),
                n_succeeded=n,
                n_detected_two_sided=k_two,
                n_detected_one_sided=k_one,
                power_two_sided=power_two,
                se_two_sided=se_two,
                power_one_sided=power_one,
                se_one_sided=se_one,
            )
        )
    return cells


def power_table(cells: list[AggregatedCell]) -> pd.DataFrame:
    return pd.DataFrame(
        [vars(cell) for cell in cells],
        columns=list(AggregatedCell.__dataclass_fields__),
    )
