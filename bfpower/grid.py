from itertools import product

import numpy as np

from .types import DesignPoint


def _positive_ints(values, name: str) -> list[int]:
    values = np.atleast_1d(values).tolist()
    if not values:
        raise ValueError(f"{name} must not be empty.")
    for value in values:
        if int(value) != value or value <= 0:
            raise ValueError(f"{name} must hold positive integers, got {value}.")
    return [int(value) for value in values]


def make_grid(
    participant_counts: int | list,
    trial_counts: int | list,
    effect_sizes: float | list,
    n_replications: int,
) -> list[DesignPoint]:
    """
    Full cartesian product of the design parameters, each cell repeated
    `n_replications` times (replications are numbered from 1).

    Raises:
        ValueError: on empty lists, non-positive counts or non-finite effects.
    """
    participant_counts = _positive_ints(participant_counts, "participant_counts")
    trial_counts = _positive_ints(trial_counts, "trial_counts")
    (n_replications,) = _positive_ints(n_replications, "n_replications")

    effect_sizes = [float(e) for e in np.atleast_1d(effect_sizes)]
    if not effect_sizes:
        raise ValueError("effect_sizes must not be empty.")
    if not np.all(np.isfinite(effect_sizes)):
        raise ValueError("effect_sizes must be finite.")

    return [
        DesignPoint(
            n_participants=n_participants,
            n_trials=n_trials,
            effect_size=effect_size,
            replication=replication,
        )
        for n_participants, n_trials, effect_size, replication in product(
            participant_counts,
            trial_counts,
            effect_sizes,
            range(1, n_replications + 1),
        )
    ]
