import math
from dataclasses import dataclass, field, replace

import numpy as np


@dataclass(frozen=True)
class DesignPoint:
    """
    One cell of the design grid, repeated `replication` times.

    Attributes:
        n_participants (int): number of simulated participants.
        n_trials (int): number of trials per participant and context x task cell.
        effect_size (float): true context x task interaction, log-odds scale.
        replication (int): index distinguishing independent repeats of the same cell.
    """

    n_participants: int
    n_trials: int
    effect_size: float
    replication: int

    @property
    def key(self) -> tuple[int, int, float]:
        return (self.n_participants, self.n_trials, self.effect_size)


@dataclass(frozen=True)
class FixedEffects:
    intercept: float = 0.0
    context: float = 0.3
    task: float = 0.25
    interaction: float = 0.2

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.intercept, self.context, self.task, self.interaction]
        )


@dataclass(frozen=True)
class RandomEffectSDs:
    intercept: float = 0.05
    context: float = 0.05
    task: float = 0.05
    interaction: float = 0.05

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.intercept, self.context, self.task, self.interaction]
        )


@dataclass(frozen=True)
class DGPParameters:
    """
    Parameters of the binomial mixed-effects data generating process.

    `correlations` is the upper triangle of the 4x4 by-participant correlation
    matrix in row-major order: (0, context), (0, task), (0, interaction),
    (context, task), (context, interaction), (task, interaction).
    """

    n_participants: int = 50
    n_trials: int = 50
    fixed_effects: FixedEffects = field(default_factory=FixedEffects)
    random_effect_sds: RandomEffectSDs = field(default_factory=RandomEffectSDs)
    correlations: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    def with_design(self, point: DesignPoint) -> "DGPParameters":
        return replace(
            self,
            n_participants=point.n_participants,
            n_trials=point.n_trials,
            fixed_effects=replace(
                self.fixed_effects, interaction=point.effect_size
            ),
        )


@dataclass(frozen=True)
class EvidenceRatios:
    two_sided: float
    one_sided: float

    @property
    def is_missing(self) -> bool:
        return math.isnan(self.two_sided) or math.isnan(self.one_sided)


@dataclass(frozen=True)
class TaskResult:
    """
    Outcome of a single simulate-and-fit task.

    A result succeeded iff `error` is None. Failed results keep NaN ratios
    and the reason of the failure.
    """

    point: DesignPoint
    two_sided: float = float("nan")
    one_sided: float = float("nan")
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, point: DesignPoint, reason: str) -> "TaskResult":
        return cls(point=point, error=reason)


@dataclass(frozen=True)
class AggregatedCell:
    n_participants: int
    n_trials: int
    effect_size: float
    n_attempted: int
    n_succeeded: int
    n_detected_two_sided: int
    n_detected_one_sided: int
    power_two_sided: float
    se_two_sided: float
    power_one_sided: float
    se_one_sided: float


@dataclass(frozen=True)
class GridProgress:
    completed: int
    total: int
    failed: int
    elapsed: float

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0
