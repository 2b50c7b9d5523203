"""
Design grids and run settings, shared by the batch run (`main.py`) and the
exploration script (`examples/explore.py`).
"""

import math
import os
from dataclasses import dataclass, field, fields

import numpy as np

from .backends import ModelSpec, SamplerConfig
from .types import DGPParameters, FixedEffects, RandomEffectSDs


def _seq(start: float, stop: float, step: float, decimals: int = 2) -> tuple:
    """Inclusive sequence, rounded so that grid keys compare exactly."""
    n = int(round((stop - start) / step)) + 1
    return tuple(np.round(start + step * np.arange(n), decimals).tolist())


@dataclass(frozen=True)
class DesignGrid:
    participant_counts: tuple[int, ...]
    trial_counts: tuple[int, ...]
    effect_sizes: tuple[float, ...]
    n_replications: int

    @property
    def size(self) -> int:
        return (
            len(self.participant_counts)
            * len(self.trial_counts)
            * len(self.effect_sizes)
            * self.n_replications
        )


REFERENCE_GRID = DesignGrid(
    participant_counts=tuple(int(n) for n in _seq(40, 70, 10)),
    trial_counts=tuple(int(n) for n in _seq(110, 160, 10)),
    effect_sizes=_seq(0.06, 0.13, 0.01),
    n_replications=100,
)

EXPLORATION_GRID = DesignGrid(
    participant_counts=(40,),
    trial_counts=(100,),
    effect_sizes=(0.1, 0.2),
    n_replications=4,
)

DEFAULT_DGP = DGPParameters(
    n_participants=60,
    n_trials=60,
    fixed_effects=FixedEffects(
        intercept=0.0, context=0.3, task=0.25, interaction=0.2
    ),
    random_effect_sds=RandomEffectSDs(
        intercept=0.05, context=0.05, task=0.05, interaction=0.05
    ),
    correlations=(0.0, 0.0, 0.0, 0.0, 0.0, 0.0),
)


@dataclass(frozen=True)
class ParallelConfig:
    """
    Two-level parallelism: `n_workers` models are fitted at the same time,
    each using `cores_per_fit` cores (one chain per core). Unless
    `n_workers` is given, workers fill the available cores minus
    `reserved_cores`.
    """

    cores_per_fit: int = 2
    reserved_cores: int = 1
    n_workers: int | None = None

    def resolve_workers(self, available: int | None = None) -> int:
        if self.cores_per_fit <= 0:
            raise ValueError("cores_per_fit must be positive.")
        if self.n_workers is not None:
            if self.n_workers <= 0:
                raise ValueError("n_workers must be positive.")
            return self.n_workers
        available = available if available is not None else os.cpu_count() or 1
        return max(
            1, math.floor((available - self.reserved_cores) / self.cores_per_fit)
        )

    def sampler(self, total_draws: int = 40_000, warmup: int = 1_000) -> SamplerConfig:
        return SamplerConfig(
            total_draws=total_draws,
            warmup=warmup,
            chains=self.cores_per_fit,
            cores=self.cores_per_fit,
        )


@dataclass(frozen=True)
class StudyConfig:
    grid: DesignGrid = REFERENCE_GRID
    dgp: DGPParameters = DEFAULT_DGP
    model: ModelSpec = field(default_factory=ModelSpec)
    parallel: ParallelConfig = field(default_factory=ParallelConfig)
    total_draws: int = 40_000
    warmup: int = 1_000
    decision_threshold: float = 10.0
    seed: int = 14051998
    backend: str = "backend::pymc"

    @property
    def sampler(self) -> SamplerConfig:
        return self.parallel.sampler(self.total_draws, self.warmup)

    @classmethod
    def from_dict(cls, config: dict) -> "StudyConfig":
        """
        Builds a configuration from plain (e.g. JSON-decoded) values; missing
        keys keep their defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs = dict(config)
        if "grid" in kwargs:
            grid = kwargs["grid"]
            kwargs["grid"] = DesignGrid(
                participant_counts=tuple(grid["participant_counts"]),
                trial_counts=tuple(grid["trial_counts"]),
                effect_sizes=tuple(grid["effect_sizes"]),
                n_replications=grid["n_replications"],
            )
        if "dgp" in kwargs:
            dgp = dict(kwargs["dgp"])
            kwargs["dgp"] = DGPParameters(
                n_participants=dgp.get("n_participants", DEFAULT_DGP.n_participants),
                n_trials=dgp.get("n_trials", DEFAULT_DGP.n_trials),
                fixed_effects=FixedEffects(**dgp.get("fixed_effects", {})),
                random_effect_sds=RandomEffectSDs(
                    **dgp.get("random_effect_sds", {})
                ),
                correlations=tuple(
                    dgp.get("correlations", DEFAULT_DGP.correlations)
                ),
            )
        if "model" in kwargs:
            kwargs["model"] = ModelSpec(**kwargs["model"])
        if "parallel" in kwargs:
            kwargs["parallel"] = ParallelConfig(**kwargs["parallel"])
        return cls(**kwargs)
