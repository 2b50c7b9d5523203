import pandas as pd

from ..backends import ModelHandle
from ..config import DEFAULT_DGP, DesignGrid
from ..estimator import PowerEstimator
from ..grid import make_grid
from ..types import DGPParameters
from . import Task

RULES = ("two_sided", "one_sided")


def make_dataset(grid: DesignGrid) -> list:
    return make_grid(
        grid.participant_counts,
        grid.trial_counts,
        grid.effect_sizes,
        grid.n_replications,
    )


class ContextTaskReplication(Task):
    """
    Power landscape of the context x task interaction, and the design
    questions that can be answered from it.
    """

    def __init__(
        self,
        model_handle: ModelHandle,
        dgp_params: DGPParameters = DEFAULT_DGP,
        decision_threshold: float = 10.0,
        n_jobs: int = 1,
        random_state: int = 14051998,
    ):
        self.power_estimator = PowerEstimator(
            model_handle=model_handle,
            dgp_params=dgp_params,
            decision_threshold=decision_threshold,
            random_state=random_state,
            n_jobs=n_jobs,
        )
        self.fitted = False

    def fit(self, X, y=None):
        if isinstance(X, DesignGrid):
            X = make_dataset(X)
        self.power_estimator.fit(X)
        self.landscape_: pd.DataFrame = self.power_estimator.landscape_
        self.fitted = True
        return self

    def _qualifying(self, power: float, rule: str) -> pd.DataFrame:
        self._check_fitted()
        if rule not in RULES:
            raise ValueError(f"rule must be one of {RULES}, got {rule!r}.")
        return self.landscape_[self.landscape_[f"power_{rule}"] >= power]

    def predict_n(
        self,
        effect_size: float,
        n_trials: int,
        power: float = 0.8,
        rule: str = "one_sided",
    ) -> int | None:
        """
        Smallest simulated number of participants reaching `power` for an
        effect and a number of trials.
        """
        results = self._qualifying(power, rule).query(
            "effect_size == @effect_size & n_trials == @n_trials"
        )
        if results.empty:
            return None
        return int(results["n_participants"].min())

    def predict_trials(
        self,
        effect_size: float,
        n_participants: int,
        power: float = 0.8,
        rule: str = "one_sided",
    ) -> int | None:
        results = self._qualifying(power, rule).query(
            "effect_size == @effect_size & n_participants == @n_participants"
        )
        if results.empty:
            return None
        return int(results["n_trials"].min())

    def predict_mde(
        self,
        n_participants: int,
        n_trials: int,
        power: float = 0.8,
        rule: str = "one_sided",
    ) -> float | None:
        """
        Smallest simulated interaction effect detected with at least `power`
        for a given design.
        """
        results = self._qualifying(power, rule).query(
            "n_participants == @n_participants & n_trials == @n_trials"
        )
        if results.empty:
            return None
        return float(results["effect_size"].min())
