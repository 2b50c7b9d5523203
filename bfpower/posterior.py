import re
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde, norm

TERMS = ("Intercept", "context", "task", "context:task")

OPERATORS = ("=", ">", "<")

_HYPOTHESIS = re.compile(
    r"^(?P<lhs>.+?)\s*(?P<op>[=<>])\s*(?P<rhs>[-+]?[\d.eE+-]+)$"
)
_TERM = re.compile(
    r"\s*(?P<sign>[-+])?\s*(?:(?P<coef>\d+(?:\.\d*)?|\.\d+)\s*\*\s*)?(?P<name>[A-Za-z_][\w:]*)\s*"
)


@dataclass(frozen=True)
class LinearHypothesis:
    """
    `sum(weights[term] * beta[term]) <op> rhs` over fixed-effect coefficients.
    """

    weights: Mapping[str, float]
    operator: str
    rhs: float = 0.0

    def __post_init__(self):
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported operator {self.operator!r}.")
        if not self.weights:
            raise ValueError("A hypothesis needs at least one coefficient.")


def parse_hypothesis(expr: str) -> LinearHypothesis:
    """
    Parses hypotheses such as "context:task = 0", "context:task > 0" or
    "2*context - task < 0.5".
    """
    match = _HYPOTHESIS.match(expr.strip())
    if match is None:
        raise ValueError(f"Cannot parse hypothesis {expr!r}.")

    lhs = match.group("lhs")
    weights: dict[str, float] = {}
    position = 0
    for term in _TERM.finditer(lhs):
        if term.start() != position or (position > 0 and term.group("sign") is None):
            raise ValueError(f"Cannot parse hypothesis {expr!r}.")
        coef = float(term.group("coef")) if term.group("coef") else 1.0
        if term.group("sign") == "-":
            coef = -coef
        name = term.group("name")
        weights[name] = weights.get(name, 0.0) + coef
        position = term.end()
    if position != len(lhs):
        raise ValueError(f"Cannot parse hypothesis {expr!r}.")

    return LinearHypothesis(
        weights=weights, operator=match.group("op"), rhs=float(match.group("rhs"))
    )


@dataclass
class PosteriorSummary:
    """
    Posterior draws of the fixed effects together with their (independent,
    zero-centred normal) prior SDs.

    Point hypotheses are scored with the Savage-Dickey density ratio
    (posterior density over prior density at the hypothesised value, i.e. the
    evidence for the point null). Directional hypotheses are scored with the
    posterior odds P(h) / P(not h).
    """

    draws: pd.DataFrame
    prior_sds: Mapping[str, float]
    diagnostics: dict = field(default_factory=dict)

    @property
    def terms(self) -> list[str]:
        return list(self.draws.columns)

    def combination(self, hypothesis: LinearHypothesis) -> np.ndarray:
        missing = set(hypothesis.weights) - set(self.draws.columns)
        if missing:
            raise KeyError(f"Unknown coefficient(s): {sorted(missing)}")
        values = np.zeros(len(self.draws))
        for name, weight in hypothesis.weights.items():
            values = values + weight * self.draws[name].to_numpy(dtype=float)
        return values

    def prior_sd(self, hypothesis: LinearHypothesis) -> float:
        return float(
            np.sqrt(
                sum(
                    (weight * self.prior_sds.get(name, float("nan"))) ** 2
                    for name, weight in hypothesis.weights.items()
                )
            )
        )

    def evidence_ratio(self, hypothesis: str | LinearHypothesis) -> float:
        """
        Returns the evidence ratio of `hypothesis`, or NaN if these draws
        cannot support it (unknown coefficient, no draws, degenerate
        posterior).
        """
        if isinstance(hypothesis, str):
            hypothesis = parse_hypothesis(hypothesis)

        try:
            values = self.combination(hypothesis)
        except KeyError:
            return float("nan")
        values = values[np.isfinite(values)]
        if values.size == 0:
            return float("nan")

        if hypothesis.operator == "=":
            return self._savage_dickey(values, hypothesis)
        if hypothesis.operator == ">":
            in_favour = np.mean(values > hypothesis.rhs)
        else:
            in_favour = np.mean(values < hypothesis.rhs)
        against = 1.0 - in_favour
        if against == 0:
            return float("inf")
        return float(in_favour / against)

    def _savage_dickey(
        self, values: np.ndarray, hypothesis: LinearHypothesis
    ) -> float:
        prior_sd = self.prior_sd(hypothesis)
        if not np.isfinite(prior_sd) or prior_sd <= 0:
            return float("nan")
        if values.size < 2 or np.ptp(values) == 0:
            return float("nan")
        try:
            posterior_density = gaussian_kde(values)(hypothesis.rhs)[0]
        except np.linalg.LinAlgError:
            return float("nan")
        prior_density = norm.pdf(hypothesis.rhs, loc=0.0, scale=prior_sd)
        return float(posterior_density / prior_density)
