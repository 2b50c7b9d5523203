import math

import catalogue

from .posterior import PosteriorSummary
from .types import EvidenceRatios

hypotheses = catalogue.create("bfpower", "hypotheses")

INTERACTION = "context:task"


@hypotheses.register("hypothesis::two_sided")
def two_sided(summary: PosteriorSummary, term: str = INTERACTION) -> float:
    """
    BF10 for `term != 0` against `term = 0`, the inverse of the Savage-Dickey
    evidence ratio of the point null.
    """
    bf01 = summary.evidence_ratio(f"{term} = 0")
    if math.isnan(bf01):
        return float("nan")
    if bf01 == 0:
        return float("inf")
    return 1.0 / bf01


@hypotheses.register("hypothesis::one_sided")
def one_sided(summary: PosteriorSummary, term: str = INTERACTION) -> float:
    """
    Posterior odds of `term > 0` against `term <= 0`. Only meaningful when the
    simulated effect is non-negative.
    """
    return summary.evidence_ratio(f"{term} > 0")


def evaluate(summary: PosteriorSummary, term: str = INTERACTION) -> EvidenceRatios:
    return EvidenceRatios(
        two_sided=hypotheses.get("hypothesis::two_sided")(summary, term),
        one_sided=hypotheses.get("hypothesis::one_sided")(summary, term),
    )
