"""
Sum-to-zero contrast codes for the two within-participant factors.

Levels are listed in factor order. Context codes its first level as -0.5,
task codes its first level as +0.5: the interaction coefficient estimated by
the fit backends is only positive for a positive generating interaction if
both the generator and the fit use these exact codes.
"""

import pandas as pd

CONTEXT_LEVELS = ("al", "ar")
TASK_LEVELS = ("contrasting", "matching")

CONTRASTS = {
    "context": dict(zip(CONTEXT_LEVELS, (-0.5, 0.5))),
    "task": dict(zip(TASK_LEVELS, (0.5, -0.5))),
}

CODE_COLUMNS = {"context": "X_context", "task": "X_task"}


def encode(level: str, factor: str) -> float:
    """
    Returns the numeric contrast of `level` for `factor` ("context" or "task").

    Raises:
        KeyError: if the factor or the level is unknown.
    """
    return CONTRASTS[factor][level]


def encode_frame(df: pd.DataFrame) -> pd.DataFrame:
    """
    Adds the `X_context` and `X_task` code columns to a frame that holds
    `context` and `task` level columns.
    """
    out = df.copy()
    for factor, column in CODE_COLUMNS.items():
        codes = out[factor].map(CONTRASTS[factor])
        if codes.isna().any():
            unknown = sorted(set(out.loc[codes.isna(), factor].astype(str)))
            raise KeyError(f"Unknown {factor} level(s): {unknown}")
        out[column] = codes.astype(float)
    return out
