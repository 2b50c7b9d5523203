import numpy as np

from bfpower.backends import compile_model, fit_or_update
from bfpower.config import DEFAULT_DGP, EXPLORATION_GRID, ParallelConfig
from bfpower.dgps import simulate_trials, summarise_trials
from bfpower.hypotheses import evaluate
from bfpower.tasks.replication import ContextTaskReplication
from bfpower.utils import (
    betas_to_interaction,
    betas_to_proportions,
    sample_interaction,
)

# what the assumed fixed effects mean on the probability scale
b = DEFAULT_DGP.fixed_effects
print(betas_to_proportions(b.intercept, b.context, b.task, b.interaction))
print(
    "Interaction contrast for effects 0.06 to 0.13:",
    betas_to_interaction(0, 0, 0, np.round(np.arange(0.06, 0.14, 0.01), 2)),
)

# one simulated dataset, summarised as the fit backends consume it
trials = simulate_trials(DEFAULT_DGP, rng=14051998)
summary = summarise_trials(trials)
print(summary.head(8))
print("Observed interaction contrast:", sample_interaction(summary))

# a quick variational fit; swap the backend for "backend::pymc" to sample
parallel = ParallelConfig(cores_per_fit=2)
handle = compile_model(
    sampler=parallel.sampler(total_draws=4_000),
    backend="backend::statsmodels_vb",
)
print(evaluate(fit_or_update(handle, summary, seed=1)))

# a small power landscape and the designs it supports
replication = ContextTaskReplication(
    model_handle=handle, n_jobs=parallel.resolve_workers()
)
replication.fit(EXPLORATION_GRID)
print(replication.landscape_)
print(
    replication.predict_n(effect_size=0.2, n_trials=100, power=0.5),
    replication.predict_mde(n_participants=40, n_trials=100, power=0.5),
)
