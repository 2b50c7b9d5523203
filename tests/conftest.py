import numpy as np
import pandas as pd
import pytest

from bfpower.backends import ModelHandle, SamplerConfig, backends
from bfpower.posterior import TERMS, PosteriorSummary
from bfpower.utils import sample_interaction


def pytest_addoption(parser):
    parser.addoption(
        "--runslow", action="store_true", default=False, help="run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--runslow"):
        return
    skip_slow = pytest.mark.skip(reason="needs --runslow")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@backends.register("backend::test_observed_contrast")
def observed_contrast_backend(handle, data, seed=None) -> PosteriorSummary:
    """
    Cheap stand-in for a model fit: the interaction "posterior" is centred on
    the observed interaction contrast, with a fixed spread.
    """
    rng = np.random.default_rng(seed)
    draws = pd.DataFrame(
        rng.normal(0.0, 0.05, size=(handle.sampler.total_draws, len(TERMS))),
        columns=list(TERMS),
    )
    draws["context:task"] += 4 * sample_interaction(data)
    return PosteriorSummary(
        draws=draws, prior_sds={term: 0.1 for term in TERMS}
    )


@pytest.fixture
def fast_handle() -> ModelHandle:
    return ModelHandle(
        backend="backend::test_observed_contrast",
        sampler=SamplerConfig(total_draws=2_000, chains=1, cores=1),
    )
