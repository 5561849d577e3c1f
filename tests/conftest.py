"""
Shared fixtures: random generators, posterior estimates and a mocked SPM session.
"""

import matplotlib
import numpy as np
import pytest

from sysobs.invert import Posterior
from sysobs.model import default_priors

matplotlib.use('Agg')


@pytest.fixture
def rng():
    """A freshly seeded random generator, so each test is reproducible."""
    return np.random.default_rng(1234)


@pytest.fixture
def observer_posterior():
    """
    Posterior of an inversion in which only the observation gain differs between channels.

    The posterior places the observer offset `dk` far from zero and the system offset `da` at
    zero, both with small posterior variance.
    """
    prior_mean, prior_cov = default_priors()
    post_mean = prior_mean.replace(a=1.1, dk=0.5)
    post_cov = np.eye(len(post_mean)) * 0.001
    return Posterior(post_mean.to_vector(), post_cov, prior_mean.to_vector(), prior_cov, -120.0)
