"""Shared fixtures for the lqrtrees test suite."""

import jax
import numpy as np
import pytest

# Derivatives are compared against analytic ones in double precision.
jax.config.update("jax_enable_x64", True)


def _random_spd(rng, size, floor):
    L = rng.uniform(-1.0, 1.0, (size, size))
    return L.dot(L.T) + floor * np.eye(size)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def make_problem(rng):
    """Factory for random linear-quadratic problems.

    The state transition matrix is scaled to a spectral radius of at most 1
    so that long rollouts stay bounded.
    """

    def make(state_size, action_size):
        A = rng.uniform(-1.0, 1.0, (state_size, state_size))
        radius = np.max(np.abs(np.linalg.eigvals(A)))
        if radius > 1.0:
            A /= radius
        B = rng.uniform(-1.0, 1.0, (state_size, action_size))
        Q = _random_spd(rng, state_size, 0.1)
        R = _random_spd(rng, action_size, 0.1)
        x0 = rng.uniform(-1.0, 1.0, state_size)
        return A, B, Q, R, x0

    return make
