"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def independent_data(rng):
    """Independent normal x and y, n = 300."""
    n = 300
    return rng.standard_normal(n), rng.standard_normal(n)


@pytest.fixture
def sine_data(rng):
    """Oscillating dependence y = sin(5 pi x) + noise, n = 300."""
    n = 300
    x = rng.uniform(0.0, 1.0, n)
    y = np.sin(5.0 * np.pi * x) + 0.1 * rng.standard_normal(n)
    return x, y


@pytest.fixture
def bivariate_data(rng):
    """dx = dy = 2 sample where only (x1, y0) is dependent."""
    n = 400
    x = rng.standard_normal((n, 2))
    y = rng.standard_normal((n, 2))
    y[:, 0] = x[:, 1] ** 2 + 0.2 * rng.standard_normal(n)
    return x, y
