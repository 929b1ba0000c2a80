"""
Polya-Gamma random variates.

A PG(b, z) variable has the infinite-sum representation

    omega = 1 / (2 pi^2) * sum_{m >= 1} g_m / ((m - 1/2)^2 + z^2 / (4 pi^2)),
    g_m ~ Gamma(b, 1) independently.

Sampling keeps the first ``truncation`` terms and adds back the expected
value of the discarded tail, so draws have the exact mean and a slightly
reduced variance. PG variables with a common tilt z add up in their first
parameter: the sum of n independent PG(1, z) draws is PG(n, z).
"""

import numpy as np


def _tail_sum(scaled_z: np.ndarray, truncation: int) -> np.ndarray:
    """Approximate sum_{m > M} 1 / ((m - 1/2)^2 + s^2) by its midpoint integral."""
    safe = np.where(scaled_z > 1e-12, scaled_z, 1.0)
    return np.where(scaled_z > 1e-12, np.arctan2(safe, truncation) / safe, 1.0 / truncation)


def sample_polya_gamma(b, z, rng: np.random.Generator, truncation: int = 200) -> np.ndarray:
    """
    Draw Polya-Gamma variates PG(b, z), elementwise over broadcast inputs.

    Args:
        b: Non-negative shape parameter(s); b = 0 gives 0
        z: Tilt parameter(s); only |z| matters
        rng: Random number generator
        truncation: Number of series terms drawn explicitly

    Returns:
        Array of draws with the broadcast shape of ``b`` and ``z``.
    """
    b, z = np.broadcast_arrays(np.asarray(b, dtype=float), np.abs(np.asarray(z, dtype=float)))
    if np.any(b < 0):
        raise ValueError("Polya-Gamma shape parameter b must be non-negative")

    scaled_z = z / (2 * np.pi)
    half_integers = np.arange(1, truncation + 1) - 0.5
    denominators = half_integers ** 2 + scaled_z[..., None] ** 2

    gammas = rng.gamma(shape=b[..., None], size=b.shape + (truncation,))
    series = (gammas / denominators).sum(axis=-1)
    tail = b * _tail_sum(scaled_z, truncation)
    return (series + tail) / (2 * np.pi ** 2)


def polya_gamma_mean(b, z) -> np.ndarray:
    """E[PG(b, z)] = b / (2z) tanh(z / 2), with the limit b / 4 at z = 0."""
    b, z = np.broadcast_arrays(np.asarray(b, dtype=float), np.abs(np.asarray(z, dtype=float)))
    safe = np.where(z > 1e-8, z, 1.0)
    return np.where(z > 1e-8, b / (2 * safe) * np.tanh(safe / 2), b / 4.0)
