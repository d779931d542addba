"""Regularizers r(x) on a single row of X or column of Y, and their proximal maps.

A regularizer that encodes a hard constraint (NonNegative, OneSparse,
UnitOneSparse, Simplex) is the indicator of its feasible set: 0 inside and
``inf`` outside. Infeasibility is a value, never an exception.

Common pairings:
    NNMF                 r_x = r_y = NonNegative
    Orthogonal NNMF      r_x = OneSparse, r_y = NonNegative
    K-means clustering   r_x = UnitOneSparse, r_y = None (or gamma_y = 0)
    Quadratic mixture    r_x = Simplex, r_y = None (or gamma_y = 0)
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

import numpy as np

from .ops import equals_within_one_ulp, max_index

# Value given to the surviving entry of a OneSparse projection when no entry is positive
ONE_SPARSE_EPS = 1e-6


class Regularizer(Enum):
    NONE = "None"
    QUADRATIC = "Quadratic"
    L2 = "L2"
    L1 = "L1"
    NON_NEGATIVE = "NonNegative"
    ONE_SPARSE = "OneSparse"
    UNIT_ONE_SPARSE = "UnitOneSparse"
    SIMPLEX = "Simplex"

    @classmethod
    def coerce(cls, value: Any) -> Regularizer:
        """Accept a ``Regularizer``, its (case-insensitive) name, or ``None``."""
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "")
            for member in cls:
                if key in (member.value.lower(), member.name.lower().replace("_", "")):
                    return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown regularization function {value!r}; expected one of {valid}")

    @property
    def is_constraint(self) -> bool:
        """True if the regularizer is the indicator of a feasible set."""
        return self in _CONSTRAINTS


_CONSTRAINTS = frozenset(
    {
        Regularizer.NON_NEGATIVE,
        Regularizer.ONE_SPARSE,
        Regularizer.UNIT_ONE_SPARSE,
        Regularizer.SIMPLEX,
    }
)


# ----------------------------------------------------------------------
# Penalties
# ----------------------------------------------------------------------
def _none_penalty(u):
    return 0.0


def _quadratic_penalty(u):
    return float(u @ u)


def _l2_penalty(u):
    return float(np.sqrt(u @ u))


def _l1_penalty(u):
    return float(np.sum(np.abs(u)))


def _non_negative_penalty(u):
    return math.inf if np.any(u < 0) else 0.0


def _one_sparse_penalty(u):
    if np.any(u < 0):
        return math.inf
    return 0.0 if np.count_nonzero(u > 0) == 1 else math.inf


def _unit_one_sparse_penalty(u):
    ones = np.count_nonzero(u == 1)
    zeros = np.count_nonzero(u == 0)
    return 0.0 if ones == 1 and zeros == u.shape[0] - 1 else math.inf


def _simplex_penalty(u):
    if np.any(u < 0):
        return math.inf
    return 0.0 if equals_within_one_ulp(math.fsum(u), 1.0) else math.inf


# ----------------------------------------------------------------------
# Proximal operators: argmin_v gamma r(v) + ||v - u||^2 / (2 alpha)
# ----------------------------------------------------------------------
def _none_prox(u, alpha, gamma, rng):
    return u


def _quadratic_prox(u, alpha, gamma, rng):
    return u / (1 + 2 * alpha * gamma)


def _l2_prox(u, alpha, gamma, rng):
    # Moreau decomposition, see Parikh and Boyd, Proximal Algorithms, section 6.5.1
    norm = float(np.sqrt(u @ u))
    if norm == 0:
        return np.zeros_like(u)
    weight = 1 - alpha * gamma / norm
    if weight < 0:
        return np.zeros_like(u)
    return weight * u


def _l1_prox(u, alpha, gamma, rng):
    t = alpha * gamma
    return np.maximum(u - t, 0) + np.minimum(u + t, 0)


def _non_negative_prox(u, alpha, gamma, rng):
    return np.maximum(u, 0)


def _one_sparse_prox(u, alpha, gamma, rng):
    v = np.zeros_like(u)
    idx = max_index(u, rng)
    v[idx] = u[idx] if u[idx] > 0 else ONE_SPARSE_EPS
    return v


def _unit_one_sparse_prox(u, alpha, gamma, rng):
    v = np.zeros_like(u)
    v[max_index(u, rng)] = 1.0
    return v


def _simplex_prox(u, alpha, gamma, rng):
    """
    Euclidean projection onto the probability simplex.

    Chen and Ye, "Projection onto a simplex" (arXiv:1101.6081): sort ascending,
    take suffix sums, and pick the first admissible shift scanning down from
    the largest entry.
    """
    n = u.shape[0]
    s = np.sort(u, kind="stable")
    suffix = np.cumsum(s[::-1])[::-1]

    t = (suffix[0] - 1) / n
    for i in range(n - 1, 0, -1):
        tmp = (suffix[i] - 1) / (n - i)
        if tmp >= s[i - 1]:
            t = tmp
            break
    v = np.maximum(u - t, 0)
    # largest entry absorbs the rounding residue of the sum
    idx = int(np.argmax(v))
    v[idx] = 1.0 - math.fsum(np.delete(v, idx))
    return v


_PENALTIES: dict[Regularizer, Callable[[np.ndarray], float]] = {
    Regularizer.NONE: _none_penalty,
    Regularizer.QUADRATIC: _quadratic_penalty,
    Regularizer.L2: _l2_penalty,
    Regularizer.L1: _l1_penalty,
    Regularizer.NON_NEGATIVE: _non_negative_penalty,
    Regularizer.ONE_SPARSE: _one_sparse_penalty,
    Regularizer.UNIT_ONE_SPARSE: _unit_one_sparse_penalty,
    Regularizer.SIMPLEX: _simplex_penalty,
}

_PROXES: dict[Regularizer, Callable[..., np.ndarray]] = {
    Regularizer.NONE: _none_prox,
    Regularizer.QUADRATIC: _quadratic_prox,
    Regularizer.L2: _l2_prox,
    Regularizer.L1: _l1_prox,
    Regularizer.NON_NEGATIVE: _non_negative_prox,
    Regularizer.ONE_SPARSE: _one_sparse_prox,
    Regularizer.UNIT_ONE_SPARSE: _unit_one_sparse_prox,
    Regularizer.SIMPLEX: _simplex_prox,
}


def _lookup(table, regularizer):
    if isinstance(regularizer, str) or regularizer is None:
        try:
            regularizer = Regularizer.coerce(regularizer)
        except ValueError:
            pass
    fn = table.get(regularizer) if isinstance(regularizer, Regularizer) else None
    if fn is None:
        raise RuntimeError(f"Unknown regularization function {regularizer}")
    return fn


# ----------------------------------------------------------------------
# Public kernel
# ----------------------------------------------------------------------
def regularize(u, regularizer: Regularizer) -> float:
    """r(u): penalty of a single row/column vector; ``inf`` when infeasible."""
    fn = _lookup(_PENALTIES, regularizer)
    if u is None:
        return 0.0
    return fn(np.asarray(u, dtype=float).ravel())


def regularize_matrix(rows: Iterable[Any] | None, regularizer: Regularizer) -> float:
    """
    Sum of r over the rows of a matrix (rows of X, or columns of Y passed as rows).

    Stops at the first infeasible row and returns ``inf``.
    """
    fn = _lookup(_PENALTIES, regularizer)
    if rows is None or fn is _none_penalty:
        return 0.0
    total = 0.0
    for row in rows:
        total += fn(np.asarray(row, dtype=float).ravel())
        if math.isinf(total):
            return total
    return total


def rproxgrad(
    u,
    alpha: float,
    gamma: float,
    regularizer: Regularizer,
    rng: np.random.Generator | None = None,
):
    """
    prox_{alpha * gamma * r}(u).

    Parameters
    ----------
    u : array-like or None
        Point to map; returned unchanged when ``None``.
    alpha : float
        Step size. ``u`` is returned unchanged when zero.
    gamma : float
        Regularization weight. ``u`` is returned unchanged when zero.
    regularizer : Regularizer
    rng : numpy.random.Generator, optional
        Breaks arg-max ties for OneSparse/UnitOneSparse; first index wins if omitted.
    """
    fn = _lookup(_PROXES, regularizer)
    if u is None or alpha == 0 or gamma == 0:
        return u
    return fn(np.asarray(u, dtype=float).ravel().copy(), alpha, gamma, rng)


def project(u, regularizer: Regularizer, rng: np.random.Generator | None = None):
    """
    Project ``u`` onto the domain where ``regularizer`` is finite.

    Used when initializing X and Y. Unconstrained regularizers return ``u``
    as is; Simplex skips the sort when ``u`` is already feasible.
    """
    _lookup(_PROXES, regularizer)
    regularizer = Regularizer.coerce(regularizer)
    if u is None or not regularizer.is_constraint:
        return u
    if regularizer is Regularizer.SIMPLEX and regularize(u, regularizer) == 0:
        return u
    # Indicator functions are invariant to positive scaling, so unit step and weight
    return rproxgrad(u, 1.0, 1.0, regularizer, rng)
