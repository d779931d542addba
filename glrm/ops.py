from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from scipy.optimize import minimize

logger = logging.getLogger(__name__)

# Convergence tolerance of the outer proximal refinement (sup-norm of the step)
TOLERANCE = 1e-6

# Gradient-norm tolerance handed to L-BFGS
GRAD_EPS = 1e-8

Objective = Callable[[np.ndarray], tuple[float, np.ndarray]]


@dataclass(frozen=True)
class SolverResult:
    """Outcome of a smooth minimization.

    Attributes
    ----------
    coefs : ndarray
        Best iterate found.
    grad_norm : float
        Euclidean norm of the objective gradient at ``coefs``.
    obj_val : float
        Objective value at ``coefs`` (without any proximal term).
    iterations : int
        Iterations spent by the solver.
    delta : float
        Sup-norm change between ``coefs`` and the point the last solve started from.
    """

    coefs: np.ndarray
    grad_norm: float
    obj_val: float
    iterations: int
    delta: float


def max_index(u: np.ndarray, rng: np.random.Generator | None = None) -> int:
    """
    Index of the largest entry of ``u``.

    Ties are broken uniformly at random when ``rng`` is given, otherwise the
    first maximal entry wins.
    """
    u = np.asarray(u, dtype=float)
    if u.size == 0:
        raise ValueError("Cannot take the arg-max of an empty vector")
    ties = np.flatnonzero(u == np.max(u))
    if ties.size > 1 and rng is not None:
        return int(rng.choice(ties))
    return int(ties[0])


def min_index(u: np.ndarray) -> int:
    """Index of the first smallest entry of ``u``."""
    return int(np.argmin(np.asarray(u, dtype=float)))


def linf_norm(a: np.ndarray, b: np.ndarray) -> float:
    """Sup-norm of ``a - b``."""
    d = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
    return float(np.max(np.abs(d))) if d.size else 0.0


def equals_within_one_ulp(a: float, b: float) -> bool:
    """True if ``a`` and ``b`` differ by at most one unit in the last place of the larger."""
    ulp = np.spacing(max(abs(a), abs(b)))
    return abs(a - b) <= ulp


def lbfgs_solve(
    objective: Objective,
    x0: np.ndarray,
    *,
    grad_eps: float = GRAD_EPS,
    maxit: int = 15000,
) -> SolverResult:
    """
    Minimize a smooth objective with L-BFGS.

    Parameters
    ----------
    objective : callable
        Returns ``(value, gradient)`` at a point.
    x0 : ndarray
        Starting point.
    grad_eps : float
        Gradient tolerance (projected-gradient sup-norm in SciPy's L-BFGS-B).
    maxit : int
        Maximum L-BFGS iterations.

    Returns
    -------
    SolverResult
        The solver's final iterate. A solve that stops early (iteration cap,
        failed line search on a kinked objective) is not an error; its best
        iterate is returned as is.
    """
    x0 = np.asarray(x0, dtype=float).ravel()

    def fun(x):
        f, g = objective(x)
        return float(f), np.asarray(g, dtype=float)

    res = minimize(
        fun,
        x0,
        jac=True,
        method="L-BFGS-B",
        options={"gtol": grad_eps, "maxiter": maxit},
    )
    if not res.success:
        logger.debug("L-BFGS stopped early after %d iterations: %s", res.nit, res.message)

    coefs = np.asarray(res.x, dtype=float)
    f, g = fun(coefs)
    return SolverResult(
        coefs=coefs,
        grad_norm=float(np.linalg.norm(g)),
        obj_val=f,
        iterations=int(res.nit),
        delta=linf_norm(coefs, x0),
    )


def prox_solve(
    objective: Objective,
    x0: np.ndarray,
    rho: float,
    *,
    max_iterations: int = 1000,
    tol: float = TOLERANCE,
    grad_eps: float = GRAD_EPS,
    verbose: bool = False,
) -> SolverResult:
    """
    Proximal-point refinement around L-BFGS.

    Each outer step minimizes ``f(x) + (rho/2)||x - x_prev||^2`` starting from
    (and anchored at) the previous iterate, until the sup-norm change falls
    below ``tol`` or ``max_iterations`` steps have run.

    Returns
    -------
    SolverResult
        ``iterations`` counts outer steps and ``delta`` is the last step's
        sup-norm change; ``obj_val`` and ``grad_norm`` refer to ``f`` alone.
    """
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be a positive integer, got {max_iterations}")

    anchor = np.asarray(x0, dtype=float).ravel().copy()
    count = 0
    diff = 2 * tol

    while diff > tol and count < max_iterations:

        def penalized(x, anchor=anchor):
            f, g = objective(x)
            d = x - anchor
            return f + 0.5 * rho * float(d @ d), np.asarray(g, dtype=float) + rho * d

        res = lbfgs_solve(penalized, anchor, grad_eps=grad_eps)
        diff = linf_norm(res.coefs, anchor)
        anchor = res.coefs
        count += 1

    if verbose:
        logger.info("Iterations: %d\tDifference: %g", count, diff)

    f, g = objective(anchor)
    return SolverResult(
        coefs=anchor,
        grad_norm=float(np.linalg.norm(g)),
        obj_val=float(f),
        iterations=count,
        delta=float(diff),
    )
