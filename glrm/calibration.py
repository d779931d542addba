"""Per-column offsets (generalized means) and scales (generalized inverse variances).

For a column with loss L, the offset is the M-estimator

    mu = argmin_mu sum_i L(mu, a_i)

and the scale is ``(n - 1) / sum_i L(mu, a_i)`` over the ``n`` observed
entries, which reduces to one over the sample variance for quadratic loss.
Closed forms are used where they exist; otherwise the offset comes from
L-BFGS (with proximal refinement for categorical columns) and the scale from
the solver's final objective value. Losses with a closed-form offset but no
closed-form scale get their scale from one extra pass over the data.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

import numpy as np

from ._validation import _validate_period
from .column import Column
from .losses import Loss, lgrad, loss as loss_value, mlgrad, mloss
from .ops import GRAD_EPS, SolverResult, lbfgs_solve, prox_solve

logger = logging.getLogger(__name__)

# Upper bound on columns calibrated concurrently
NUM_PARALLEL_TASKS = 10


@dataclass(frozen=True)
class CalibrationResult:
    """Offset and scale of one column, with solver diagnostics.

    ``iterations`` and ``delta`` are 0 for closed forms. ``skip_scale`` is
    False when the scale needs the extra data pass.
    """

    offset: np.ndarray
    scale: float = 1.0
    iterations: int = 0
    delta: float = 0.0
    objective: float | None = None
    skip_scale: bool = True

    @classmethod
    def identity(cls, column: Column) -> CalibrationResult:
        """Zero offset and unit scale, the values used when calibration is off."""
        size = column.cardinality if column.categorical else 1
        return cls(offset=np.zeros(size), scale=1.0)


def closed_form_offset(loss: Loss) -> bool:
    """Is there a closed form for the M-estimator? If not, L-BFGS is needed."""
    return Loss.coerce(loss).closed_form_offset


def closed_form_scale(loss: Loss) -> bool:
    return Loss.coerce(loss).closed_form_scale


def _check_column_loss(column: Column, loss: Loss) -> Loss:
    loss = Loss.coerce(loss)
    if loss.for_numeric and column.categorical:
        raise ValueError(f"Loss function {loss.value} not applicable to categorical column {column.label}")
    if loss.for_categorical and column.is_numeric:
        raise ValueError(f"Loss function {loss.value} not applicable to numeric column {column.label}")
    return loss


# ----------------------------------------------------------------------
# Closed forms
# ----------------------------------------------------------------------
def period_offset(values: np.ndarray, period: int) -> float:
    """
    Circular mean of ``values`` on a circle of circumference ``period``.

    This minimizes sum_i 1 - cos(2 pi (a_i - mu) / period); the result lies in ``[0, period)``.
    """
    _validate_period(period)
    w = 2 * np.pi / period
    values = np.asarray(values, dtype=float)
    angle = np.arctan2(np.sum(np.sin(w * values)), np.sum(np.cos(w * values)))
    return float(np.mod(angle / w, period))


def _hinge_offset(column: Column, period: int) -> float:
    ones = column.nz_count()
    zeros = len(column) - column.na_count() - ones
    return 1.0 if ones > zeros else 0.0


def _poisson_offset(column: Column, period: int) -> float:
    if np.any(column.observed < 0):
        raise ValueError(f"Poisson loss L(u,a) requires variable a >= 0, column {column.label} has negative values")
    with np.errstate(divide="ignore"):
        return float(np.log(column.mean()))


_OFFSET_REDUCERS = {
    Loss.QUADRATIC: lambda column, period: column.mean(),
    Loss.ABSOLUTE: lambda column, period: column.median(),
    # The mean is not the Huber M-estimator, but it is close and cheap
    Loss.HUBER: lambda column, period: column.mean(),
    Loss.POISSON: _poisson_offset,
    Loss.HINGE: _hinge_offset,
    Loss.PERIODIC: lambda column, period: period_offset(column.observed, period),
}


# ----------------------------------------------------------------------
# Smooth objectives handed to L-BFGS
# ----------------------------------------------------------------------
def _numeric_objective(column: Column, loss: Loss, period: int):
    a = column.observed

    def objective(x):
        u = float(x[0])
        f = float(np.sum(loss_value(u, a, loss, period)))
        g = float(np.sum(lgrad(u, a, loss, period)))
        return f, np.array([g])

    return objective


def _categorical_objective(column: Column, multi_loss: Loss):
    counts = np.bincount(column.observed.astype(np.int64), minlength=column.cardinality)
    levels = np.flatnonzero(counts)

    # sum over rows collapses to a count-weighted sum over observed levels
    def objective(u):
        f = 0.0
        g = np.zeros(column.cardinality)
        for j in levels:
            f += counts[j] * mloss(u, j, multi_loss)
            g += counts[j] * mlgrad(u, j, multi_loss)
        return f, g

    return objective


def _start_one_hot(column: Column) -> np.ndarray:
    coefs = np.zeros(column.cardinality)
    coefs[min(column.mode(), column.cardinality - 1)] = 1.0
    return coefs


def _solve_numeric(column: Column, loss: Loss, period: int) -> SolverResult:
    return lbfgs_solve(_numeric_objective(column, loss, period), np.array([column.mean()]), grad_eps=GRAD_EPS)


def _solve_categorical(
    column: Column,
    multi_loss: Loss,
    *,
    rho: float,
    max_iterations: int,
    verbose: bool,
) -> SolverResult:
    objective = _categorical_objective(column, multi_loss)
    x0 = _start_one_hot(column)
    if rho > 0:
        return prox_solve(objective, x0, rho, max_iterations=max_iterations, verbose=verbose)
    return lbfgs_solve(objective, x0, grad_eps=GRAD_EPS)


def _scale_from_objective(column: Column, obj_val: float) -> float:
    nobs = len(column) - column.na_count()
    return (nobs - 1) / obj_val if obj_val != 0 else 1.0


# ----------------------------------------------------------------------
# Single-statistic entry points
# ----------------------------------------------------------------------
def column_offset(column: Column, loss: Loss, *, period: int = 1) -> float:
    """Generalized mean of a numeric column."""
    loss = _check_column_loss(column, loss)
    if loss is Loss.PERIODIC:
        _validate_period(period)
    reducer = _OFFSET_REDUCERS.get(loss)
    if reducer is not None:
        return float(reducer(column, period))
    return float(_solve_numeric(column, loss, period).coefs[0])


def column_moffset(
    column: Column,
    multi_loss: Loss,
    *,
    rho: float = 0.0,
    max_iterations: int = 1000,
) -> np.ndarray:
    """Generalized mean of a categorical column, one entry per level."""
    multi_loss = _check_column_loss(column, multi_loss)
    res = _solve_categorical(column, multi_loss, rho=rho, max_iterations=max_iterations, verbose=False)
    return res.coefs


def column_scale(column: Column, loss: Loss) -> float:
    """
    Closed-form generalized inverse variance.

    Only quadratic loss has one: one over the sample variance, or 1.0 for a
    constant column.

    Raises
    ------
    NotImplementedError
        For every loss without a closed-form scale.
    """
    loss = _check_column_loss(column, loss)
    if not loss.closed_form_scale:
        raise NotImplementedError(f"Generalized column variance not available for loss function {loss.value}")
    sigma = column.sigma()
    return 1.0 / (sigma * sigma) if sigma != 0 else 1.0


def loss_scale_pass(
    columns: Sequence[Column],
    losses: Sequence[Loss],
    offsets: Sequence[np.ndarray],
    *,
    period: int = 1,
) -> list[float]:
    """
    Scales of columns whose offset was closed-form but whose scale is not.

    Accumulates ``sum_i L(offset, a_i)`` per column in a single sweep and
    returns ``(n - 1) / total`` (1.0 when the total is zero).
    """
    if not (len(columns) == len(losses) == len(offsets)):
        raise ValueError("columns, losses and offsets must have the same length")

    scales = []
    for column, loss, offset in zip(columns, losses, offsets):
        loss = _check_column_loss(column, loss)
        offset = np.asarray(offset, dtype=float).ravel()
        if column.categorical:
            counts = np.bincount(column.observed.astype(np.int64), minlength=column.cardinality)
            total = sum(counts[j] * mloss(offset, j, loss) for j in np.flatnonzero(counts))
        else:
            total = float(np.sum(loss_value(offset[0], column.observed, loss, period)))
        scales.append(_scale_from_objective(column, float(total)))
    return scales


# ----------------------------------------------------------------------
# Column and table calibration
# ----------------------------------------------------------------------
def _solve_column(
    column: Column,
    loss: Loss,
    *,
    scale: bool,
    period: int,
    rho: float,
    max_iterations: int,
    verbose: bool,
) -> CalibrationResult:
    loss = _check_column_loss(column, loss)
    if loss is Loss.PERIODIC:
        _validate_period(period)

    skip_scale = loss.closed_form_scale or not loss.closed_form_offset
    if column.observed.size == 0:
        logger.debug("Column %s has no observed values; using identity offset/scale", column.label)
        return replace(CalibrationResult.identity(column), skip_scale=True)

    if loss.closed_form_offset:
        offset = np.array([column_offset(column, loss, period=period)])
        result = CalibrationResult(offset=offset, skip_scale=skip_scale)
    else:
        # Offset and scale both come out of the L-BFGS solution
        if column.categorical:
            res = _solve_categorical(column, loss, rho=rho, max_iterations=max_iterations, verbose=verbose)
        else:
            res = _solve_numeric(column, loss, period)
        result = CalibrationResult(
            offset=res.coefs,
            scale=_scale_from_objective(column, res.obj_val) if scale else 1.0,
            iterations=res.iterations,
            delta=res.delta,
            objective=res.obj_val,
            skip_scale=skip_scale,
        )

    if scale and loss.closed_form_scale:
        result = replace(result, scale=column_scale(column, loss))

    logger.debug(
        "Calibrated column %s (%s): iterations=%d delta=%g",
        column.label,
        loss.value,
        result.iterations,
        result.delta,
    )
    return result


def calibrate_column(
    column: Column,
    loss: Loss,
    *,
    period: int = 1,
    rho: float = 1e-5,
    max_iterations: int = 1000,
    verbose: bool = False,
) -> CalibrationResult:
    """
    Offset and scale of a single column.

    Parameters
    ----------
    column : Column
    loss : Loss
        Must match the column type (numeric loss on numeric column, etc.).
    period : int
        Period of the Periodic loss.
    rho : float
        Weight of the proximal term in the categorical refinement; 0 disables it.
    max_iterations : int
        Cap on proximal refinement steps.
    verbose : bool
        Log refinement progress at INFO.

    Returns
    -------
    CalibrationResult
    """
    result = _solve_column(
        column,
        loss,
        scale=True,
        period=period,
        rho=rho,
        max_iterations=max_iterations,
        verbose=verbose,
    )
    if not result.skip_scale:
        (scale,) = loss_scale_pass([column], [loss], [result.offset], period=period)
        result = replace(result, scale=scale)
    return result


def set_offset_scale(
    columns: Sequence[Column],
    losses: Sequence[Loss],
    *,
    offset: bool = False,
    scale: bool = False,
    period: int = 1,
    rho: float = 1e-5,
    max_iterations: int = 1000,
    verbose: bool = False,
    max_workers: int = NUM_PARALLEL_TASKS,
) -> list[CalibrationResult]:
    """
    Calibrate every column of a table.

    Columns are solved independently on a thread pool of at most
    ``max_workers`` threads. The returned list always holds one result per
    column: offsets are zero when ``offset`` is False and scales are 1 when
    ``scale`` is False.
    """
    if len(losses) != len(columns):
        raise ValueError(f"Number of losses {len(losses)} != {len(columns)}")
    losses = [_check_column_loss(c, l) for c, l in zip(columns, losses)]

    if not offset and not scale:
        return [CalibrationResult.identity(c) for c in columns]

    def solve(pair):
        column, loss = pair
        return _solve_column(
            column,
            loss,
            scale=scale,
            period=period,
            rho=rho,
            max_iterations=max_iterations,
            verbose=verbose,
        )

    n_workers = max(1, min(max_workers, len(columns)))
    with concurrent.futures.ThreadPoolExecutor(max_workers=n_workers) as executor:
        solved = list(executor.map(solve, zip(columns, losses)))

    # Extra pass where L-BFGS was not applied and no closed-form scale exists
    if scale:
        pending = [i for i, r in enumerate(solved) if not r.skip_scale]
        if pending:
            scales = loss_scale_pass(
                [columns[i] for i in pending],
                [losses[i] for i in pending],
                [solved[i].offset for i in pending],
                period=period,
            )
            for i, s in zip(pending, scales):
                solved[i] = replace(solved[i], scale=s)

    results = []
    for column, r in zip(columns, solved):
        if not offset:
            r = replace(r, offset=CalibrationResult.identity(column).offset)
        if not scale:
            r = replace(r, scale=1.0)
        results.append(r)
    return results
