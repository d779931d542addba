"""Input validation and sanitization helpers for glrm.

This module provides standardized validation functions to ensure consistent
input handling across the kernels and improve error message quality.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np


def _validate_period(period: Any, *, name: str = "period") -> int:
    """Validate the period of the Periodic loss.

    Raises
    ------
    ValueError
        If ``period`` is not a positive integer.
    """
    try:
        p_int = int(period)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be a positive integer, got {type(period).__name__}") from e
    if p_int != period or p_int <= 0:
        raise ValueError(
            f"{name} must be a positive integer, got {period}. "
            f"Try {name}=24 for hourly data with a daily cycle."
        )
    return p_int


def _validate_rank_parameter(k: Any, *, name: str = "k") -> int:
    """Validate and convert the rank of the factorization.

    Parameters
    ----------
    k : int-like
        Rank, i.e. number of columns of X and rows of Y.
    name : str, optional
        Parameter name for error messages.

    Returns
    -------
    int
        Validated rank.

    Raises
    ------
    ValueError
        If k is not a positive integer.
    """
    try:
        k_int = int(k)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be an integer, got {type(k).__name__}") from e

    if k_int != k:
        raise ValueError(f"{name} must be an integer, got {k}")
    if k_int < 1:
        raise ValueError(f"{name}={k_int} must be at least 1.")
    return k_int


def _sanitize_regularization_params(
    gamma_x: float | None = None,
    gamma_y: float | None = None,
) -> tuple[float, float]:
    """Validate and sanitize regularization weights.

    Returns
    -------
    tuple[float, float]
        Validated (gamma_x, gamma_y); ``None`` maps to 0.

    Raises
    ------
    ValueError
        If a weight is negative or not a number.
    """
    out = []
    for name, value in (("gamma_x", gamma_x), ("gamma_y", gamma_y)):
        if value is None:
            out.append(0.0)
            continue
        if not isinstance(value, (int, float, np.floating, np.integer)) or value < 0:
            raise ValueError(
                f"{name} must be non-negative, got {value}. "
                f"Try {name}=0 to disable regularization."
            )
        out.append(float(value))
    return out[0], out[1]


def _validate_convergence_params(
    max_iterations: Any = None,
    rho: Any = None,
    init_step_size: Any = None,
    min_step_size: Any = None,
) -> dict[str, int | float]:
    """Validate solver and step-size parameters.

    Parameters
    ----------
    max_iterations : int, optional
        Cap on iterations of iterative solves.
    rho : float, optional
        Weight of the proximal penalty term.
    init_step_size, min_step_size : float, optional
        Step-size bounds of the alternating minimization.

    Returns
    -------
    dict
        Validated parameters.
    """
    params: dict[str, int | float] = {}

    if max_iterations is not None:
        if isinstance(max_iterations, bool) or not isinstance(max_iterations, (int, np.integer)) or max_iterations < 1:
            raise ValueError(
                f"max_iterations must be a positive integer, got {max_iterations}. "
                f"Try max_iterations=1000 for typical problems."
            )
        params["max_iterations"] = int(max_iterations)

    if rho is not None:
        if not isinstance(rho, (int, float, np.floating)) or rho < 0:
            raise ValueError(
                f"rho must be non-negative, got {rho}. "
                f"Try rho=1e-5 for a light proximal penalty."
            )
        params["rho"] = float(rho)

    for name, value in (("init_step_size", init_step_size), ("min_step_size", min_step_size)):
        if value is None:
            continue
        if not isinstance(value, (int, float, np.floating)) or value <= 0:
            raise ValueError(f"{name} must be positive, got {value}.")
        params[name] = float(value)

    if "init_step_size" in params and "min_step_size" in params:
        if params["min_step_size"] > params["init_step_size"]:
            raise ValueError(
                f"min_step_size ({params['min_step_size']}) must not exceed "
                f"init_step_size ({params['init_step_size']})."
            )

    return params


def _validate_loss_by_col(
    loss_by_col: Sequence[Any] | None,
    loss_by_col_idx: Sequence[Any] | None,
) -> None:
    """Check per-column loss overrides line up with their column indices."""
    if loss_by_col is None:
        if loss_by_col_idx is not None:
            raise ValueError("loss_by_col_idx was given without loss_by_col")
        return
    if loss_by_col_idx is not None:
        if len(loss_by_col_idx) != len(loss_by_col):
            raise ValueError(
                f"loss_by_col has {len(loss_by_col)} entries but loss_by_col_idx has {len(loss_by_col_idx)}. "
                f"Provide one column index per loss override."
            )
        if len(set(int(i) for i in loss_by_col_idx)) != len(loss_by_col_idx):
            raise ValueError("loss_by_col_idx must not repeat a column index")
        if any(int(i) < 0 for i in loss_by_col_idx):
            raise ValueError("loss_by_col_idx must hold non-negative column indices")


def _validate_loading_matrix(X: Any, *, k: int | None = None, name: str = "X") -> np.ndarray:
    """Validate and convert a loading (row factor) matrix to a 2D float array."""
    try:
        X_arr = np.asarray(X.to_numpy() if hasattr(X, "to_numpy") else X, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} cannot be converted to numeric array: {e}") from e

    if X_arr.ndim == 1:
        X_arr = X_arr[None, :]
    elif X_arr.ndim != 2:
        raise ValueError(f"{name} must be 1D or 2D, got {X_arr.ndim}D with shape {X_arr.shape}.")

    if k is not None and X_arr.shape[1] != k:
        raise ValueError(f"{name} has {X_arr.shape[1]} columns but the rank is {k}.")
    return X_arr


def _validate_data_matrix(A: Any, *, nrows: int, ncols: int, name: str = "A") -> np.ndarray:
    """Validate the observed table used for scoring: one row per row of X."""
    try:
        A_arr = np.asarray(A.to_numpy() if hasattr(A, "to_numpy") else A, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} cannot be converted to numeric array: {e}") from e

    if A_arr.ndim == 1:
        A_arr = A_arr[:, None]
    if A_arr.ndim != 2 or A_arr.shape != (nrows, ncols):
        raise ValueError(
            f"{name} must have shape ({nrows}, {ncols}), got {A_arr.shape}. "
            f"All inputs must have the same number of rows."
        )
    return A_arr
