"""Configuration and model-level entry points for the GLRM kernel."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, fields
from typing import Any

import numpy as np

from ._validation import (
    _sanitize_regularization_params,
    _validate_convergence_params,
    _validate_loss_by_col,
    _validate_period,
    _validate_rank_parameter,
)
from .calibration import NUM_PARALLEL_TASKS, CalibrationResult, set_offset_scale
from .column import Column, adapt_columns
from .losses import Loss
from .metrics import GLRMMetrics
from .regularizers import Regularizer, project, regularize, regularize_matrix, rproxgrad
from .scoring import Archetypes, score

logger = logging.getLogger(__name__)


@dataclass
class GLRMParameters:
    """
    Settings shared by the kernels.

    Parameters
    ----------
    k : int
        Rank of the factorization.
    loss : Loss
        Default loss for numeric columns.
    multi_loss : Loss
        Default loss for categorical columns.
    period : int
        Period of the Periodic loss.
    loss_by_col, loss_by_col_idx : sequences, optional
        Per-column loss overrides and the (original) column indices they apply to.
    offset : bool
        Include a per-column offset in the loss.
    scale : bool
        Weight each column's loss by its generalized inverse variance.
    regularization_x, regularization_y : Regularizer
        Regularizer on rows of X and columns of Y.
    gamma_x, gamma_y : float
        Regularization weights.
    rho : float
        Weight of the proximal term in the categorical offset refinement.
    max_iterations : int
    init_step_size, min_step_size : float
        Step-size bounds for the alternating minimization.
    seed : int, optional
        Seed of the tie-breaking random generator.
    verbose : bool
        Log solver progress.
    """

    k: int = 1
    loss: Loss = Loss.QUADRATIC
    multi_loss: Loss = Loss.CATEGORICAL
    period: int = 1
    loss_by_col: Sequence[Loss] | None = None
    loss_by_col_idx: Sequence[int] | None = None
    offset: bool = False
    scale: bool = False
    regularization_x: Regularizer = Regularizer.NONE
    regularization_y: Regularizer = Regularizer.NONE
    gamma_x: float = 0.0
    gamma_y: float = 0.0
    rho: float = 1e-5
    max_iterations: int = 1000
    init_step_size: float = 1.0
    min_step_size: float = 1e-4
    seed: int | None = None
    verbose: bool = True
    _rng: np.random.Generator | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        self.k = _validate_rank_parameter(self.k)
        self.loss = Loss.coerce(self.loss)
        self.multi_loss = Loss.coerce(self.multi_loss)
        if not self.loss.for_numeric:
            raise ValueError(f"loss must be a numeric loss, got {self.loss.value}")
        if not self.multi_loss.for_categorical:
            raise ValueError(f"multi_loss must be a categorical loss, got {self.multi_loss.value}")
        self.period = _validate_period(self.period)

        _validate_loss_by_col(self.loss_by_col, self.loss_by_col_idx)
        if self.loss_by_col is not None:
            self.loss_by_col = [Loss.coerce(l) for l in self.loss_by_col]
        if self.loss_by_col_idx is not None:
            self.loss_by_col_idx = [int(i) for i in self.loss_by_col_idx]

        self.regularization_x = Regularizer.coerce(self.regularization_x)
        self.regularization_y = Regularizer.coerce(self.regularization_y)
        self.gamma_x, self.gamma_y = _sanitize_regularization_params(self.gamma_x, self.gamma_y)

        conv = _validate_convergence_params(
            max_iterations=self.max_iterations,
            rho=self.rho,
            init_step_size=self.init_step_size,
            min_step_size=self.min_step_size,
        )
        for key, value in conv.items():
            setattr(self, key, value)
        self._rng = None

    # ------------------------------------------------------------------
    # Scikit-learn style parameter protocol
    # ------------------------------------------------------------------
    def get_params(self, deep: bool = True) -> dict[str, Any]:  # noqa: D401 - sklearn API
        return {f.name: getattr(self, f.name) for f in fields(self) if f.init}

    def set_params(self, **params: Any) -> GLRMParameters:  # noqa: D401 - sklearn API
        valid = {f.name for f in fields(self) if f.init}
        for key, value in params.items():
            if key not in valid:
                raise ValueError(f"Unknown parameter {key!r}")
            setattr(self, key, value)
        self._validate()
        return self

    @property
    def rng(self) -> np.random.Generator:
        """Random generator used to break arg-max ties, created lazily from ``seed``."""
        if self._rng is None:
            self._rng = np.random.default_rng(self.seed)
        return self._rng

    # ------------------------------------------------------------------
    # Losses per column
    # ------------------------------------------------------------------
    def column_losses(self, columns: Sequence[Column]) -> list[Loss]:
        """
        Loss of each column: the override from ``loss_by_col`` if any, else
        ``loss`` for numerics and ``multi_loss`` for categoricals.

        Raises
        ------
        ValueError
            If an override does not fit its column's type or points past the table.
        """
        losses = [self.multi_loss if c.categorical else self.loss for c in columns]
        if self.loss_by_col is None:
            return losses

        idx = self.loss_by_col_idx
        if idx is None:
            if len(self.loss_by_col) != len(columns):
                raise ValueError(
                    f"loss_by_col has {len(self.loss_by_col)} entries for {len(columns)} columns; "
                    f"pass loss_by_col_idx to override a subset."
                )
            idx = list(range(len(columns)))

        for j, l in zip(idx, self.loss_by_col):
            if j >= len(columns):
                raise ValueError(f"loss_by_col_idx {j} is out of range for {len(columns)} columns")
            c = columns[j]
            if c.categorical and not l.for_categorical:
                raise ValueError(f"Loss function {l.value} not applicable to categorical column {c.label}")
            if c.is_numeric and not l.for_numeric:
                raise ValueError(f"Loss function {l.value} not applicable to numeric column {c.label}")
            losses[j] = l
        return losses

    def has_closed_form(
        self,
        na_count: int,
        losses: Sequence[Loss] | None = None,
        ncols: int | None = None,
    ) -> bool:
        """
        Whether the factorization reduces to a truncated SVD.

        Requires quadratic loss on every column, no missing values, and no
        regularization other than quadratic (or zero weight) on X and Y.
        When ``loss_by_col`` overrides all ``ncols`` columns the default
        ``loss`` does not matter.
        """
        if losses is not None:
            loss_quad = all(Loss.coerce(l) is Loss.QUADRATIC for l in losses)
        elif self.loss_by_col is not None:
            covers_all = ncols is not None and len(self.loss_by_col) == ncols
            loss_quad = all(l is Loss.QUADRATIC for l in self.loss_by_col) and (
                covers_all or self.loss is Loss.QUADRATIC
            )
        else:
            loss_quad = self.loss is Loss.QUADRATIC

        smooth = (Regularizer.NONE, Regularizer.QUADRATIC)
        reg_x = self.gamma_x == 0 or self.regularization_x in smooth
        reg_y = self.gamma_y == 0 or self.regularization_y in smooth
        return na_count == 0 and loss_quad and reg_x and reg_y

    # ------------------------------------------------------------------
    # Regularization bound to X and Y
    # ------------------------------------------------------------------
    def regularize_x(self, u) -> float:
        """r_x(u) for one row of X, or the sum over rows when ``u`` is 2D."""
        if u is not None and np.ndim(u) == 2:
            return regularize_matrix(u, self.regularization_x)
        return regularize(u, self.regularization_x)

    def regularize_y(self, u) -> float:
        """r_y(u) for one column of Y, or the sum over rows of a 2D array of columns."""
        if u is not None and np.ndim(u) == 2:
            return regularize_matrix(u, self.regularization_y)
        return regularize(u, self.regularization_y)

    def rproxgrad_x(self, u, alpha: float, rng: np.random.Generator | None = None):
        return rproxgrad(u, alpha, self.gamma_x, self.regularization_x, rng if rng is not None else self.rng)

    def rproxgrad_y(self, u, alpha: float, rng: np.random.Generator | None = None):
        return rproxgrad(u, alpha, self.gamma_y, self.regularization_y, rng if rng is not None else self.rng)

    def project_x(self, u, rng: np.random.Generator | None = None):
        return project(u, self.regularization_x, rng if rng is not None else self.rng)

    def project_y(self, u, rng: np.random.Generator | None = None):
        return project(u, self.regularization_y, rng if rng is not None else self.rng)


@dataclass
class GLRMOutput:
    """
    Per-column state needed for scoring, in internal (categoricals-first) order.

    ``loss_offset`` and ``loss_scale`` are always fully populated.
    """

    names: list[str]
    permutation: np.ndarray
    ncats: int
    nnums: int
    cardinalities: list[int]
    loss_func: list[Loss]
    loss_offset: list[np.ndarray]
    loss_scale: np.ndarray
    calibration: list[CalibrationResult]
    archetypes: Archetypes | None = None


class GLRMModel:
    """Kernel-side view of a GLRM: calibration before training, imputation after."""

    def __init__(self, params: GLRMParameters | None = None, **kwargs: Any) -> None:
        if params is not None and kwargs:
            raise ValueError("Pass either a GLRMParameters instance or keyword parameters, not both")
        self.params = params if params is not None else GLRMParameters(**kwargs)

    def calibrate(self, columns: Sequence[Column], *, max_workers: int = NUM_PARALLEL_TASKS) -> GLRMModel:
        """
        Resolve losses and compute offsets and scales for a table.

        ``columns`` are in original order; the model stores them categoricals first.
        """
        if len(columns) == 0:
            raise ValueError("columns must be a non-empty sequence")
        p = self.params
        losses_orig = p.column_losses(columns)
        adapted, permutation = adapt_columns(columns)
        losses = [losses_orig[j] for j in permutation]

        results = set_offset_scale(
            adapted,
            losses,
            offset=p.offset,
            scale=p.scale,
            period=p.period,
            rho=p.rho,
            max_iterations=p.max_iterations,
            verbose=p.verbose,
            max_workers=max_workers,
        )
        ncats = sum(1 for c in adapted if c.categorical)
        self.output_ = GLRMOutput(
            names=[c.label for c in columns],
            permutation=permutation,
            ncats=ncats,
            nnums=len(adapted) - ncats,
            cardinalities=[c.cardinality for c in adapted[:ncats]],
            loss_func=losses,
            loss_offset=[r.offset for r in results],
            loss_scale=np.array([r.scale for r in results]),
            calibration=results,
        )
        if p.verbose:
            for c, r in zip(adapted, results):
                if r.iterations:
                    logger.info("Column %s: iterations=%d delta=%g", c.label, r.iterations, r.delta)
        return self

    def _ensure_calibrated(self) -> GLRMOutput:
        if not hasattr(self, "output_"):
            raise RuntimeError("The model has not been calibrated yet")
        return self.output_

    def set_archetypes(self, Y) -> GLRMModel:
        """Attach the trained Y (k × width, categorical blocks first)."""
        out = self._ensure_calibrated()
        arch = Archetypes.from_cardinalities(Y, out.cardinalities)
        if arch.rank != self.params.k:
            raise ValueError(f"Y has {arch.rank} rows but the rank is {self.params.k}")
        if arch.nnums != out.nnums:
            raise ValueError(f"Y has {arch.nnums} numeric columns but the table has {out.nnums}")
        out.archetypes = arch
        return self

    def _score(self, A, X, save_imputed: bool, n_partitions: int | None):
        out = self._ensure_calibrated()
        if out.archetypes is None:
            raise RuntimeError("Archetypes have not been set; call set_archetypes(Y) first")
        return score(
            A,
            X,
            out.archetypes,
            out.loss_func,
            out.loss_offset,
            out.permutation,
            use_offset=self.params.offset,
            save_imputed=save_imputed,
            n_partitions=n_partitions,
        )

    def impute(self, A, X, *, n_partitions: int | None = None) -> tuple[np.ndarray, GLRMMetrics]:
        """Reconstruct the table from X and the archetypes; returns imputed values and metrics."""
        imputed, metrics = self._score(A, X, True, n_partitions)
        return imputed, metrics

    def score_metrics(self, A, X, *, n_partitions: int | None = None) -> GLRMMetrics:
        """Reconstruction metrics only, without materializing the imputed table."""
        _, metrics = self._score(A, X, False, n_partitions)
        return metrics
