"""Data imputation from the reconstructed product XY.

Each entry is decoded as argmin_a L_j(x_i y_j, a) over the column's domain
(Udell et al., Generalized Low Rank Models, section 5.3). Internally columns
are ordered categoricals first; a permutation maps them back.
"""

from __future__ import annotations

import concurrent.futures
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from ._validation import _validate_data_matrix, _validate_loading_matrix
from .losses import Loss, impute, mimpute
from .metrics import GLRMMetricBuilder, GLRMMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Archetypes:
    """
    The Y matrix laid out for scoring.

    Parameters
    ----------
    Y : ndarray, shape (k, width)
        One block of ``cardinality`` columns per categorical column, in order,
        followed by one column per numeric column.
    cat_offsets : ndarray of int
        Block boundaries: categorical column ``d`` spans
        ``Y[:, cat_offsets[d]:cat_offsets[d + 1]]``; ``cat_offsets[0] == 0``.
    """

    Y: np.ndarray
    cat_offsets: np.ndarray

    @classmethod
    def from_cardinalities(cls, Y, cardinalities: Sequence[int]) -> Archetypes:
        Y = np.asarray(Y, dtype=float)
        if Y.ndim != 2:
            raise ValueError(f"Y must be 2D, got {Y.ndim}D with shape {Y.shape}")
        cat_offsets = np.concatenate([[0], np.cumsum(np.asarray(cardinalities, dtype=np.int64))])
        if cat_offsets[-1] > Y.shape[1]:
            raise ValueError(
                f"Categorical blocks need {cat_offsets[-1]} columns of Y but Y has {Y.shape[1]}"
            )
        return cls(Y=Y, cat_offsets=cat_offsets.astype(np.int64))

    @property
    def rank(self) -> int:
        return int(self.Y.shape[0])

    @property
    def ncats(self) -> int:
        return int(self.cat_offsets.shape[0] - 1)

    @property
    def nnums(self) -> int:
        return int(self.Y.shape[1] - self.cat_offsets[-1])

    def lmul_cat_block(self, x: np.ndarray, d: int) -> np.ndarray:
        """x @ Y_d for the block of categorical column ``d``."""
        return x @ self.Y[:, self.cat_offsets[d] : self.cat_offsets[d + 1]]

    def lmul_num_col(self, x: np.ndarray, ds: int) -> float:
        """x @ y for numeric column ``ds`` (counted among numerics only)."""
        return float(x @ self.Y[:, self.cat_offsets[-1] + ds])


def impute_row(
    x: np.ndarray,
    archetypes: Archetypes,
    losses: Sequence[Loss],
    offsets: Sequence[np.ndarray],
    permutation: Sequence[int],
    *,
    use_offset: bool = False,
    out: np.ndarray | None = None,
) -> np.ndarray:
    """
    Decode one row of XY into the original columns' domains.

    Parameters
    ----------
    x : ndarray, shape (k,)
        Row of X.
    archetypes : Archetypes
    losses, offsets : sequences
        Per internal column (categoricals first).
    permutation : sequence of int
        Internal column ``i`` is original column ``permutation[i]``.
    use_offset : bool
        Add the column offsets before decoding.
    out : ndarray, optional
        Caller-owned buffer of length ``len(losses)`` to write into.

    Returns
    -------
    ndarray
        Imputed values in original column order (``out`` if given).
    """
    ncols = len(losses)
    ncats = archetypes.ncats
    if out is None:
        out = np.empty(ncols)

    for d in range(ncats):
        xyblock = archetypes.lmul_cat_block(x, d)
        out[permutation[d]] = mimpute(xyblock, losses[d], offsets[d] if use_offset else None)

    for d in range(ncats, ncols):
        xy = archetypes.lmul_num_col(x, d - ncats)
        if use_offset:
            xy += float(offsets[d][0])
        out[permutation[d]] = impute(xy, losses[d])
    return out


def score_partition(
    A: np.ndarray,
    X: np.ndarray,
    archetypes: Archetypes,
    losses: Sequence[Loss],
    offsets: Sequence[np.ndarray],
    permutation: Sequence[int],
    *,
    use_offset: bool = False,
    save_imputed: bool = True,
) -> tuple[np.ndarray | None, GLRMMetricBuilder]:
    """
    Impute and accumulate metrics over one block of rows.

    ``A`` holds the observed rows in original column order and ``X`` the
    matching rows of the loading matrix. The block owns its scratch buffer.
    """
    ncols = len(losses)
    preds = np.empty(ncols)
    builder = GLRMMetricBuilder(archetypes.ncats, permutation)
    imputed = np.empty((A.shape[0], ncols)) if save_imputed else None

    for row in range(A.shape[0]):
        p = impute_row(X[row], archetypes, losses, offsets, permutation, use_offset=use_offset, out=preds)
        builder.per_row(p, A[row])
        if imputed is not None:
            imputed[row] = p
    return imputed, builder


def score(
    A,
    X,
    archetypes: Archetypes,
    losses: Sequence[Loss],
    offsets: Sequence[np.ndarray],
    permutation: Sequence[int],
    *,
    use_offset: bool = False,
    save_imputed: bool = True,
    n_partitions: int | None = None,
    max_workers: int | None = None,
) -> tuple[np.ndarray | None, GLRMMetrics]:
    """
    Impute a whole table and compute its reconstruction metrics.

    Rows are split into ``n_partitions`` contiguous blocks scored on a thread
    pool; the per-block metric builders are reduced and finalized once.

    Returns
    -------
    imputed : ndarray or None
        Imputed table in original column order (``None`` unless ``save_imputed``).
    metrics : GLRMMetrics
    """
    ncols = len(losses)
    if len(offsets) != ncols or len(permutation) != ncols:
        raise ValueError("losses, offsets and permutation must have one entry per column")
    X = _validate_loading_matrix(X, k=archetypes.rank)
    A = _validate_data_matrix(A, nrows=X.shape[0], ncols=ncols)
    if archetypes.ncats + archetypes.nnums != ncols:
        raise ValueError(
            f"Archetypes cover {archetypes.ncats + archetypes.nnums} columns but {ncols} losses were given"
        )

    nrows = A.shape[0]
    if n_partitions is None:
        n_partitions = os.cpu_count() or 1
    n_partitions = max(1, min(int(n_partitions), nrows))
    bounds = np.linspace(0, nrows, n_partitions + 1).astype(np.int64)

    def run(i):
        lo, hi = bounds[i], bounds[i + 1]
        return score_partition(
            A[lo:hi],
            X[lo:hi],
            archetypes,
            losses,
            offsets,
            permutation,
            use_offset=use_offset,
            save_imputed=save_imputed,
        )

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers or os.cpu_count()) as executor:
        parts = list(executor.map(run, range(n_partitions)))

    builder = GLRMMetricBuilder(archetypes.ncats, permutation)
    for _, part in parts:
        builder.reduce(part)
    metrics = builder.post_global()
    logger.debug("Scored %d rows in %d partitions", nrows, n_partitions)

    imputed = None
    if save_imputed:
        imputed = np.vstack([p for p, _ in parts]) if parts else np.empty((0, ncols))
    return imputed, metrics
