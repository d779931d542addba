from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def mse(A: np.ndarray, Ahat: np.ndarray) -> float:
    """Mean squared error between two matrices, ignoring missing entries of ``A``."""
    A = np.asarray(A, dtype=float)
    mask = ~np.isnan(A)
    if not mask.any():
        return float("nan")
    return float(np.mean((A[mask] - np.asarray(Ahat, dtype=float)[mask]) ** 2))


@dataclass(frozen=True)
class GLRMMetrics:
    """
    Reconstruction error of imputed data against the observed table.

    ``numerr`` is the sum of squared errors over observed numeric cells and
    ``caterr`` the number of misclassified observed categorical cells;
    ``numcnt`` and ``catcnt`` count the cells each sum runs over.
    """

    numerr: float
    caterr: float
    numcnt: int
    catcnt: int
    nobs: int

    @property
    def numeric_mse(self) -> float:
        return self.numerr / self.numcnt if self.numcnt else float("nan")

    @property
    def categorical_error_rate(self) -> float:
        return self.caterr / self.catcnt if self.catcnt else float("nan")


class GLRMMetricBuilder:
    """
    Accumulates reconstruction error row by row.

    Builders for disjoint row blocks are combined with :meth:`reduce`
    (commutative and associative) and turned into metrics exactly once by
    :meth:`post_global`.

    Parameters
    ----------
    ncats : int
        Number of categorical columns.
    permutation : array-like of int
        ``permutation[i] = j`` maps internal column ``i`` (categoricals first)
        to original column ``j``.
    """

    def __init__(self, ncats: int, permutation) -> None:
        permutation = np.asarray(permutation, dtype=np.int64)
        self._is_cat = np.zeros(permutation.shape[0], dtype=bool)
        self._is_cat[permutation[:ncats]] = True
        self.numerr = 0.0
        self.caterr = 0.0
        self.numcnt = 0
        self.catcnt = 0
        self.nobs = 0
        self._done = False

    def per_row(self, preds: np.ndarray, actual: np.ndarray) -> None:
        """Add one row of predictions (original column order) against its observed values."""
        preds = np.asarray(preds, dtype=float)
        actual = np.asarray(actual, dtype=float)
        observed = ~np.isnan(actual)

        num = observed & ~self._is_cat
        cat = observed & self._is_cat
        diff = preds[num] - actual[num]
        self.numerr += float(diff @ diff)
        self.caterr += float(np.count_nonzero(preds[cat] != actual[cat]))
        self.numcnt += int(np.count_nonzero(num))
        self.catcnt += int(np.count_nonzero(cat))
        self.nobs += 1

    def reduce(self, other: GLRMMetricBuilder) -> GLRMMetricBuilder:
        if other is None:
            return self
        if self._is_cat.shape != other._is_cat.shape or np.any(self._is_cat != other._is_cat):
            raise ValueError("Cannot reduce metric builders over different column layouts")
        self.numerr += other.numerr
        self.caterr += other.caterr
        self.numcnt += other.numcnt
        self.catcnt += other.catcnt
        self.nobs += other.nobs
        return self

    def post_global(self) -> GLRMMetrics:
        if self._done:
            raise RuntimeError("Metrics have already been finalized")
        self._done = True
        return GLRMMetrics(
            numerr=self.numerr,
            caterr=self.caterr,
            numcnt=self.numcnt,
            catcnt=self.catcnt,
            nobs=self.nobs,
        )
