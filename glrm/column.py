"""Column vectors as seen by the calibration and scoring kernels."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np


@dataclass(eq=False)
class Column:
    """
    One data column, numeric or categorical.

    Missing entries are ``NaN``. Categorical columns store level codes
    ``0, ..., cardinality-1`` as floats.

    Parameters
    ----------
    values : array-like
        Raw column values.
    categorical : bool
        Whether ``values`` are level codes.
    cardinality : int, optional
        Number of levels; inferred from the largest code when omitted.
    name : str, optional
    index : int
        Position of the column in the table it came from.
    """

    values: Any
    categorical: bool = False
    cardinality: int | None = None
    name: str | None = None
    index: int = 0
    _observed: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if hasattr(self.values, "to_numpy"):
            self.values = self.values.to_numpy()
        try:
            self.values = np.asarray(self.values, dtype=np.float64).ravel()
        except (TypeError, ValueError) as e:
            raise ValueError(f"Column {self.label} cannot be converted to numeric array: {e}") from e
        self._observed = self.values[~np.isnan(self.values)]

        if not self.categorical:
            self.cardinality = None
            return

        codes = self._observed
        if codes.size and (np.any(codes < 0) or np.any(codes != np.floor(codes))):
            raise ValueError(f"Column {self.label} must hold non-negative integer level codes")
        inferred = int(codes.max()) + 1 if codes.size else 0
        if self.cardinality is None:
            self.cardinality = inferred
        elif self.cardinality < inferred:
            raise ValueError(
                f"Column {self.label} has level code {inferred - 1} but cardinality {self.cardinality}"
            )
        if self.cardinality < 1:
            raise ValueError(f"Categorical column {self.label} needs at least one level")

    @classmethod
    def numeric(cls, values: Any, *, name: str | None = None, index: int = 0) -> Column:
        return cls(values, categorical=False, name=name, index=index)

    @classmethod
    def categorical_codes(
        cls,
        codes: Any,
        cardinality: int | None = None,
        *,
        name: str | None = None,
        index: int = 0,
    ) -> Column:
        return cls(codes, categorical=True, cardinality=cardinality, name=name, index=index)

    @property
    def label(self) -> str:
        return self.name if self.name is not None else f"C{self.index}"

    @property
    def is_numeric(self) -> bool:
        return not self.categorical

    @property
    def observed(self) -> np.ndarray:
        """Non-missing values."""
        return self._observed

    def __len__(self) -> int:
        return int(self.values.shape[0])

    def __iter__(self) -> Iterator[float]:
        return iter(self.values.tolist())

    def na_count(self) -> int:
        return len(self) - int(self._observed.shape[0])

    def nz_count(self) -> int:
        """Number of non-missing, non-zero entries."""
        return int(np.count_nonzero(self._observed))

    def mean(self) -> float:
        return float(self._observed.mean()) if self._observed.size else float("nan")

    def median(self) -> float:
        return float(np.median(self._observed)) if self._observed.size else float("nan")

    def sigma(self) -> float:
        """Sample standard deviation of the non-missing values (0 with fewer than two)."""
        if self._observed.size < 2:
            return 0.0
        return float(np.std(self._observed, ddof=1))

    def mode(self) -> int:
        """Most frequent level of a categorical column (lowest code on ties)."""
        if not self.categorical:
            raise ValueError(f"mode() requires a categorical column, {self.label} is numeric")
        counts = np.bincount(self._observed.astype(np.int64), minlength=self.cardinality)
        return int(np.argmax(counts))


def adapt_columns(columns: Sequence[Column]) -> tuple[list[Column], np.ndarray]:
    """
    Reorder columns so categoricals come before numerics.

    Returns
    -------
    adapted : list of Column
        Columns in internal order; relative order within each kind is kept.
    permutation : ndarray of int
        ``permutation[i] = j`` means internal column ``i`` is original column ``j``.
    """
    cats = [j for j, c in enumerate(columns) if c.categorical]
    nums = [j for j, c in enumerate(columns) if not c.categorical]
    permutation = np.asarray(cats + nums, dtype=np.int64)
    return [columns[j] for j in permutation], permutation
