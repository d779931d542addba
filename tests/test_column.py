import numpy as np
import pytest

from glrm.column import Column, adapt_columns


def test_numeric_statistics_ignore_missing():
    col = Column.numeric([1.0, np.nan, 0.0, 5.0], name="x")
    assert len(col) == 4
    assert col.label == "x"
    assert col.na_count() == 1
    assert col.nz_count() == 2
    assert col.mean() == pytest.approx(2.0)
    assert col.median() == pytest.approx(1.0)
    assert col.sigma() == pytest.approx(np.std([1.0, 0.0, 5.0], ddof=1))
    assert col.cardinality is None
    assert col.is_numeric


def test_degenerate_columns():
    empty = Column.numeric([np.nan, np.nan])
    assert np.isnan(empty.mean())
    assert empty.sigma() == 0.0
    assert Column.numeric([3.0]).sigma() == 0.0


def test_categorical_cardinality_and_mode():
    col = Column.categorical_codes([2, 0, 2, np.nan, 1], index=3)
    assert col.cardinality == 3
    assert col.label == "C3"
    assert col.mode() == 2
    assert not col.is_numeric
    assert Column.categorical_codes([0, 1], cardinality=5).cardinality == 5
    # ties go to the lowest level
    assert Column.categorical_codes([1, 0, 1, 0]).mode() == 0


def test_categorical_codes_are_checked():
    with pytest.raises(ValueError, match="non-negative integer"):
        Column.categorical_codes([0, 1.5])
    with pytest.raises(ValueError, match="non-negative integer"):
        Column.categorical_codes([0, -1])
    with pytest.raises(ValueError, match="cardinality 2"):
        Column.categorical_codes([0, 2], cardinality=2)
    with pytest.raises(ValueError, match="at least one level"):
        Column.categorical_codes([np.nan])


def test_mode_needs_categorical_column():
    with pytest.raises(ValueError, match="numeric"):
        Column.numeric([1.0]).mode()


def test_non_numeric_values_are_rejected():
    with pytest.raises(ValueError, match="cannot be converted"):
        Column.numeric(["a", "b"])


def test_adapt_columns_puts_categoricals_first():
    cols = [
        Column.numeric([1.0], index=0),
        Column.categorical_codes([0], index=1),
        Column.numeric([2.0], index=2),
        Column.categorical_codes([1], index=3),
    ]
    adapted, perm = adapt_columns(cols)
    assert list(perm) == [1, 3, 0, 2]
    assert [c.index for c in adapted] == [1, 3, 0, 2]
    assert all(adapted[i] is cols[perm[i]] for i in range(4))
