import numpy as np
import pytest

from glrm.metrics import GLRMMetricBuilder, mse

# original column 1 is categorical, 0 and 2 numeric
PERMUTATION = [1, 0, 2]


def test_per_row_skips_missing_cells():
    b = GLRMMetricBuilder(1, PERMUTATION)
    b.per_row([1.5, 2.0, 0.0], [1.0, 1.0, np.nan])
    b.per_row([0.0, 0.0, 3.0], [np.nan, 0.0, 1.0])
    m = b.post_global()
    assert m.numerr == pytest.approx(0.25 + 4.0)
    assert m.caterr == 1
    assert (m.numcnt, m.catcnt, m.nobs) == (2, 2, 2)
    assert m.numeric_mse == pytest.approx(2.125)
    assert m.categorical_error_rate == pytest.approx(0.5)


def test_reduce_is_order_independent():
    rows = [([1.0, 2.0, 3.0], [1.5, 2.0, 2.0]), ([0.0, 1.0, 0.0], [0.0, 0.0, np.nan]), ([4.0, 0.0, 1.0], [4.0, 0.0, 0.0])]
    parts = []
    for preds, actual in rows:
        b = GLRMMetricBuilder(1, PERMUTATION)
        b.per_row(preds, actual)
        parts.append(b)

    whole = GLRMMetricBuilder(1, PERMUTATION)
    for preds, actual in rows:
        whole.per_row(preds, actual)
    expected = whole.post_global()

    left = GLRMMetricBuilder(1, PERMUTATION).reduce(parts[2]).reduce(parts[0]).reduce(parts[1])
    got = left.post_global()
    assert got.numerr == pytest.approx(expected.numerr)
    assert (got.caterr, got.numcnt, got.catcnt, got.nobs) == (
        expected.caterr,
        expected.numcnt,
        expected.catcnt,
        expected.nobs,
    )


def test_reduce_rejects_other_layouts():
    with pytest.raises(ValueError, match="column layouts"):
        GLRMMetricBuilder(1, PERMUTATION).reduce(GLRMMetricBuilder(2, PERMUTATION))
    b = GLRMMetricBuilder(1, PERMUTATION)
    assert b.reduce(None) is b


def test_finalize_only_once():
    b = GLRMMetricBuilder(0, [0])
    b.post_global()
    with pytest.raises(RuntimeError, match="already been finalized"):
        b.post_global()


def test_empty_metrics_are_nan():
    m = GLRMMetricBuilder(0, [0, 1]).post_global()
    assert np.isnan(m.numeric_mse)
    assert np.isnan(m.categorical_error_rate)


def test_mse_ignores_missing():
    A = np.array([[1.0, np.nan], [3.0, 4.0]])
    Ahat = np.array([[2.0, 100.0], [3.0, 2.0]])
    assert mse(A, Ahat) == pytest.approx(5.0 / 3.0)
    assert np.isnan(mse(np.full((2, 2), np.nan), Ahat))
