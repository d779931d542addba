import math

import numpy as np
import pytest

from glrm.calibration import (
    CalibrationResult,
    calibrate_column,
    closed_form_offset,
    closed_form_scale,
    column_moffset,
    column_offset,
    column_scale,
    loss_scale_pass,
    period_offset,
    set_offset_scale,
)
from glrm.column import Column
from glrm.losses import Loss, loss, mloss


def _categorical_objective(offset, codes):
    return sum(mloss(offset, int(a), Loss.CATEGORICAL) for a in codes)


def test_closed_form_tables():
    for l in (Loss.QUADRATIC, Loss.ABSOLUTE, Loss.HUBER, Loss.POISSON, Loss.HINGE, Loss.PERIODIC):
        assert closed_form_offset(l)
    for l in (Loss.LOGISTIC, Loss.CATEGORICAL, Loss.ORDINAL):
        assert not closed_form_offset(l)
    assert closed_form_scale(Loss.QUADRATIC)
    assert not any(closed_form_scale(l) for l in Loss if l is not Loss.QUADRATIC)


def test_quadratic_scale_is_inverse_variance():
    col = Column.numeric([1.0, 2.0, 3.0, 4.0, 5.0, np.nan])
    res = calibrate_column(col, Loss.QUADRATIC)
    assert res.offset.shape == (1,)
    assert res.offset[0] == pytest.approx(3.0)
    assert res.scale == pytest.approx(1 / 2.5)
    assert res.iterations == 0


def test_zero_variance_scale_defaults_to_one():
    col = Column.numeric([4.0, 4.0, 4.0])
    res = calibrate_column(col, Loss.QUADRATIC)
    assert res.scale == 1.0
    assert res.offset[0] == pytest.approx(4.0)
    assert column_scale(col, Loss.QUADRATIC) == 1.0


def test_absolute_offset_is_median_and_scale_from_data_pass():
    col = Column.numeric([1.0, 2.0, 10.0])
    assert column_offset(col, Loss.ABSOLUTE) == 2.0
    res = calibrate_column(col, Loss.ABSOLUTE)
    assert not res.skip_scale
    assert res.scale == pytest.approx(2 / 9)


def test_huber_offset_is_the_mean():
    col = Column.numeric([0.0, 0.0, 0.0, 12.0])
    assert column_offset(col, Loss.HUBER) == pytest.approx(3.0)


def test_poisson_offset_is_log_mean():
    col = Column.numeric([1.0, 2.0, 3.0])
    res = calibrate_column(col, Loss.POISSON)
    assert res.offset[0] == pytest.approx(math.log(2.0))
    total = float(np.sum(loss(math.log(2.0), np.array([1.0, 2.0, 3.0]), Loss.POISSON)))
    assert res.scale == pytest.approx(2 / total)


def test_hinge_offset_is_majority_class():
    assert column_offset(Column.numeric([1, 1, 0, np.nan]), Loss.HINGE) == 1.0
    assert column_offset(Column.numeric([1, 0, 0]), Loss.HINGE) == 0.0
    assert column_offset(Column.numeric([1, 0]), Loss.HINGE) == 0.0


def test_periodic_offset_is_circular_mean():
    assert period_offset(np.array([2.0, 4.0]), 24) == pytest.approx(3.0)
    off = period_offset(np.array([1.0, 23.0]), 24)
    assert min(off, 24 - off) == pytest.approx(0.0, abs=1e-9)
    col = Column.numeric([5.0, 6.0, 7.0])
    assert column_offset(col, Loss.PERIODIC, period=12) == pytest.approx(6.0)


def test_periodic_needs_positive_period():
    col = Column.numeric([1.0, 2.0])
    with pytest.raises(ValueError, match="period"):
        calibrate_column(col, Loss.PERIODIC, period=0)
    with pytest.raises(ValueError, match="period"):
        column_offset(col, Loss.PERIODIC, period=2.5)


def test_logistic_offset_is_log_odds():
    values = np.array([0.0, 0.0, 0.0, 1.0])
    res = calibrate_column(Column.numeric(values), Loss.LOGISTIC)
    u = math.log(1 / 3)
    assert res.offset[0] == pytest.approx(u, abs=1e-5)
    objective = 3 * math.log(4 / 3) + math.log(4)
    assert res.objective == pytest.approx(objective, rel=1e-8)
    assert res.scale == pytest.approx(3 / objective, rel=1e-6)
    assert res.skip_scale


def test_categorical_offset_improves_on_majority_start():
    rng = np.random.default_rng(0)
    codes = rng.choice(4, size=200, p=[0.5, 0.2, 0.2, 0.1])
    col = Column.categorical_codes(codes, cardinality=4)

    res = calibrate_column(col, Loss.CATEGORICAL, rho=1e-3, max_iterations=50)
    start = np.zeros(4)
    start[col.mode()] = 1.0

    assert res.offset.shape == (4,)
    assert 1 <= res.iterations <= 50
    assert res.objective == pytest.approx(_categorical_objective(res.offset, codes))
    assert res.objective <= _categorical_objective(start, codes) + 1e-9
    assert res.scale == pytest.approx(199 / res.objective)


def test_categorical_refinement_respects_iteration_cap():
    codes = np.array([0, 1, 1, 2, 2, 2, 0, 1])
    col = Column.categorical_codes(codes)
    res = calibrate_column(col, Loss.ORDINAL, rho=10.0, max_iterations=2)
    assert res.iterations <= 2
    assert np.isfinite(res.delta)


def test_categorical_without_refinement_is_a_single_solve():
    codes = np.array([0, 1, 1, 2])
    col = Column.categorical_codes(codes)
    offset = column_moffset(col, Loss.CATEGORICAL, rho=0.0)
    start = np.array([0.0, 1.0, 0.0])
    assert _categorical_objective(offset, codes) <= _categorical_objective(start, codes) + 1e-9


def test_scale_without_closed_form_is_not_available_directly():
    with pytest.raises(NotImplementedError, match="Absolute"):
        column_scale(Column.numeric([1.0, 2.0]), Loss.ABSOLUTE)


def test_loss_must_match_column_type():
    with pytest.raises(ValueError, match="categorical column"):
        calibrate_column(Column.categorical_codes([0, 1]), Loss.QUADRATIC)
    with pytest.raises(ValueError, match="numeric column"):
        calibrate_column(Column.numeric([0.0, 1.0]), Loss.ORDINAL)


def test_loss_scale_pass_matches_definition():
    cols = [Column.numeric([1.0, 2.0, 10.0, np.nan]), Column.numeric([0.0, 0.0, 1.0])]
    scales = loss_scale_pass(cols, [Loss.ABSOLUTE, Loss.HINGE], [np.array([2.0]), np.array([0.0])])
    assert scales[0] == pytest.approx(2 / 9)
    # hinge at offset 0: rows a=0 cost max(1, 0) = 1, row a=1 costs max(1 - 0, 0) = 1
    assert scales[1] == pytest.approx(2 / 3)


def test_loss_scale_pass_zero_total_gives_unit_scale():
    (scale,) = loss_scale_pass([Column.numeric([3.0, 3.0])], [Loss.ABSOLUTE], [np.array([3.0])])
    assert scale == 1.0


def _mixed_columns():
    rng = np.random.default_rng(5)
    return [
        Column.categorical_codes(rng.integers(0, 3, size=60), cardinality=3, index=0),
        Column.numeric(rng.normal(2.0, 3.0, size=60), index=1),
        Column.numeric(rng.laplace(1.0, 1.0, size=60), index=2),
        Column.numeric(rng.integers(0, 2, size=60), index=3),
    ]


MIXED_LOSSES = [Loss.CATEGORICAL, Loss.QUADRATIC, Loss.ABSOLUTE, Loss.LOGISTIC]


def test_set_offset_scale_is_a_no_op_when_disabled():
    cols = _mixed_columns()
    results = set_offset_scale(cols, MIXED_LOSSES)
    assert [r.offset.shape for r in results] == [(3,), (1,), (1,), (1,)]
    assert all(np.all(r.offset == 0) for r in results)
    assert all(r.scale == 1.0 for r in results)


def test_set_offset_scale_offsets_only():
    cols = _mixed_columns()
    results = set_offset_scale(cols, MIXED_LOSSES, offset=True, max_iterations=20)
    assert all(r.scale == 1.0 for r in results)
    assert results[1].offset[0] == pytest.approx(cols[1].mean())
    assert results[2].offset[0] == pytest.approx(cols[2].median())


def test_set_offset_scale_scales_only_keeps_identity_offsets():
    cols = _mixed_columns()
    results = set_offset_scale(cols, MIXED_LOSSES, scale=True, max_iterations=20)
    assert all(np.all(r.offset == 0) for r in results)
    assert results[1].scale == pytest.approx(1 / cols[1].sigma() ** 2)
    expected_abs = loss_scale_pass([cols[2]], [Loss.ABSOLUTE], [np.array([cols[2].median()])])[0]
    assert results[2].scale == pytest.approx(expected_abs)


def test_set_offset_scale_matches_single_column_calibration():
    cols = _mixed_columns()
    table = set_offset_scale(cols, MIXED_LOSSES, offset=True, scale=True, max_iterations=20, max_workers=3)
    for col, l, r in zip(cols, MIXED_LOSSES, table):
        single = calibrate_column(col, l, max_iterations=20)
        assert np.allclose(r.offset, single.offset)
        assert r.scale == pytest.approx(single.scale)


def test_set_offset_scale_checks_lengths():
    with pytest.raises(ValueError, match="Number of losses"):
        set_offset_scale(_mixed_columns(), [Loss.QUADRATIC], offset=True)


def test_empty_column_gets_identity():
    col = Column.numeric([np.nan, np.nan])
    res = calibrate_column(col, Loss.LOGISTIC)
    assert isinstance(res, CalibrationResult)
    assert res.offset[0] == 0.0
    assert res.scale == 1.0


def test_poisson_offset_rejects_negative_counts():
    with pytest.raises(ValueError, match="a >= 0"):
        set_offset_scale([Column.numeric([-1.0, 3.0])], [Loss.POISSON], offset=True)
    with pytest.raises(ValueError, match="a >= 0"):
        column_offset(Column.numeric([-1.0, -2.0, 3.0, -5.0]), Loss.POISSON)


def test_poisson_offset_of_all_zero_column_is_not_nan():
    off = column_offset(Column.numeric([0.0, 0.0]), Loss.POISSON)
    assert off == -math.inf
