import logging

import numpy as np
import pytest

from glrm.ops import (
    equals_within_one_ulp,
    lbfgs_solve,
    linf_norm,
    max_index,
    min_index,
    prox_solve,
)


def _shifted_quadratic(center):
    center = np.asarray(center, dtype=float)

    def objective(x):
        d = x - center
        return float(d @ d), 2 * d

    return objective


def test_lbfgs_finds_quadratic_minimum():
    res = lbfgs_solve(_shifted_quadratic([3.0, -1.0]), np.zeros(2))
    assert np.allclose(res.coefs, [3.0, -1.0], atol=1e-6)
    assert res.obj_val == pytest.approx(0.0, abs=1e-10)
    assert res.grad_norm < 1e-5
    assert res.delta == pytest.approx(3.0, abs=1e-6)
    assert res.iterations >= 1


def test_prox_solve_converges_and_reports_plain_objective():
    res = prox_solve(_shifted_quadratic([3.0]), np.array([0.0]), rho=1.0, max_iterations=200)
    assert res.coefs[0] == pytest.approx(3.0, abs=1e-5)
    assert res.obj_val == pytest.approx((res.coefs[0] - 3.0) ** 2)
    assert res.delta <= 1e-6
    assert 1 < res.iterations < 200


def test_prox_solve_stops_at_iteration_cap():
    res = prox_solve(_shifted_quadratic([3.0]), np.array([0.0]), rho=100.0, max_iterations=3)
    assert res.iterations == 3
    assert 0.0 < res.coefs[0] < 3.0
    assert res.delta > 1e-6


def test_prox_solve_logs_progress_when_verbose(caplog):
    with caplog.at_level(logging.INFO, logger="glrm.ops"):
        prox_solve(_shifted_quadratic([1.0]), np.array([0.0]), rho=1.0, verbose=True)
    assert any(r.getMessage().startswith("Iterations: ") for r in caplog.records)


def test_prox_solve_rejects_empty_budget():
    with pytest.raises(ValueError, match="max_iterations"):
        prox_solve(_shifted_quadratic([1.0]), np.array([0.0]), rho=1.0, max_iterations=0)


def test_max_index_breaks_ties():
    u = np.array([0.0, 2.0, 2.0, 1.0])
    assert max_index(u) == 1
    picks = {max_index(u, np.random.default_rng(s)) for s in range(40)}
    assert picks == {1, 2}
    with pytest.raises(ValueError):
        max_index([])


def test_min_index_and_linf_norm():
    assert min_index([3.0, -1.0, -1.0]) == 1
    assert linf_norm([1.0, 2.0], [1.5, -1.0]) == 3.0
    assert linf_norm([], []) == 0.0


def test_equals_within_one_ulp():
    assert equals_within_one_ulp(1.0, 1.0)
    assert equals_within_one_ulp(1.0, np.nextafter(1.0, 2.0))
    assert not equals_within_one_ulp(1.0, 1.0 + 4 * np.spacing(1.0))
