"""Per-column loss functions, their gradients, and the matching decoders.

Numeric losses take the reconstructed value ``u = x_i y_j`` and the observed
value ``a``; they accept scalars (returning ``float``) or arrays (evaluated
elementwise). Boolean columns handled by Hinge/Logistic are coded ``{0, 1}``
rather than ``{-1, 1}``, and the formulas flip sign on ``a == 0`` instead of
recoding the data.

Categorical losses take one score per level ``u`` (length = cardinality), the
observed level index ``a`` and an optional offset vector.

Every variant is described by a single ``_LossSpec`` entry in ``_LOSS_TABLE``;
adding a variant means adding one row there.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
from scipy.special import expit, xlogy

from ._validation import _validate_period
from .ops import min_index


class Loss(Enum):
    QUADRATIC = "Quadratic"
    ABSOLUTE = "Absolute"
    HUBER = "Huber"
    POISSON = "Poisson"
    PERIODIC = "Periodic"
    LOGISTIC = "Logistic"
    HINGE = "Hinge"
    CATEGORICAL = "Categorical"
    ORDINAL = "Ordinal"

    @classmethod
    def coerce(cls, value: Any) -> Loss:
        """Accept a ``Loss`` or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if key in (member.value.lower(), member.name.lower()):
                    return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown loss function {value!r}; expected one of {valid}")

    @property
    def for_numeric(self) -> bool:
        return _spec(self).for_numeric

    @property
    def for_categorical(self) -> bool:
        return not _spec(self).for_numeric

    @property
    def for_binary(self) -> bool:
        return _spec(self).for_binary

    @property
    def closed_form_offset(self) -> bool:
        return _spec(self).closed_form_offset

    @property
    def closed_form_scale(self) -> bool:
        return _spec(self).closed_form_scale


@dataclass(frozen=True)
class _LossSpec:
    for_numeric: bool
    for_binary: bool
    closed_form_offset: bool
    closed_form_scale: bool
    loss: Callable[..., Any]
    grad: Callable[..., Any]
    impute: Callable[..., Any]


def _result(x):
    x = np.asarray(x, dtype=float)
    return float(x) if x.ndim == 0 else x


def _check_poisson(a):
    if np.any(a < 0):
        raise ValueError("Poisson loss L(u,a) requires variable a >= 0")


# ----------------------------------------------------------------------
# Numeric losses
# ----------------------------------------------------------------------
def _quadratic_loss(u, a, period):
    return (u - a) ** 2


def _quadratic_grad(u, a, period):
    return 2 * (u - a)


def _absolute_loss(u, a, period):
    return np.abs(u - a)


def _absolute_grad(u, a, period):
    return np.sign(u - a)


def _huber_loss(u, a, period):
    r = np.abs(u - a)
    return np.where(r <= 1, 0.5 * r**2, r - 0.5)


def _huber_grad(u, a, period):
    r = u - a
    return np.where(np.abs(r) <= 1, r, np.sign(r))


def _poisson_loss(u, a, period):
    _check_poisson(a)
    # lim_{a->0} a log(a) = 0
    with np.errstate(invalid="ignore"):
        tail = np.where(a == 0, 0.0, -a * u + xlogy(a, a) - a)
    return np.exp(u) + tail


def _poisson_grad(u, a, period):
    _check_poisson(a)
    return np.exp(u) - a


def _periodic_loss(u, a, period):
    _validate_period(period)
    return 1 - np.cos((a - u) * (2 * np.pi) / period)


def _periodic_grad(u, a, period):
    _validate_period(period)
    w = 2 * np.pi / period
    return w * np.sin((u - a) * w)


def _hinge_loss(u, a, period):
    return np.maximum(1 - np.where(a == 0, -u, u), 0)


def _hinge_grad(u, a, period):
    return np.where(a == 0, np.where(-u <= 1, 1.0, 0.0), np.where(u <= 1, -1.0, 0.0))


def _logistic_loss(u, a, period):
    return np.logaddexp(0.0, np.where(a == 0, u, -u))


def _logistic_grad(u, a, period):
    return np.where(a == 0, expit(u), -expit(-u))


def _impute_identity(u):
    return u


def _impute_count(u):
    # Round half up; counts are non-negative so this never crosses zero
    return np.floor(np.exp(u) + 0.5)


def _impute_boolean(u):
    return np.where(u > 0, 1.0, 0.0)


# ----------------------------------------------------------------------
# Categorical losses
# ----------------------------------------------------------------------
def _categorical_mloss(u, a, offset):
    z = u + offset
    terms = np.maximum(1 + z, 0)
    return float(np.sum(terms) - terms[a] + max(1 - z[a], 0.0))


def _categorical_mgrad(u, a, offset):
    z = u + offset
    grad = np.where(1 + z > 0, 1.0, 0.0)
    grad[a] = -1.0 if 1 - z[a] > 0 else 0.0
    return grad


def _ordinal_mloss(u, a, offset):
    n = u.shape[0]
    below = np.arange(n - 1) < a
    margins = np.where(below, 1 - u[:-1] - offset[:-1], 1.0)
    return float(np.sum(np.maximum(margins, 0)))


def _ordinal_mgrad(u, a, offset):
    n = u.shape[0]
    grad = np.zeros(n)
    active = (np.arange(n - 1) < a) & (1 - u[:-1] - offset[:-1] > 0)
    grad[:-1][active] = -1.0
    return grad


def _mimpute_argmax(u, offset):
    # imputed level is argmax_l (x_i Y_j)_l
    return int(np.argmax(u))


def _mimpute_ordinal(u, offset):
    cand = [_ordinal_mloss(u, a, offset) for a in range(u.shape[0])]
    return min_index(cand)


_LOSS_TABLE: dict[Loss, _LossSpec] = {
    Loss.QUADRATIC: _LossSpec(True, False, True, True, _quadratic_loss, _quadratic_grad, _impute_identity),
    Loss.ABSOLUTE: _LossSpec(True, False, True, False, _absolute_loss, _absolute_grad, _impute_identity),
    Loss.HUBER: _LossSpec(True, False, True, False, _huber_loss, _huber_grad, _impute_identity),
    Loss.POISSON: _LossSpec(True, False, True, False, _poisson_loss, _poisson_grad, _impute_count),
    Loss.PERIODIC: _LossSpec(True, False, True, False, _periodic_loss, _periodic_grad, _impute_identity),
    Loss.LOGISTIC: _LossSpec(True, True, False, False, _logistic_loss, _logistic_grad, _impute_boolean),
    Loss.HINGE: _LossSpec(True, True, True, False, _hinge_loss, _hinge_grad, _impute_boolean),
    Loss.CATEGORICAL: _LossSpec(False, False, False, False, _categorical_mloss, _categorical_mgrad, _mimpute_argmax),
    Loss.ORDINAL: _LossSpec(False, False, False, False, _ordinal_mloss, _ordinal_mgrad, _mimpute_ordinal),
}


def _spec(loss) -> _LossSpec:
    if isinstance(loss, str):
        try:
            loss = Loss.coerce(loss)
        except ValueError:
            pass
    spec = _LOSS_TABLE.get(loss) if isinstance(loss, Loss) else None
    if spec is None:
        raise RuntimeError(f"Unknown loss function {loss}")
    return spec


def _numeric_spec(loss) -> _LossSpec:
    spec = _spec(loss)
    if not spec.for_numeric:
        raise ValueError(f"Loss function {Loss.coerce(loss).value} not applicable to numerics")
    return spec


def _categorical_spec(loss) -> _LossSpec:
    spec = _spec(loss)
    if spec.for_numeric:
        raise ValueError(f"Loss function {Loss.coerce(loss).value} not applicable to categoricals")
    return spec


def _categorical_args(u, a, offset):
    u = np.asarray(u, dtype=float).ravel()
    if int(a) != a:
        raise IndexError(f"Category index must be an integer, got {a}")
    a = int(a)
    if a < 0 or a > u.shape[0] - 1:
        raise IndexError(f"Index must be between 0 and {u.shape[0] - 1}")
    if offset is None:
        offset = np.zeros(u.shape[0])
    else:
        offset = np.asarray(offset, dtype=float).ravel()
        if offset.shape != u.shape:
            raise ValueError(f"offset has length {offset.shape[0]} but u has length {u.shape[0]}")
    return u, a, offset


# ----------------------------------------------------------------------
# Public kernel
# ----------------------------------------------------------------------
def loss(u, a, loss: Loss, period: int = 1):
    """L(u, a): loss of predicting ``u`` for the observed numeric value ``a``."""
    spec = _numeric_spec(loss)
    return _result(spec.loss(np.asarray(u, dtype=float), np.asarray(a, dtype=float), period))


def lgrad(u, a, loss: Loss, period: int = 1):
    """dL(u, a)/du."""
    spec = _numeric_spec(loss)
    return _result(spec.grad(np.asarray(u, dtype=float), np.asarray(a, dtype=float), period))


def mloss(u, a: int, multi_loss: Loss, offset=None) -> float:
    """
    Multidimensional loss of the level scores ``u`` against the observed level ``a``.

    Raises
    ------
    IndexError
        If ``a`` is outside ``[0, len(u))``.
    """
    spec = _categorical_spec(multi_loss)
    u, a, offset = _categorical_args(u, a, offset)
    return spec.loss(u, a, offset)


def mlgrad(u, a: int, multi_loss: Loss, offset=None) -> np.ndarray:
    """Gradient of :func:`mloss` with respect to ``u``."""
    spec = _categorical_spec(multi_loss)
    u, a, offset = _categorical_args(u, a, offset)
    return spec.grad(u, a, offset)


def impute(u, loss: Loss):
    """argmin_a L(u, a) over the column's domain for a numeric column."""
    spec = _numeric_spec(loss)
    return _result(spec.impute(np.asarray(u, dtype=float)))


def mimpute(u, multi_loss: Loss, offset=None) -> int:
    """argmin_a L(u, a) over the levels {0, 1, ..., len(u)-1}."""
    spec = _categorical_spec(multi_loss)
    u = np.asarray(u, dtype=float).ravel()
    offset = np.zeros(u.shape[0]) if offset is None else np.asarray(offset, dtype=float).ravel()
    return spec.impute(u, offset)
