import logging as _logging

from .api import GLRMModel, GLRMOutput, GLRMParameters
from .calibration import CalibrationResult, calibrate_column, set_offset_scale
from .column import Column, adapt_columns
from .losses import Loss, impute, lgrad, loss, mimpute, mlgrad, mloss
from .metrics import GLRMMetricBuilder, GLRMMetrics, mse
from .regularizers import Regularizer, project, regularize, regularize_matrix, rproxgrad
from .scoring import Archetypes, impute_row, score
from .sim import simulate_glrm, table_columns

_logging.getLogger(__name__).addHandler(_logging.NullHandler())

__all__ = [
    "Archetypes",
    "CalibrationResult",
    "Column",
    "GLRMMetricBuilder",
    "GLRMMetrics",
    "GLRMModel",
    "GLRMOutput",
    "GLRMParameters",
    "Loss",
    "Regularizer",
    "adapt_columns",
    "calibrate_column",
    "impute",
    "impute_row",
    "lgrad",
    "loss",
    "mimpute",
    "mlgrad",
    "mloss",
    "mse",
    "project",
    "regularize",
    "regularize_matrix",
    "rproxgrad",
    "score",
    "set_offset_scale",
    "simulate_glrm",
    "table_columns",
]
