import numpy as np

from .column import Column


def simulate_glrm(n_rows, k, n_numeric, cardinalities=(), noise=0.1, missing_frac=0.0, seed=0):
    rng = np.random.default_rng(seed)
    cardinalities = list(cardinalities)
    width = sum(cardinalities) + n_numeric
    X = rng.standard_normal((n_rows, k))
    Y = rng.standard_normal((k, width)) / np.sqrt(k)
    XY = X @ Y
    cols, off = [], 0
    for card in cardinalities:
        cols.append(np.argmax(XY[:, off : off + card], axis=1).astype(float))
        off += card
    nums = XY[:, off:] + noise * rng.standard_normal((n_rows, n_numeric))
    A = np.column_stack(cols + [nums]) if cols else nums
    if missing_frac > 0:
        A[rng.random(A.shape) < missing_frac] = np.nan
    return A, X, Y


def table_columns(A, cardinalities=()):
    ncats = len(cardinalities)
    return [
        Column(A[:, j], categorical=j < ncats, cardinality=cardinalities[j] if j < ncats else None, index=j)
        for j in range(A.shape[1])
    ]
