import time

import numpy as np

from glrm import GLRMModel, Loss, mse, simulate_glrm, table_columns


def main():
    n_rows, k, n_numeric, cards = 2000, 3, 6, [3, 4]
    A, X, Y = simulate_glrm(n_rows, k, n_numeric, cards, noise=0.2, missing_frac=0.05, seed=123)
    columns = table_columns(A, cards)

    model = GLRMModel(k=k, loss=Loss.HUBER, multi_loss=Loss.CATEGORICAL, offset=True, scale=True, verbose=False)

    t0 = time.time()
    model.calibrate(columns)
    sec_cal = time.time() - t0
    out = model.output_

    # The simulated factors carry no offset, so decode XY as is
    model.set_archetypes(Y)
    model.params.set_params(offset=False)

    t0 = time.time()
    imputed, metrics = model.impute(A, X, n_partitions=8)
    sec_score = time.time() - t0

    print("=== GLRM kernel ===")
    print(f"rows={n_rows}  k={k}  numeric={n_numeric}  categorical={cards}")
    print(f"calibration: sec={sec_cal:.3f}")
    for name, r in zip(np.asarray(out.names)[out.permutation], out.calibration):
        print(f"  {name}: offset={np.round(r.offset, 3)}  scale={r.scale:.3f}  iters={r.iterations}")
    print(
        f"scoring: sec={sec_score:.3f}  numeric MSE={metrics.numeric_mse:.4f}  "
        f"cat err={metrics.categorical_error_rate:.4f}"
    )
    print(f"MSE over observed cells = {mse(A, imputed):.4f}")


if __name__ == "__main__":
    main()
