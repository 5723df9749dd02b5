import numpy as np
import pandas as pd

DIST_COLUMNS = ["id", "name", "min", "max", "q1", "median", "q3", "avg"]

def quantile(sorted_values, q: float) -> float:
    """
    Linear interpolation between closest ranks (numpy's default method).

    ``sorted_values`` must already be ascending. Empty input gives 0.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0
    pos = (n - 1) * q
    base = int(np.floor(pos))
    rest = pos - base
    if base + 1 < n:
        return float(sorted_values[base] + rest * (sorted_values[base + 1] - sorted_values[base]))
    return float(sorted_values[base])

def describe_prices(prices) -> dict:
    x = np.asarray(prices, dtype=float)
    x = np.sort(x[np.isfinite(x)])
    if x.size == 0:
        return {"min": 0.0, "max": 0.0, "q1": 0.0, "median": 0.0, "q3": 0.0, "avg": 0.0}
    return {
        "min": float(x[0]),
        "max": float(x[-1]),
        "q1": quantile(x, 0.25),
        "median": quantile(x, 0.5),
        "q3": quantile(x, 0.75),
        "avg": float(x.mean()),
    }

def distribution_items(series_map: dict[str, pd.DataFrame], order: list | None = None,
                       limit: int | None = None) -> pd.DataFrame:
    """
    Box-plot statistics per collection point.

    Points without prices are left out. When ``order`` is given (usually the
    ids of a sorted ranking) the rows follow it and points missing from it
    are dropped; ``limit`` truncates the result.
    """
    rows = []
    ids = order if order is not None else list(series_map.keys())
    for pid in ids:
        s = series_map.get(pid)
        if s is None or s.empty or not np.isfinite(s["price"].astype(float)).any():
            continue
        stats = describe_prices(s["price"])
        rows.append({"id": pid, "name": s["point_name"].iloc[-1], **stats})
    out = pd.DataFrame(rows, columns=DIST_COLUMNS)
    if limit is not None:
        out = out.head(limit)
    return out
