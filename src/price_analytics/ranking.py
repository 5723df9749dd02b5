import numpy as np
import pandas as pd

from .series import observed_days

SORT_METRICS = ("change_pct", "volatility", "period_change_pct")
GROUP_MODES = ("all", "type", "region")
ALL_GROUP = "All"
OTHER_GROUP = "Other"

RANK_COLUMNS = [
    "id", "name", "point_type", "region_label", "price", "change", "change_pct",
    "period_change", "period_change_pct", "volatility", "min_price", "max_price",
    "avg_price", "base_price", "index_price", "index_change", "samples",
    "missing_days", "is_anomaly", "baseline_diff", "baseline_diff_pct",
]

def _pct(num: float, den: float) -> float:
    if not den or not np.isfinite(den):
        return 0.0
    out = num / den * 100
    return float(out) if np.isfinite(out) else 0.0

def _num(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if np.isfinite(value) else 0.0

def _text(value, default=None):
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return default
    return value

def empty_item(point_id: str, expected: int | None = None) -> dict:
    item = {c: 0.0 for c in RANK_COLUMNS}
    item.update({
        "id": point_id, "name": point_id, "point_type": None, "region_label": None,
        "samples": 0, "missing_days": expected or 0, "is_anomaly": False,
        "baseline_diff": None, "baseline_diff_pct": None,
    })
    return item

def rank_item(point_id: str, series: pd.DataFrame, expected: int | None = None) -> dict:
    """
    Ranking metrics for one collection point.

    Args:
        point_id: Collection point id
        series: Date-ordered series for the point (may be empty)
        expected: Expected calendar days of the window, or None when the
            request had no explicit window

    Returns:
        RankingItem dict. An empty series yields zeros everywhere,
        ``is_anomaly=False`` and no baseline values.
    """
    if series is None or series.empty:
        return empty_item(point_id, expected)

    first, latest = series.iloc[0], series.iloc[-1]
    prices = series["price"].astype(float).to_numpy()
    prices = prices[np.isfinite(prices)]
    price = _num(latest["price"])
    change = _num(latest.get("day_change"))
    base = _num(first["price"])
    period_change = price - base
    lo = float(prices.min()) if prices.size else 0.0
    hi = float(prices.max()) if prices.size else 0.0
    avg = float(prices.mean()) if prices.size else 0.0
    samples = observed_days(series)

    return {
        "id": point_id,
        "name": _text(latest.get("point_name"), point_id),
        "point_type": _text(latest.get("point_type")),
        "region_label": _text(latest.get("region_label")),
        "price": price,
        "change": change,
        "change_pct": _pct(change, price),
        "period_change": period_change,
        "period_change_pct": _pct(period_change, base),
        "volatility": _pct(hi - lo, avg),
        "min_price": lo,
        "max_price": hi,
        "avg_price": avg,
        "base_price": base,
        "index_price": _pct(price, base),
        "index_change": _pct(change, base),
        "samples": samples,
        "missing_days": max(0, expected - samples) if expected is not None else 0,
        "is_anomaly": False,
        "baseline_diff": None,
        "baseline_diff_pct": None,
    }

def ranking_items(series_map: dict[str, pd.DataFrame], expected: int | None = None) -> pd.DataFrame:
    rows = [rank_item(pid, s, expected) for pid, s in series_map.items()]
    return pd.DataFrame(rows, columns=RANK_COLUMNS)

# ---------- ordering & grouping ----------
def sort_ranking(items: pd.DataFrame, metric: str = "change_pct") -> pd.DataFrame:
    if metric not in SORT_METRICS:
        raise ValueError(f"Invalid sort metric: {metric}. Must be one of {SORT_METRICS}")
    # mergesort is stable: ties keep input order
    return items.sort_values(metric, ascending=False, kind="mergesort").reset_index(drop=True)

def change_ranking(items: pd.DataFrame) -> pd.DataFrame:
    return items.sort_values("change", ascending=False, kind="mergesort").reset_index(drop=True)

def group_ranking(items: pd.DataFrame, mode: str = "all", metric: str = "change_pct",
                  type_labels: dict | None = None) -> list[tuple[str, pd.DataFrame]]:
    """
    Partition a ranking into named buckets.

    Every bucket is sorted by ``metric``; buckets come largest first, equal
    sizes in order of first appearance.
    """
    if mode not in GROUP_MODES:
        raise ValueError(f"Invalid group mode: {mode}. Must be one of {GROUP_MODES}")
    ranked = sort_ranking(items, metric)
    if mode == "all":
        return [(ALL_GROUP, ranked)]

    if mode == "type":
        labels = type_labels or {}
        keys = ranked["point_type"].map(lambda t: labels.get(t) or _text(t, OTHER_GROUP))
    else:
        keys = ranked["region_label"].map(lambda r: _text(r, OTHER_GROUP))

    buckets = [(k, ranked[keys == k].reset_index(drop=True)) for k in pd.unique(keys)]
    return sorted(buckets, key=lambda b: len(b[1]), reverse=True)

def apply_index_mode(items: pd.DataFrame, enabled: bool) -> pd.DataFrame:
    out = items.copy()
    out["display_price"] = out["index_price"] if enabled else out["price"]
    out["display_change"] = out["index_change"] if enabled else out["change"]
    return out
