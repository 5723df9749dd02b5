import numpy as np
import pandas as pd

from .config import DEVIATION_THRESHOLD, CHANGE_THRESHOLD

BASELINE_NONE = "none"
BASELINE_REGION = "region"

def mean_latest_price(items: pd.DataFrame) -> float:
    """Mean latest price across points that have data; 0 when there are none."""
    if items is None or items.empty:
        return 0.0
    live = items.loc[items["samples"] > 0, "price"].astype(float)
    if live.empty:
        return 0.0
    mean = live.mean()
    return float(mean) if np.isfinite(mean) else 0.0

def deviation_pct(prices: pd.Series, mean: float) -> pd.Series:
    if not mean:
        return pd.Series(0.0, index=prices.index)
    return ((prices.astype(float) - mean) / mean).abs() * 100

def flag_anomalies(items: pd.DataFrame, deviation_threshold: float = DEVIATION_THRESHOLD,
                   change_threshold: float = CHANGE_THRESHOLD) -> pd.DataFrame:
    """
    Mark points whose latest price stands out.

    A point is anomalous when its latest price deviates from the mean latest
    price of all selected points by at least ``deviation_threshold`` percent,
    or when its absolute day change reaches ``change_threshold``. Either
    condition is enough. Points without data are never flagged.

    Args:
        items: Ranking items (see ranking.RANK_COLUMNS)
        deviation_threshold: Percent deviation from the cross-point mean
        change_threshold: Absolute day-change units

    Returns:
        Copy of ``items`` with ``is_anomaly`` recomputed
    """
    out = items.copy()
    if out.empty:
        out["is_anomaly"] = pd.Series(dtype=bool)
        return out
    mean = mean_latest_price(out)
    dev = deviation_pct(out["price"], mean)
    hit = (dev >= deviation_threshold) | (out["change"].astype(float).abs() >= change_threshold)
    out["is_anomaly"] = (hit & (out["samples"] > 0)).astype(bool)
    return out

def only_anomalies(items: pd.DataFrame) -> pd.DataFrame:
    return items[items["is_anomaly"]].reset_index(drop=True)

# ---------- baselines ----------
def latest_region_average(observations: pd.DataFrame) -> float | None:
    """Mean price on the most recent observed day of the region sample."""
    if observations is None or observations.empty:
        return None
    days = observations["date"].dt.normalize()
    latest = observations.loc[days == days.max(), "price"].astype(float)
    latest = latest[np.isfinite(latest)]
    if latest.empty:
        return None
    return float(latest.mean())

def resolve_baseline(items: pd.DataFrame, key: str | None,
                     region_avg: float | None) -> tuple[str, float | None]:
    """
    Resolve the baseline selector to a reference price.

    Returns ``(effective_key, price)``. A region baseline without a usable
    region average, or a point baseline whose point is no longer selected
    (or has no data), falls back to ``"none"``.
    """
    key = (key or BASELINE_NONE).strip() or BASELINE_NONE
    if key == BASELINE_NONE:
        return BASELINE_NONE, None
    if key == BASELINE_REGION:
        if not region_avg or not np.isfinite(region_avg):
            return BASELINE_NONE, None
        return BASELINE_REGION, float(region_avg)
    match = items[(items["id"] == key) & (items["samples"] > 0)]
    if match.empty:
        return BASELINE_NONE, None
    price = float(match["price"].iloc[0])
    if not price:
        return BASELINE_NONE, None
    return key, price

def apply_baseline(items: pd.DataFrame, key: str | None,
                   region_avg: float | None) -> tuple[pd.DataFrame, str]:
    effective, base = resolve_baseline(items, key, region_avg)
    out = items.copy()
    out["baseline_diff"] = None
    out["baseline_diff_pct"] = None
    if base is None or out.empty:
        return out, effective
    live = out["samples"] > 0
    diff = out.loc[live, "price"].astype(float) - base
    out.loc[live, "baseline_diff"] = diff
    out.loc[live, "baseline_diff_pct"] = diff / base * 100
    return out, effective
