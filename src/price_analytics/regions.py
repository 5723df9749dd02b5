"""
Region comparison over a rolling window.

Observations are bucketed by an administrative level (province, city or
district), summarized with the same quantile method as the per-point
distribution, and compared against the previous window of the same length
or, when a region has no history there, against the average of all regions.
"""

import numpy as np
import pandas as pd

from .config import REGION_LEVELS, REGION_WINDOWS, REGION_TOP_N, UNKNOWN_REGION
from .distribution import describe_prices
from .series import to_day, expected_days

REGION_SORTS = ("avg", "count", "delta", "volatility")
REGION_VIEWS = ("all", "top", "bottom")

REGION_COLUMNS = [
    "region", "avg_price", "count", "delta", "delta_pct", "volatility", "std",
    "q1", "median", "q3", "min_price", "max_price", "missing_days",
    "missing_rate", "has_prev", "latest_ts",
]

# fallback chain per level
_LEVEL_COLUMNS = {
    "province": ["province", "region_label"],
    "city": ["city", "province", "region_label"],
    "district": ["district", "city", "region_label"],
}

def normalize_region_level(level) -> str:
    value = str(level or "").strip().lower()
    return value if value in REGION_LEVELS else "city"

def normalize_region_window(window) -> str:
    value = str(window or "").strip().lower()
    return value if value in REGION_WINDOWS else "30"

def _clean(value):
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    value = str(value).strip()
    return value or None

def region_name(row, level: str = "city") -> str:
    for col in _LEVEL_COLUMNS[normalize_region_level(level)]:
        value = _clean(row.get(col))
        if value:
            return value
    return UNKNOWN_REGION

def region_names(frame: pd.DataFrame, level: str = "city") -> pd.Series:
    out = pd.Series(UNKNOWN_REGION, index=frame.index, dtype=object)
    # walk the chain backwards so the most specific column wins
    for col in reversed(_LEVEL_COLUMNS[normalize_region_level(level)]):
        if col not in frame.columns:
            continue
        values = frame[col].map(_clean)
        out = values.where(values.notna(), out)
    return out

def resolve_region_window(window="30", start=None, end=None,
                          observations: pd.DataFrame | None = None) -> dict:
    """
    Current and previous comparison windows.

    The window ends at ``end`` (or the latest observed day). Fixed windows
    span the last N days and have a previous window of equal length right
    before them; ``all`` spans from ``start`` (or the earliest observed day)
    and has no previous window.
    """
    window = normalize_region_window(window)
    days = observations["date"].dt.normalize() if observations is not None and not observations.empty else None
    win_end = to_day(end)
    if win_end is None:
        win_end = days.max() if days is not None else pd.Timestamp.today().normalize()
    n = None if window == "all" else int(window)
    if n:
        win_start = win_end - pd.Timedelta(days=n - 1)
    else:
        win_start = to_day(start)
        if win_start is None:
            win_start = days.min() if days is not None else win_end - pd.Timedelta(days=29)
    prev_end = win_start - pd.Timedelta(days=1) if n else None
    prev_start = prev_end - pd.Timedelta(days=n - 1) if n else None
    return {
        "window": window,
        "start": win_start,
        "end": win_end,
        "prev_start": prev_start,
        "prev_end": prev_end,
        "expected_days": expected_days(win_start, win_end),
        "label": "current filter range" if window == "all" else f"last {window} days",
    }

def _empty_summary(label: str = "", expected: int = 0) -> dict:
    return {
        "overall_avg": None, "min_avg": 0.0, "max_avg": 0.0,
        "range_min": 0.0, "range_max": 0.0,
        "window_label": label, "expected_days": expected,
    }

def summarize_regions(observations: pd.DataFrame, level: str = "city", window: str = "30",
                      start=None, end=None) -> tuple[pd.DataFrame, dict]:
    """
    Per-region statistics for the current window.

    Args:
        observations: Observation frame, already narrowed by the query layer
        level: province | city | district
        window: 7 | 30 | 90 | all
        start, end: Request range; ``start`` clips the rows considered,
            ``end`` anchors the window

    Returns:
        (regions, summary) where regions follows REGION_COLUMNS and summary
        carries the overall average of region averages and the window info
    """
    level = normalize_region_level(level)
    if observations is None or observations.empty:
        return pd.DataFrame(columns=REGION_COLUMNS), _empty_summary()

    frame = observations[np.isfinite(observations["price"].astype(float))]
    s = to_day(start)
    if s is not None:
        frame = frame[frame["date"].dt.normalize() >= s]
    win = resolve_region_window(window, start, end, frame)
    if frame.empty:
        return pd.DataFrame(columns=REGION_COLUMNS), _empty_summary(win["label"], win["expected_days"])

    day = frame["date"].dt.normalize()
    frame = frame.assign(region=region_names(frame, level), _day=day)
    cur = frame[(day >= win["start"]) & (day <= win["end"])]
    prev_avg = {}
    if win["prev_start"] is not None:
        prev = frame[(day >= win["prev_start"]) & (day <= win["prev_end"])]
        prev_avg = prev.groupby("region")["price"].mean().to_dict()

    expected = win["expected_days"]
    rows = []
    for region, g in cur.groupby("region", sort=False):
        prices = g["price"].astype(float)
        stats = describe_prices(prices)
        avg = stats["avg"]
        unique_days = g["_day"].nunique()
        missing = max(0, expected - unique_days)
        rows.append({
            "region": region,
            "avg_price": avg,
            "count": int(len(g)),
            "volatility": (stats["max"] - stats["min"]) / avg if avg else 0.0,
            "std": float(np.std(prices.to_numpy())) if len(prices) else 0.0,
            "q1": stats["q1"], "median": stats["median"], "q3": stats["q3"],
            "min_price": stats["min"], "max_price": stats["max"],
            "missing_days": missing,
            "missing_rate": missing / expected if expected else 0.0,
            "has_prev": region in prev_avg,
            "latest_ts": int(g["_day"].max().value // 10**6),
        })

    out = pd.DataFrame(rows, columns=REGION_COLUMNS)
    if out.empty:
        return out, _empty_summary(win["label"], expected)

    overall = float(out["avg_price"].mean())
    deltas, pcts = [], []
    for _, r in out.iterrows():
        ref = prev_avg.get(r["region"]) if r["has_prev"] else overall
        delta = r["avg_price"] - ref if ref is not None else 0.0
        deltas.append(delta)
        pcts.append(delta / ref * 100 if ref else 0.0)
    out["delta"] = deltas
    out["delta_pct"] = pcts

    summary = {
        "overall_avg": overall,
        "min_avg": float(out["avg_price"].min()),
        "max_avg": float(out["avg_price"].max()),
        "range_min": float(out["min_price"].min()),
        "range_max": float(out["max_price"].max()),
        "window_label": win["label"],
        "expected_days": expected,
    }
    return out, summary

def region_view(regions: pd.DataFrame, sort: str = "avg", view: str = "all",
                keyword: str = "", top_n: int = REGION_TOP_N) -> pd.DataFrame:
    if sort not in REGION_SORTS:
        raise ValueError(f"Invalid region sort: {sort}. Must be one of {REGION_SORTS}")
    if view not in REGION_VIEWS:
        raise ValueError(f"Invalid region view: {view}. Must be one of {REGION_VIEWS}")
    out = regions
    if out.empty:
        return out.reset_index(drop=True)
    kw = (keyword or "").strip().casefold()
    if kw:
        out = out[out["region"].astype(str).str.casefold().str.contains(kw, regex=False)]
    if out.empty:
        return out.reset_index(drop=True)

    key = {
        "avg": out["avg_price"],
        "count": out["count"],
        "delta": out["delta"].abs(),
        "volatility": out["volatility"],
    }[sort]
    out = out.loc[key.sort_values(ascending=False, kind="mergesort").index].reset_index(drop=True)

    if view == "top":
        return out.head(top_n).reset_index(drop=True)
    if view == "bottom":
        return out.tail(top_n).reset_index(drop=True)
    return out

def quality_overview(observations: pd.DataFrame, start=None, end=None) -> dict:
    """Sample count, latest day and missing days of the region sample."""
    windowed = start is not None and end is not None
    if observations is None or observations.empty:
        return {"total_samples": 0, "active_days": 0, "latest_date": None,
                "missing_days": expected_days(start, end) if windowed else None}
    days = observations["date"].dt.normalize()
    active = int(days.nunique())
    missing = max(0, expected_days(start, end) - active) if windowed else None
    return {
        "total_samples": int(len(observations)),
        "active_days": active,
        "latest_date": days.max(),
        "missing_days": missing,
    }
