"""
Continuity health of collection points.

Each point gets three rates over the window (coverage of expected calendar
days, share of observed days flagged anomalous, share of late submissions)
folded into a 0-100 score with fixed weights and a letter grade. The
weights live in config.HEALTH_WEIGHTS and are part of the scoring contract:
changing them changes every historical score.
"""

import math

import numpy as np
import pandas as pd

from .config import (
    HEALTH_WEIGHTS, GRADE_LADDER, GRADE_FLOOR, HEALTH_DAYS, TOP_RISKS,
    DEVIATION_THRESHOLD, CHANGE_THRESHOLD,
)
from .series import to_day, expected_days, select_window

HEALTH_COLUMNS = [
    "point_id", "point_name", "point_type", "region_label", "score", "grade",
    "coverage_rate", "anomaly_rate", "late_rate", "latest_date", "missing_days",
    "record_count",
]

def score_grade(score: float) -> str:
    for floor, grade in GRADE_LADDER:
        if score >= floor:
            return grade
    return GRADE_FLOOR

def _clamp_rate(value: float) -> float:
    if not np.isfinite(value):
        return 0.0
    return min(100.0, max(0.0, float(value)))

def composite_score(coverage_rate: float, anomaly_rate: float, late_rate: float) -> int:
    """Weighted 0-100 score, rounded half up (rates are percentages)."""
    raw = (
        HEALTH_WEIGHTS["coverage"] * _clamp_rate(coverage_rate)
        + HEALTH_WEIGHTS["anomaly"] * (100 - _clamp_rate(anomaly_rate))
        + HEALTH_WEIGHTS["late"] * (100 - _clamp_rate(late_rate))
    )
    return int(min(100, max(0, math.floor(raw + 0.5))))

def daily_anomaly_flags(observations: pd.DataFrame, deviation_threshold: float = DEVIATION_THRESHOLD,
                        change_threshold: float = CHANGE_THRESHOLD) -> pd.DataFrame:
    """
    One row per (point, day) with an ``is_anomaly`` flag.

    Each day's price is compared with the mean price of all points on that
    same day; the day-change rule is the one used for the ranking list.
    Duplicate rows for a point and day resolve to the later-loaded one.
    """
    if observations is None or observations.empty:
        return pd.DataFrame(columns=["point_id", "day", "price", "is_anomaly"])
    x = observations.assign(day=observations["date"].dt.normalize())
    x = x.drop_duplicates(subset=["point_id", "day"], keep="last")
    price = x["price"].astype(float)
    change = x["day_change"].astype(float).fillna(0.0)
    day_mean = price.groupby(x["day"]).transform("mean")
    dev = ((price - day_mean) / day_mean.where(day_mean != 0)).abs() * 100
    flag = (dev.fillna(0.0) >= deviation_threshold) | (change.abs() >= change_threshold)
    return pd.DataFrame({
        "point_id": x["point_id"].to_numpy(),
        "day": x["day"].to_numpy(),
        "price": price.to_numpy(),
        "is_anomaly": flag.to_numpy(dtype=bool),
    })

def _resolve_range(observations: pd.DataFrame, start, end, days: int):
    s, e = to_day(start), to_day(end)
    has_rows = observations is not None and not observations.empty
    if e is None and has_rows:
        e = observations["date"].max().normalize()
    if s is None and e is not None:
        if days:
            s = e - pd.Timedelta(days=days - 1)
        elif has_rows:
            s = observations["date"].min().normalize()
    return s, e

def _late_mask(frame: pd.DataFrame) -> pd.Series:
    if "is_late" in frame.columns:
        return frame["is_late"].fillna(False).astype(bool)
    return frame["quality_tag"].astype(str).str.upper() == "LATE"

def _label(value, default=None):
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return default
    return value

def continuity_health(observations: pd.DataFrame, start=None, end=None, days: int = HEALTH_DAYS,
                      point_ids: list | None = None,
                      deviation_threshold: float = DEVIATION_THRESHOLD,
                      change_threshold: float = CHANGE_THRESHOLD) -> tuple[pd.DataFrame, dict]:
    """
    Score the continuity of every collection point.

    Args:
        observations: Observation frame narrowed by the query layer
        start, end: Inclusive window; missing bounds come from ``days``
            (end defaults to the latest observed day)
        days: Window length used when ``start`` is not given
        point_ids: Explicit selection; selected points without rows are
            scored with zero coverage
        deviation_threshold, change_threshold: Anomaly rule thresholds

    Returns:
        (points, summary). Points are sorted ascending by score so the
        riskiest come first; rates are percentages rounded to 0.1.
    """
    s, e = _resolve_range(observations, start, end, days)
    frame = select_window(observations, s, e)
    if point_ids:
        frame = frame[frame["point_id"].isin(point_ids)]
    expected = expected_days(s, e) if s is not None and e is not None else max(1, days or 1)

    flags = daily_anomaly_flags(frame, deviation_threshold, change_threshold)

    rows = []
    groups = frame.groupby("point_id", sort=False) if not frame.empty else []
    seen = set()
    for pid, g in groups:
        seen.add(pid)
        f = flags[flags["point_id"] == pid]
        observed = int(f["day"].nunique())
        records = int(len(g))
        coverage = min(100.0, observed / expected * 100)
        anomaly = f["is_anomaly"].sum() / observed * 100 if observed else 0.0
        late_rate = _late_mask(g).sum() / records * 100 if records else 0.0
        last = g.sort_values("date", kind="mergesort").iloc[-1]
        score = composite_score(coverage, anomaly, late_rate)
        rows.append({
            "point_id": pid,
            "point_name": _label(last.get("point_name"), pid),
            "point_type": _label(last.get("point_type")),
            "region_label": _label(last.get("region_label")),
            "score": score,
            "grade": score_grade(score),
            "coverage_rate": round(coverage, 1),
            "anomaly_rate": round(float(anomaly), 1),
            "late_rate": round(float(late_rate), 1),
            "latest_date": g["date"].max(),
            "missing_days": max(0, expected - observed),
            "record_count": records,
        })
    for pid in point_ids or []:
        if pid in seen:
            continue
        score = composite_score(0.0, 0.0, 0.0)
        rows.append({
            "point_id": pid, "point_name": pid, "point_type": None, "region_label": None,
            "score": score, "grade": score_grade(score),
            "coverage_rate": 0.0, "anomaly_rate": 0.0, "late_rate": 0.0,
            "latest_date": None, "missing_days": expected, "record_count": 0,
        })

    points = pd.DataFrame(rows, columns=HEALTH_COLUMNS)
    if not points.empty:
        points = points.sort_values("score", kind="mergesort").reset_index(drop=True)
    return points, health_summary(points, expected, s, e)

def health_summary(points: pd.DataFrame, expected: int, start=None, end=None) -> dict:
    n = len(points)
    def avg(col):
        return round(float(points[col].mean()), 1) if n else 0.0
    return {
        "overall_score": avg("score"),
        "coverage_rate": avg("coverage_rate"),
        "anomaly_rate": avg("anomaly_rate"),
        "late_rate": avg("late_rate"),
        "expected_days": expected,
        "point_count": n,
        "healthy_points": int((points["grade"] == "A").sum()) if n else 0,
        "risk_points": int((points["grade"] == GRADE_FLOOR).sum()) if n else 0,
        "start_date": start,
        "end_date": end,
    }

def top_risks(points: pd.DataFrame, n: int = TOP_RISKS) -> pd.DataFrame:
    return points.head(n).reset_index(drop=True)
