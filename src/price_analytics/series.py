import pandas as pd

OBS_COLUMNS = [
    "point_id", "point_name", "point_type", "region_code", "region_label",
    "province", "city", "district", "date", "price", "day_change",
    "quality_tag", "review_status", "source_type", "input_method",
    "sub_type", "commodity", "created_at", "is_late",
]

# ---------- calendar-day helpers ----------
def to_day(value) -> pd.Timestamp | None:
    if value is None:
        return None
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.normalize()

def expected_days(start, end) -> int:
    """Inclusive calendar-day count of a window, never below 1."""
    s, e = to_day(start), to_day(end)
    if s is None or e is None:
        return 1
    return max(1, (e - s).days + 1)

def empty_series() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype="object") for c in OBS_COLUMNS}).astype(
        {"price": float, "day_change": float, "date": "datetime64[ns]"}
    )

# ---------- window / selection filters ----------
def _isin(frame: pd.DataFrame, col: str, values) -> pd.Series:
    wanted = {getattr(v, "value", v) for v in values}
    return frame[col].map(lambda v: getattr(v, "value", v)).isin(wanted)

def select_window(observations: pd.DataFrame, start=None, end=None) -> pd.DataFrame:
    """Rows whose calendar day falls inside ``[start, end]`` (either bound optional)."""
    if observations is None or observations.empty:
        return empty_series()
    days = observations["date"].dt.normalize()
    mask = pd.Series(True, index=observations.index)
    s, e = to_day(start), to_day(end)
    if s is not None:
        mask &= days >= s
    if e is not None:
        mask &= days <= e
    return observations.loc[mask]

def build_series(observations: pd.DataFrame, start=None, end=None,
                 point_ids: list | None = None, region_code: str | None = None,
                 point_types: list | None = None,
                 sub_types: list | None = None) -> dict[str, pd.DataFrame]:
    """
    Split raw observations into one date-ordered series per collection point.

    Args:
        observations: Observation frame (see OBS_COLUMNS)
        start, end: Inclusive calendar-day window, either side optional
        point_ids: Explicit point selection; selected points without rows
            still get an (empty) series
        region_code, point_types, sub_types: Optional narrowing filters

    Returns:
        Ordered mapping point_id -> series frame, selection order first,
        then order of first appearance. Within a series each calendar day
        appears once (the later-loaded row wins) and dates ascend.
    """
    frame = select_window(observations, start, end)
    if not frame.empty:
        if point_ids:
            frame = frame[frame["point_id"].isin(point_ids)]
        if region_code:
            frame = frame[frame["region_code"] == region_code]
        if point_types:
            frame = frame[_isin(frame, "point_type", point_types)]
        if sub_types:
            frame = frame[_isin(frame, "sub_type", sub_types)]

    out: dict[str, pd.DataFrame] = {}
    for pid in point_ids or []:
        out.setdefault(pid, empty_series())
    if frame.empty:
        return out

    frame = frame.assign(_day=frame["date"].dt.normalize())
    # keep="last" on load order, then a stable sort by date
    frame = frame.drop_duplicates(subset=["point_id", "_day"], keep="last")
    for pid, g in frame.groupby("point_id", sort=False):
        out[pid] = (g.sort_values("_day", kind="mergesort")
                     .drop(columns="_day")
                     .reset_index(drop=True))
    return out

def latest_rows(series_map: dict[str, pd.DataFrame]) -> pd.DataFrame:
    rows = [s.iloc[-1] for s in series_map.values() if not s.empty]
    if not rows:
        return empty_series()
    return pd.DataFrame(rows).reset_index(drop=True)

def observed_days(series: pd.DataFrame) -> int:
    if series is None or series.empty:
        return 0
    return int(series["date"].dt.normalize().nunique())

REGION_AVG_COLUMN = "region_avg"

def daily_frame(series_map: dict[str, pd.DataFrame], region_observations: pd.DataFrame | None = None,
                start=None, end=None) -> pd.DataFrame:
    """
    Canonical day x point price grid, the shape trend charts plot.

    One row per calendar day from ``start`` to ``end`` (defaults: first and
    last day with data), one price column per point in ``series_map`` order
    (NaN where the point has no price that day), plus ``region_avg``, the
    mean price of ``region_observations`` on each day.
    """
    columns = ["date", *series_map.keys(), REGION_AVG_COLUMN]
    frames = [s[["point_id", "date", "price"]] for s in series_map.values() if not s.empty]
    stacked = pd.concat(frames, ignore_index=True) if frames else None
    s, e = to_day(start), to_day(end)
    if stacked is not None:
        days = stacked["date"].dt.normalize()
        s = days.min() if s is None else s
        e = days.max() if e is None else e
    if s is None or e is None or e < s:
        return pd.DataFrame(columns=columns)

    index = pd.date_range(s, e, freq="D", name="date")
    if stacked is not None:
        grid = (stacked.assign(date=days)
                       .pivot_table(index="date", columns="point_id", values="price", aggfunc="last"))
    else:
        grid = pd.DataFrame(index=index)
    grid = grid.reindex(index=index, columns=list(series_map.keys()))

    region = select_window(region_observations, s, e)
    if region.empty:
        grid[REGION_AVG_COLUMN] = float("nan")
    else:
        avg = region["price"].astype(float).groupby(region["date"].dt.normalize()).mean()
        grid[REGION_AVG_COLUMN] = avg.reindex(index)
    grid.columns.name = None
    return grid.reset_index()[columns]
