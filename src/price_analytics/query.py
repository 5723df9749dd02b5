import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd

from .config import DEFAULT_DAYS
from .params import check_range
from .series import OBS_COLUMNS, to_day, select_window
from .vocab import (
    PointType, QualityTag, ReviewStatus, SourceType,
    normalize_point_type, normalize_quality_tag, normalize_review_status,
    normalize_input_method, normalize_source_type, normalize_sub_type,
    resolve_review_statuses, resolve_input_methods, infer_quality_tag,
)

COMMODITY_LABELS = {
    "CORN": "玉米",
    "WHEAT": "小麦",
    "SOYBEAN": "大豆",
    "RICE": "稻谷",
    "SORGHUM": "高粱",
    "BARLEY": "大麦",
}

OBSERVATION_SQL = """
SELECT
  p.point_id,
  COALESCE(cp.short_name, cp.name, p.location) AS point_name,
  cp.point_type AS point_type,
  COALESCE(p.region_code, cp.region_code) AS region_code,
  COALESCE(cp.region_label, p.city, p.province) AS region_label,
  p.province, p.city, p.district, p.location,
  p.effective_date AS date, p.price, p.day_change,
  p.quality_tag, p.review_status, p.source_type, p.input_method,
  p.sub_type, p.commodity, p.created_at, p.note
FROM price_data p
LEFT JOIN collection_points cp ON cp.point_id = p.point_id
"""


@dataclass
class PriceQuery:
    """Filters applied by the query layer before anything reaches the engine."""
    commodity: str | None = None
    start_date: object = None
    end_date: object = None
    days: int | None = DEFAULT_DAYS
    point_ids: list = field(default_factory=list)
    region_code: str | None = None
    point_types: list = field(default_factory=list)
    sub_types: list = field(default_factory=list)
    review_scope: str | None = None
    source_scope: str | None = None
    quality_tags: list = field(default_factory=list)


def resolve_date_range(days: int | None = DEFAULT_DAYS, start=None, end=None):
    """
    Turn ``days`` / ``start`` / ``end`` into a concrete inclusive range.

    Without a start, the range covers the ``days`` calendar days ending at
    ``end`` (today when not given). Raises ValueError when end < start.
    """
    s, e = to_day(start), to_day(end)
    if s is None and days:
        e = e if e is not None else pd.Timestamp.today().normalize()
        s = e - pd.Timedelta(days=int(days) - 1)
    validate_range(s, e)
    return s, e

def validate_range(start, end):
    check_range(start, end)

def commodity_candidates(commodity: str | None) -> list[str]:
    value = (commodity or "").strip()
    if not value:
        return []
    out = [value]
    code = value.upper()
    if code in COMMODITY_LABELS:
        out += [code, COMMODITY_LABELS[code]]
    for c, label in COMMODITY_LABELS.items():
        if label == value:
            out += [c, label]
    return list(dict.fromkeys(out))

# ---------- ingestion boundary ----------
def _enum_value(value, normalizer, default=None):
    member = normalizer(value)
    if member is None:
        return default.value if default is not None else None
    return member.value

def _naive(col: pd.Series) -> pd.Series:
    col = pd.to_datetime(col, errors="coerce", utc=True, format="ISO8601")
    return col.dt.tz_localize(None)

def to_observations(raw: pd.DataFrame) -> pd.DataFrame:
    """
    Coerce raw price rows into the observation frame.

    Args:
        raw: Rows with at least [date, price] and ideally point_id; column
            values may use any known spelling of the vocabularies

    Returns:
        Observation frame with every column of OBS_COLUMNS, enum values as
        plain strings and unusable rows (bad date or price) dropped

    Raises:
        ValueError: If required columns are missing
    """
    required_cols = ["date", "price"]
    missing_cols = [col for col in required_cols if col not in raw.columns]
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    df = raw.copy()
    for col in OBS_COLUMNS + ["note", "location"]:
        if col not in df.columns:
            df[col] = None

    df["date"] = _naive(df["date"])
    invalid_dates = int(df["date"].isna().sum())
    if invalid_dates > 0:
        print(f"⚠️  {invalid_dates} invalid dates dropped")
    df["price"] = pd.to_numeric(df["price"], errors="coerce").astype(float)
    invalid_prices = int((~np.isfinite(df["price"])).sum())
    if invalid_prices > 0:
        print(f"⚠️  {invalid_prices} invalid prices dropped")
    df = df[df["date"].notna() & np.isfinite(df["price"])].copy()
    df["day_change"] = pd.to_numeric(df["day_change"], errors="coerce")
    df["created_at"] = _naive(df["created_at"])

    # rows without a collection point are regional quotes keyed by location
    no_point = df["point_id"].isna() | (df["point_id"].astype(str).str.strip() == "")
    df.loc[no_point, "point_id"] = (
        "REGIONAL:" + df.loc[no_point, "region_code"].fillna("NA").astype(str)
        + ":" + df.loc[no_point, "location"].fillna("").astype(str)
    )
    df["point_name"] = df["point_name"].where(df["point_name"].notna(), df["location"])
    df["point_name"] = df["point_name"].where(df["point_name"].notna(), df["point_id"])

    df["point_type"] = df["point_type"].map(lambda v: _enum_value(v, normalize_point_type, PointType.REGION))
    df["review_status"] = df["review_status"].map(lambda v: _enum_value(v, normalize_review_status, ReviewStatus.PENDING))
    df["input_method"] = df["input_method"].map(lambda v: _enum_value(v, normalize_input_method))
    df["source_type"] = df["source_type"].map(lambda v: _enum_value(v, normalize_source_type))
    df["sub_type"] = df["sub_type"].map(lambda v: _enum_value(v, normalize_sub_type))

    tags = df["quality_tag"].map(normalize_quality_tag)
    inferred = [
        tag.value if tag is not None else infer_quality_tag(
            note if isinstance(note, str) else None,
            None if pd.isna(d) else d,
            None if pd.isna(c) else c,
        ).value
        for tag, note, d, c in zip(tags, df["note"], df["date"], df["created_at"])
    ]
    df["quality_tag"] = inferred
    tagged_late = df["quality_tag"] == QualityTag.LATE.value
    df["is_late"] = df["is_late"].where(df["is_late"].notna(), tagged_late).astype(bool)

    df["date"] = df["date"].dt.normalize()
    return df[OBS_COLUMNS].reset_index(drop=True)

def filter_observations(observations: pd.DataFrame, query: PriceQuery) -> pd.DataFrame:
    """Apply every PriceQuery filter to an observation frame."""
    start, end = resolve_date_range(query.days, query.start_date, query.end_date)
    if observations.empty:
        return observations
    df = select_window(observations, start, end)

    candidates = commodity_candidates(query.commodity)
    if candidates:
        df = df[df["commodity"].isin(candidates)]
    if query.point_ids:
        df = df[df["point_id"].isin(query.point_ids)]
    if query.region_code:
        df = df[df["region_code"] == query.region_code]
    if query.point_types:
        types = [_enum_value(t, normalize_point_type) for t in query.point_types]
        mask = df["point_type"].isin(types)
        if PointType.REGION.value in types:
            mask |= df["source_type"] == SourceType.REGIONAL.value
        df = df[mask]
    if query.sub_types:
        sub_types = [_enum_value(t, normalize_sub_type) for t in query.sub_types]
        df = df[df["sub_type"].isin(sub_types)]
    statuses = resolve_review_statuses(query.review_scope)
    if statuses:
        df = df[df["review_status"].isin([s.value for s in statuses])]
    methods = resolve_input_methods(query.source_scope)
    if methods:
        df = df[df["input_method"].isin([m.value for m in methods])]
    if query.quality_tags:
        tags = [_enum_value(t, normalize_quality_tag) for t in query.quality_tags]
        df = df[df["quality_tag"].isin(tags)]
    return df.reset_index(drop=True)

def load_observations(db_path: str, query: PriceQuery | None = None) -> pd.DataFrame:
    """
    Load observations from the SQLite price store.

    Args:
        db_path: Path to SQLite database
        query: Filters; defaults to the last DEFAULT_DAYS days, all points

    Returns:
        Filtered observation frame ordered by effective date, then
        ingestion time

    Raises:
        FileNotFoundError: If database file doesn't exist
        sqlite3.Error: If database operations fail
        ValueError: If the date range is invalid or rows can't be coerced
    """
    query = query or PriceQuery()
    try:
        if not Path(db_path).exists():
            raise FileNotFoundError(f"Database file not found: {db_path}")
        start, end = resolve_date_range(query.days, query.start_date, query.end_date)

        clauses, args = [], []
        if start is not None:
            clauses.append("date(p.effective_date) >= date(?)")
            args.append(start.strftime("%Y-%m-%d"))
        if end is not None:
            clauses.append("date(p.effective_date) <= date(?)")
            args.append(end.strftime("%Y-%m-%d"))
        candidates = commodity_candidates(query.commodity)
        if candidates:
            clauses.append(f"p.commodity IN ({','.join('?' * len(candidates))})")
            args.extend(candidates)
        sql = OBSERVATION_SQL
        if clauses:
            sql += "WHERE " + " AND ".join(clauses) + "\n"
        sql += "ORDER BY p.effective_date, p.created_at"

        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.Error as e:
            raise sqlite3.Error(f"Failed to connect to database: {e}")
        try:
            raw = pd.read_sql_query(sql, conn, params=args)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise sqlite3.Error(f"Failed to query database: {e}")
        finally:
            conn.close()

        if raw.empty:
            print("⚠️  No price rows matched the query")
        obs = filter_observations(to_observations(raw), query)
        print(f"✅ Loaded {len(obs)} observations for {obs['point_id'].nunique()} points")
        return obs

    except Exception as e:
        print(f"❌ Failed to load observations: {e}")
        raise
