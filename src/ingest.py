import sqlite3, json, datetime, pandas as pd

from price_analytics.config import DB

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS collection_points(
  point_id TEXT PRIMARY KEY,
  code TEXT,
  name TEXT,
  short_name TEXT,
  point_type TEXT,
  region_code TEXT,
  region_label TEXT
);
CREATE TABLE IF NOT EXISTS price_data(
  id TEXT PRIMARY KEY,
  point_id TEXT,
  commodity TEXT,
  effective_date TEXT,
  price REAL,
  day_change REAL,
  location TEXT,
  province TEXT,
  city TEXT,
  district TEXT,
  region_code TEXT,
  source_type TEXT,
  sub_type TEXT,
  quality_tag TEXT,
  review_status TEXT,
  input_method TEXT,
  note TEXT,
  created_at TEXT
);
CREATE TABLE IF NOT EXISTS raw_cache(
  page INTEGER PRIMARY KEY,
  fetched_at TEXT,
  payload TEXT
);
CREATE INDEX IF NOT EXISTS idx_pd_date ON price_data(effective_date);
CREATE INDEX IF NOT EXISTS idx_pd_point ON price_data(point_id);
CREATE INDEX IF NOT EXISTS idx_pd_commodity ON price_data(commodity);
"""

PRICE_COLUMNS = [
    "id", "point_id", "commodity", "effective_date", "price", "day_change",
    "location", "province", "city", "district", "region_code", "source_type",
    "sub_type", "quality_tag", "review_status", "input_method", "note", "created_at",
]
POINT_COLUMNS = ["point_id", "code", "name", "short_name", "point_type", "region_code", "region_label"]

def get_conn(db=DB):
    conn = sqlite3.connect(db)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.executescript(SCHEMA_SQL)
    return conn

def _rows(df: pd.DataFrame, columns: list) -> list:
    for col in columns:
        if col not in df.columns:
            df[col] = None
    # sqlite3 can't bind NaN/NaT cleanly
    return df[columns].astype(object).where(df[columns].notna(), None).values.tolist()

def upsert_points(conn, points: pd.DataFrame):
    if points is None or points.empty:
        return 0
    rows = _rows(points.drop_duplicates(subset=["point_id"], keep="last").copy(), POINT_COLUMNS)
    conn.executemany(
      "INSERT INTO collection_points(point_id,code,name,short_name,point_type,region_code,region_label) "
      "VALUES (?,?,?,?,?,?,?) "
      "ON CONFLICT(point_id) DO UPDATE SET code=excluded.code, name=excluded.name, "
      "short_name=excluded.short_name, point_type=excluded.point_type, "
      "region_code=COALESCE(excluded.region_code, collection_points.region_code), "
      "region_label=COALESCE(excluded.region_label, collection_points.region_label)",
      rows
    )
    conn.commit()
    return len(rows)

def upsert_frame(conn, df: pd.DataFrame):
    """Insert or replace price rows keyed by their upstream id."""
    if df is None or df.empty:
        return 0
    rows = _rows(df.copy(), PRICE_COLUMNS)
    marks = ",".join("?" * len(PRICE_COLUMNS))
    conn.executemany(
      f"INSERT OR REPLACE INTO price_data({','.join(PRICE_COLUMNS)}) VALUES ({marks})",
      rows
    )
    conn.commit()
    return len(rows)

def save_raw(conn, page: int, payload: dict):
    conn.execute("INSERT OR REPLACE INTO raw_cache(page,fetched_at,payload) VALUES (?,?,?)",
                 (page, datetime.datetime.now(datetime.timezone.utc).isoformat(),
                  json.dumps(payload, ensure_ascii=False)))
    conn.commit()
