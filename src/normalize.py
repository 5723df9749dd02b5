import pandas as pd

from ingest import PRICE_COLUMNS, POINT_COLUMNS
from price_analytics.vocab import (
    normalize_point_type, normalize_quality_tag, normalize_review_status,
    normalize_input_method, normalize_source_type, normalize_sub_type,
)

# upstream camelCase field -> price_data column
FIELD_MAP = {
    "id": "id",
    "collectionPointId": "point_id",
    "commodity": "commodity",
    "effectiveDate": "effective_date",
    "price": "price",
    "dayChange": "day_change",
    "location": "location",
    "province": "province",
    "city": "city",
    "district": "district",
    "regionCode": "region_code",
    "sourceType": "source_type",
    "subType": "sub_type",
    "qualityTag": "quality_tag",
    "reviewStatus": "review_status",
    "inputMethod": "input_method",
    "note": "note",
    "createdAt": "created_at",
}

ENUM_COLUMNS = {
    "source_type": normalize_source_type,
    "sub_type": normalize_sub_type,
    "quality_tag": normalize_quality_tag,
    "review_status": normalize_review_status,
    "input_method": normalize_input_method,
}


def _enum(value, normalizer):
    member = normalizer(value)
    return member.value if member is not None else None


def _point_row(item: dict) -> dict | None:
    cp = item.get("collectionPoint") or {}
    pid = cp.get("id") or item.get("collectionPointId")
    if not pid:
        return None
    region = item.get("region")
    if isinstance(region, list):
        region = region[-1] if region else None
    return {
        "point_id": pid,
        "code": cp.get("code"),
        "name": cp.get("name"),
        "short_name": cp.get("shortName"),
        "point_type": _enum(cp.get("type"), normalize_point_type),
        "region_code": item.get("regionCode"),
        "region_label": region or item.get("city") or item.get("province"),
    }


def normalize(payload: dict) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Turn one API page into (price rows, collection point rows).

    Rows without an id, a date or a numeric price are dropped; dates are
    stored as ISO strings, vocabularies as their canonical values.
    """
    items = payload.get("data") or []
    rows = []
    points = []
    for item in items:
        row = {col: item.get(field) for field, col in FIELD_MAP.items()}
        rows.append(row)
        point = _point_row(item)
        if point:
            points.append(point)

    df = pd.DataFrame(rows, columns=PRICE_COLUMNS)
    if df.empty:
        return df, pd.DataFrame(columns=POINT_COLUMNS)

    df["price"] = pd.to_numeric(df["price"], errors="coerce")
    df["day_change"] = pd.to_numeric(df["day_change"], errors="coerce")
    df["effective_date"] = pd.to_datetime(df["effective_date"], errors="coerce", utc=True, format="ISO8601")
    df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce", utc=True, format="ISO8601")
    df = df[df["id"].notna() & df["effective_date"].notna() & df["price"].notna()].copy()

    df["effective_date"] = df["effective_date"].dt.strftime("%Y-%m-%dT%H:%M:%S")
    df["created_at"] = df["created_at"].dt.strftime("%Y-%m-%dT%H:%M:%S")
    for col, normalizer in ENUM_COLUMNS.items():
        df[col] = df[col].map(lambda v: _enum(v, normalizer))

    pts = pd.DataFrame(points, columns=POINT_COLUMNS).drop_duplicates(subset=["point_id"], keep="last")
    return df.sort_values(["effective_date", "id"]).reset_index(drop=True), pts.reset_index(drop=True)
