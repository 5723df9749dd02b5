import json
from pathlib import Path

import numpy as np
import pandas as pd

from .alerts import evaluate_alerts, HIT_COLUMNS
from .anomaly import flag_anomalies, only_anomalies, latest_region_average, mean_latest_price, apply_baseline
from .distribution import distribution_items
from .health import continuity_health, top_risks
from .params import CompareParams, HealthParams
from .query import PriceQuery, load_observations
from .ranking import ranking_items, sort_ranking, change_ranking, group_ranking, apply_index_mode
from .regions import summarize_regions, region_view, quality_overview
from .series import build_series, expected_days, select_window, daily_frame

# columns shown per display mode
DISTRIBUTION_VIEWS = {
    "box": ["id", "name", "min", "q1", "median", "q3", "max"],
    "band": ["id", "name", "min", "avg", "max"],
}
REGION_VIEWS_COLUMNS = {
    "compact": ["region", "avg_price", "count", "delta", "delta_pct", "has_prev"],
    "detail": ["region", "avg_price", "count", "delta", "delta_pct", "has_prev",
               "q1", "median", "q3", "volatility", "min_price", "max_price",
               "missing_days", "missing_rate", "latest_ts"],
}

# ---------- serialization ----------
def to_records(frame: pd.DataFrame) -> list[dict]:
    """DataFrame rows as plain dicts; NaN becomes None."""
    if frame is None or frame.empty:
        return []
    clean = frame.astype(object).where(frame.notna(), None)
    return clean.to_dict("records")

def _json_default(value):
    if isinstance(value, pd.Timestamp):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, pd.DataFrame):
        return to_records(value)
    return str(value)

# ---------- comparison ----------
def compare_analytics(observations: pd.DataFrame, params: CompareParams | None = None) -> dict:
    """
    Full comparison result for one request.

    Args:
        observations: Observation frame from the query layer. Its rows are
            the region sample; the ranking only covers ``params.point_ids``
            (or every point when nothing is selected)
        params: Request parameters, validated here

    Returns:
        Dict with ranking, change_ranking, groups, distribution, meta,
        latest_region_avg, quality, regions (list, summary, view), the
        per-point series and the daily day x point grid

    Raises:
        ValueError: If any parameter is invalid
    """
    params = (params or CompareParams()).validate()
    start, end = params.start_date, params.end_date
    expected = expected_days(start, end) if params.windowed else None

    series_map = build_series(observations, start, end, point_ids=params.point_ids)
    items = ranking_items(series_map, expected)
    items = flag_anomalies(items, params.deviation_threshold, params.change_threshold)

    region_sample = select_window(observations, start, end)
    region_avg = latest_region_average(region_sample)
    items, baseline = apply_baseline(items, params.baseline, region_avg)
    items = apply_index_mode(items, params.index_mode)

    visible = only_anomalies(items) if params.only_anomalies else items
    ranking = sort_ranking(visible, params.sort_metric)
    groups = group_ranking(ranking, params.group_mode, params.sort_metric, params.type_labels)

    distribution = distribution_items(series_map, order=list(ranking["id"]),
                                      limit=params.distribution_limit)

    regions, region_summary = summarize_regions(observations, params.region_level,
                                                params.region_window, start, end)
    view = region_view(regions, params.region_sort, params.region_view,
                       params.region_keyword, params.region_top_n)

    return {
        "ranking": ranking,
        "change_ranking": change_ranking(visible),
        "groups": groups,
        "distribution": distribution,
        "distribution_view": distribution[DISTRIBUTION_VIEWS[params.distribution_mode]],
        "meta": {
            "mean_latest_price": mean_latest_price(items),
            "expected_days": expected,
            "selected_point_count": len(series_map),
            "anomaly_count": int(items["is_anomaly"].sum()) if not items.empty else 0,
            "baseline": baseline,
            "sort_metric": params.sort_metric,
            "group_mode": params.group_mode,
            "index_mode": params.index_mode,
            "distribution_mode": params.distribution_mode,
        },
        "latest_region_avg": region_avg,
        "quality": quality_overview(region_sample, start, end),
        "regions": {
            "list": regions,
            "summary": region_summary,
            "view": view[REGION_VIEWS_COLUMNS[params.region_detail]],
        },
        "series": series_map,
        "daily": daily_frame(series_map, region_sample, start, end),
    }

def health_report(observations: pd.DataFrame, params: HealthParams | None = None) -> dict:
    params = (params or HealthParams()).validate()
    points, summary = continuity_health(
        observations, params.start_date, params.end_date, params.days,
        point_ids=params.point_ids,
        deviation_threshold=params.deviation_threshold,
        change_threshold=params.change_threshold,
    )
    return {"points": points, "summary": summary, "top_risks": top_risks(points)}

# ---------- batch export ----------
def _groups_frame(groups: list[tuple[str, pd.DataFrame]]) -> pd.DataFrame:
    frames = [g.assign(group=name) for name, g in groups if not g.empty]
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)

def generate_all(db_path: str, out_dir: str, query: PriceQuery | None = None,
                 params: CompareParams | None = None,
                 health_params: HealthParams | None = None,
                 rules: list | None = None) -> dict:
    """
    Load observations once and export every analytics table.

    Tables go to CSV (utf-8-sig, opens cleanly in Excel); the summaries go
    to ``summary.json``.

    Raises:
        FileNotFoundError, sqlite3.Error, ValueError: From loading and
            parameter validation
    """
    out = Path(out_dir); out.mkdir(parents=True, exist_ok=True)
    try:
        df = load_observations(db_path, query)
        compare = compare_analytics(df, params)
        health = health_report(df, health_params or HealthParams(
            start_date=query.start_date if query else None,
            end_date=query.end_date if query else None,
        ))
        hits = evaluate_alerts(compare["series"], rules) if rules else pd.DataFrame(columns=HIT_COLUMNS)

        compare["ranking"].to_csv(out / "ranking.csv", index=False, encoding="utf-8-sig")
        compare["change_ranking"].to_csv(out / "change_ranking.csv", index=False, encoding="utf-8-sig")
        _groups_frame(compare["groups"]).to_csv(out / "groups.csv", index=False, encoding="utf-8-sig")
        compare["distribution"].to_csv(out / "distribution.csv", index=False, encoding="utf-8-sig")
        compare["daily"].to_csv(out / "daily.csv", index=False, encoding="utf-8-sig")
        compare["regions"]["list"].to_csv(out / "regions.csv", index=False, encoding="utf-8-sig")
        compare["regions"]["view"].to_csv(out / "region_view.csv", index=False, encoding="utf-8-sig")
        health["points"].to_csv(out / "health.csv", index=False, encoding="utf-8-sig")
        hits.to_csv(out / "alerts.csv", index=False, encoding="utf-8-sig")

        summary = {
            "meta": compare["meta"],
            "latest_region_avg": compare["latest_region_avg"],
            "quality": compare["quality"],
            "regions": compare["regions"]["summary"],
            "health": health["summary"],
            "top_risks": to_records(health["top_risks"]),
            "alert_count": int(len(hits)),
        }
        with open(out / "summary.json", "w", encoding="utf-8") as f:
            json.dump(summary, f, ensure_ascii=False, indent=2, default=_json_default)

        print(f"📊 {len(compare['ranking'])} ranked points, {len(compare['regions']['list'])} regions, "
              f"health {health['summary']['overall_score']}, {len(hits)} alerts")
        return {"compare": compare, "health": health, "alerts": hits}

    except Exception as e:
        print(f"❌ Analytics export failed: {e}")
        raise
