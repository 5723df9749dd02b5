#!/usr/bin/env python3
"""
Tests for ingestion and the query layer
Vocabulary normalization, API payload normalization, SQLite round trips,
query filters and alert rules
"""

import sys
import json
import sqlite3
import tempfile
import pandas as pd
from datetime import datetime
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

import harvest_all
from ingest import get_conn, upsert_frame, upsert_points
from normalize import normalize
from price_analytics.vocab import (
    Sentiment, PriceSubType, QualityTag, ReviewScope, InputMethod,
    normalize_sentiment, normalize_sub_type, normalize_review_scope,
    resolve_review_statuses, resolve_input_methods, infer_quality_tag,
)
from price_analytics.query import (
    PriceQuery, commodity_candidates, resolve_date_range, filter_observations,
    load_observations, to_observations,
)
from price_analytics.series import build_series
from price_analytics.alerts import AlertRule, evaluate_alerts, validate_rule
from price_analytics.params import CompareParams, HealthParams
from price_analytics.report import generate_all

PAYLOAD = {
    "data": [
        {"id": "r1", "collectionPointId": "cp1", "commodity": "CORN",
         "effectiveDate": "2024-01-01T00:00:00.000Z", "price": "2300", "dayChange": 0,
         "location": "Jinzhou Port", "province": "Liaoning", "city": "Jinzhou",
         "regionCode": "210700", "sourceType": "port", "subType": "FOB",
         "reviewStatus": "APPROVED", "inputMethod": "MANUAL_ENTRY",
         "createdAt": "2024-01-01T09:00:00.000Z",
         "collectionPoint": {"id": "cp1", "code": "JZ", "name": "Jinzhou Port", "shortName": "Jinzhou", "type": "port"}},
        {"id": "r2", "collectionPointId": "cp1", "commodity": "CORN",
         "effectiveDate": "2024-01-02T00:00:00.000Z", "price": 2320, "dayChange": 20,
         "location": "Jinzhou Port", "province": "Liaoning", "city": "Jinzhou",
         "regionCode": "210700", "sourceType": "PORT", "subType": "station_origin",
         "reviewStatus": "PENDING", "inputMethod": "AI_EXTRACTED", "note": "数据修正",
         "createdAt": "2024-01-02T10:00:00.000Z",
         "collectionPoint": {"id": "cp1", "code": "JZ", "name": "Jinzhou Port", "shortName": "Jinzhou", "type": "PORT"}},
        {"id": "r3", "collectionPointId": "cp2", "commodity": "CORN",
         "effectiveDate": "2024-01-02T00:00:00.000Z", "price": 2250, "dayChange": -10,
         "location": "Changchun", "province": "Jilin", "city": "Changchun",
         "sourceType": "ENTERPRISE", "reviewStatus": "REJECTED", "inputMethod": "MANUAL_ENTRY",
         "createdAt": "2024-01-02T08:00:00.000Z",
         "collectionPoint": {"id": "cp2", "name": "Changchun Mill", "type": "ENTERPRISE"}},
        {"id": "r4", "commodity": "WHEAT", "effectiveDate": "2024-01-02", "price": "n/a",
         "location": "Zhengzhou"},
    ],
    "total": 4, "page": 1, "pageSize": 500, "totalPages": 1,
}


def _seed(db_path):
    conn = get_conn(db_path)
    rows, points = normalize(PAYLOAD)
    upsert_points(conn, points)
    upsert_frame(conn, rows)
    conn.close()


def test_vocab_normalization():
    print("🧪 Testing vocabulary normalization...")
    assert normalize_sentiment("bullish") is Sentiment.POSITIVE
    assert normalize_sentiment("利空") is Sentiment.NEGATIVE
    assert normalize_sentiment("sideways") is None
    assert normalize_sub_type("station_dest") is PriceSubType.STATION
    assert normalize_review_scope(None) is ReviewScope.APPROVED_AND_PENDING
    assert resolve_review_statuses("ALL") is None
    assert len(resolve_review_statuses("approved_only")) == 2
    assert resolve_input_methods("AI_ONLY") == [InputMethod.AI_EXTRACTED]
    assert resolve_input_methods(None) is None
    print("✅ Vocabularies normalize")


def test_infer_quality_tag():
    print("\n🧪 Testing quality tag inference...")
    day = datetime(2024, 1, 1)
    assert infer_quality_tag("价格更正", day, day) is QualityTag.CORRECTED
    assert infer_quality_tag("周末补录", day, day) is QualityTag.IMPUTED
    assert infer_quality_tag(None, day, datetime(2024, 1, 3)) is QualityTag.LATE
    assert infer_quality_tag("", day, datetime(2024, 1, 1, 12)) is QualityTag.RAW
    assert infer_quality_tag(None, None, None) is QualityTag.RAW
    print("✅ Quality tags inferred")


def test_commodity_and_range():
    assert commodity_candidates("玉米") == ["玉米", "CORN"]
    assert commodity_candidates("corn") == ["corn", "CORN", "玉米"]
    assert commodity_candidates("  ") == []
    start, end = resolve_date_range(7, end="2024-01-10")
    assert start == pd.Timestamp("2024-01-04") and end == pd.Timestamp("2024-01-10")
    try:
        resolve_date_range(None, "2024-01-10", "2024-01-01")
        assert False, "end before start should fail"
    except ValueError as e:
        assert "Invalid date range" in str(e)
    try:
        HealthParams(start_date="2024-02-01", end_date="2024-01-01").validate()
        assert False, "end before start should fail"
    except ValueError:
        pass


def test_normalize_payload():
    print("\n🧪 Testing payload normalization...")
    rows, points = normalize(PAYLOAD)
    assert rows["id"].tolist() == ["r1", "r2", "r3"]
    assert rows.loc[rows["id"] == "r2", "sub_type"].iloc[0] == "STATION"
    assert rows.loc[rows["id"] == "r1", "source_type"].iloc[0] == "PORT"
    assert rows.loc[rows["id"] == "r1", "price"].iloc[0] == 2300.0
    assert points["point_id"].tolist() == ["cp1", "cp2"]
    assert points.loc[points["point_id"] == "cp1", "point_type"].iloc[0] == "PORT"
    print("✅ Payload normalized")


def test_to_observations_validation():
    try:
        to_observations(pd.DataFrame({"point_id": ["p1"], "date": ["2024-01-01"]}))
        assert False, "missing price should fail"
    except ValueError as e:
        assert "Missing required columns" in str(e)

    obs = to_observations(pd.DataFrame({
        "point_id": ["p1", None, "p3"],
        "location": ["A", "Harbin", "C"],
        "region_code": [None, "2301", None],
        "date": ["2024-01-01", "2024-01-01", "not a date"],
        "price": [100, 90, 80],
    }))
    assert len(obs) == 2
    assert obs["point_id"].tolist() == ["p1", "REGIONAL:2301:Harbin"]
    assert obs["point_type"].tolist() == ["REGION", "REGION"]
    assert obs["review_status"].tolist() == ["PENDING", "PENDING"]
    assert not obs["is_late"].any()


def test_filter_observations():
    print("\n🧪 Testing query filters...")
    raw = pd.DataFrame({
        "point_id": ["a", "b", "c", "d"],
        "point_type": ["PORT", "ENTERPRISE", "REGION", "MARKET"],
        "source_type": ["PORT", "REGIONAL", "REGIONAL", None],
        "date": ["2024-01-01"] * 4,
        "price": [1.0, 2.0, 3.0, 4.0],
        "review_status": ["APPROVED", "PENDING", "REJECTED", "AUTO_APPROVED"],
        "input_method": ["AI_EXTRACTED", "MANUAL_ENTRY", "BULK_IMPORT", "AI_EXTRACTED"],
        "commodity": ["CORN", "玉米", "CORN", "WHEAT"],
    })
    obs = to_observations(raw)
    got = filter_observations(obs, PriceQuery(days=None))
    assert got["point_id"].tolist() == ["a", "b", "d"]
    got = filter_observations(obs, PriceQuery(days=None, review_scope="ALL", point_types=["region"]))
    assert got["point_id"].tolist() == ["b", "c"]
    got = filter_observations(obs, PriceQuery(days=None, review_scope="ALL", commodity="corn"))
    assert got["point_id"].tolist() == ["a", "b", "c"]
    got = filter_observations(obs, PriceQuery(days=None, source_scope="MANUAL_ONLY", review_scope="ALL"))
    assert got["point_id"].tolist() == ["b", "c"]
    print("✅ Query filters applied")


def test_sqlite_round_trip(tmp_path):
    print("\n🧪 Testing SQLite round trip...")
    db_path = str(tmp_path / "prices.sqlite")
    _seed(db_path)
    # upserts are idempotent
    _seed(db_path)

    obs = load_observations(db_path, PriceQuery(commodity="玉米", start_date="2024-01-01", end_date="2024-01-02"))
    # r3 is rejected, r4 never made it into storage
    assert sorted(obs["point_id"].unique()) == ["cp1"]
    assert len(obs) == 2
    assert obs["point_name"].iloc[0] == "Jinzhou"
    assert obs["point_type"].iloc[0] == "PORT"
    assert obs["quality_tag"].tolist() == ["RAW", "CORRECTED"]

    everything = load_observations(db_path, PriceQuery(days=None, review_scope="ALL"))
    assert len(everything) == 3

    try:
        load_observations(str(tmp_path / "missing.sqlite"))
        assert False, "missing database should fail"
    except FileNotFoundError:
        pass
    print("✅ SQLite round trip works")


def test_harvest_run(tmp_path, monkeypatch):
    print("\n🧪 Testing harvest loop...")
    calls = []

    def fake_fetch(page, filters=None, refresh=True):
        calls.append(page)
        return PAYLOAD

    monkeypatch.setattr(harvest_all, "fetch_price_page", fake_fetch)
    conn = get_conn(str(tmp_path / "harvest.sqlite"))
    stored = harvest_all.run(conn=conn)
    assert calls == [1]
    assert stored == 3
    assert conn.execute("SELECT COUNT(*) FROM price_data").fetchone()[0] == 3
    assert conn.execute("SELECT COUNT(*) FROM collection_points").fetchone()[0] == 2
    conn.close()
    print("✅ Harvest stored every page")


def test_harvest_closes_own_connection(tmp_path, monkeypatch):
    """A connection opened by run() is closed when the harvest ends"""
    print("\n🧪 Testing harvest connection handling...")
    conn = get_conn(str(tmp_path / "owned.sqlite"))
    monkeypatch.setattr(harvest_all, "get_conn", lambda: conn)
    monkeypatch.setattr(harvest_all, "fetch_price_page", lambda page, filters=None, refresh=True: PAYLOAD)
    assert harvest_all.run() == 3
    try:
        conn.execute("SELECT COUNT(*) FROM price_data")
        assert False, "connection should be closed"
    except sqlite3.ProgrammingError:
        pass
    print("✅ Own connection closed")


def test_alert_rules():
    print("\n🧪 Testing alert rules...")
    obs = to_observations(pd.DataFrame({
        "point_id": ["p1", "p1", "p1", "p2", "p2", "p2"],
        "point_name": ["North", "North", "North", "South", "South", "South"],
        "date": ["2024-01-01", "2024-01-02", "2024-01-03"] * 2,
        "price": [100.0, 101.0, 126.0, 100.0, 100.0, 100.0],
        "day_change": [0.0, 1.0, 25.0, 0.0, 0.0, 0.0],
    }))
    rules = [
        AlertRule("r-abs", "Big move", "DAY_CHANGE_ABS", threshold=20, severity="HIGH"),
        AlertRule("r-run", "Three up", "CONTINUOUS_DAYS", days=3, direction="UP"),
        AlertRule("r-dev", "Off mean", "DEVIATION_FROM_MEAN_PCT", threshold=10),
        AlertRule("r-off", "Disabled", "DAY_CHANGE_ABS", threshold=0.1, is_active=False),
    ]
    hits = evaluate_alerts(build_series(obs), rules)
    keys = set(hits["dedupe_key"])
    assert "r-abs:p1:2024-01-03" in keys
    assert "r-run:p1:2024-01-03" in keys
    assert "r-run:p2:2024-01-03" in keys
    assert "r-dev:p1:2024-01-03" in keys
    assert not any(k.startswith("r-off") for k in keys)
    again = evaluate_alerts(build_series(obs), rules)
    assert set(again["dedupe_key"]) == keys

    for bad in (AlertRule("x", "  ", "DAY_CHANGE_ABS", threshold=1),
                AlertRule("x", "name", "DAY_CHANGE_ABS"),
                AlertRule("x", "name", "PRICE_LEVEL", threshold=1)):
        try:
            validate_rule(bad)
            assert False, "invalid rule should fail"
        except ValueError:
            pass
    print("✅ Alert rules evaluated")


def test_continuous_rule_needs_two_days():
    print("\n🧪 Testing run length validation...")
    for days in (0, 1):
        try:
            validate_rule(AlertRule("x", "Run", "CONTINUOUS_DAYS", days=days))
            assert False, "a run shorter than 2 days should fail"
        except ValueError as e:
            assert "at least 2 days" in str(e)

    rule = AlertRule("x", "  Run  ", "CONTINUOUS_DAYS", days=2)
    clean = validate_rule(rule)
    assert clean.name == "Run" and clean.days == 2
    assert rule.name == "  Run  "
    assert validate_rule(AlertRule("y", "Default", "CONTINUOUS_DAYS")).days is None
    print("✅ Run length validated")


def test_health_params_validate_copy():
    print("\n🧪 Testing health parameter copy...")
    params = HealthParams(point_ids=["p1", "p1", "p2"])
    clean = params.validate()
    assert clean.point_ids == ["p1", "p2"]
    assert params.point_ids == ["p1", "p1", "p2"]
    print("✅ Caller's parameters untouched")


def test_generate_all(tmp_path):
    print("\n🧪 Testing batch export...")
    db_path = str(tmp_path / "prices.sqlite")
    _seed(db_path)
    out = tmp_path / "exports"
    rules = [AlertRule("r-abs", "Big move", "DAY_CHANGE_ABS", threshold=15)]
    result = generate_all(db_path, str(out), PriceQuery(days=None), CompareParams(), rules=rules)
    for name in ("ranking.csv", "change_ranking.csv", "groups.csv", "distribution.csv", "daily.csv",
                 "regions.csv", "region_view.csv", "health.csv", "alerts.csv", "summary.json"):
        assert (out / name).exists(), name
    summary = json.loads((out / "summary.json").read_text(encoding="utf-8"))
    assert summary["meta"]["selected_point_count"] == 1
    assert summary["health"]["point_count"] == 1
    assert summary["alert_count"] == 1
    assert len(result["alerts"]) == 1
    daily = pd.read_csv(out / "daily.csv", encoding="utf-8-sig")
    assert list(daily.columns)[0] == "date" and list(daily.columns)[-1] == "region_avg"
    print("✅ Batch export written")


class _Patch:
    """Minimal stand-in for pytest's monkeypatch when run as a script."""
    def __init__(self):
        self._undo = []

    def setattr(self, target, name, value):
        self._undo.append((target, name, getattr(target, name)))
        setattr(target, name, value)

    def undo(self):
        for target, name, value in reversed(self._undo):
            setattr(target, name, value)


def main():
    print("🚀 Testing ingestion and query layer...\n")
    tests = [
        test_vocab_normalization, test_infer_quality_tag, test_commodity_and_range,
        test_normalize_payload, test_to_observations_validation, test_filter_observations,
        test_sqlite_round_trip, test_harvest_run, test_harvest_closes_own_connection,
        test_alert_rules, test_continuous_rule_needs_two_days, test_health_params_validate_copy,
        test_generate_all,
    ]
    passed = 0
    for test in tests:
        patch = _Patch()
        try:
            with tempfile.TemporaryDirectory() as tmp:
                args = {"tmp_path": Path(tmp), "monkeypatch": patch}
                names = test.__code__.co_varnames[:test.__code__.co_argcount]
                test(*[args[n] for n in names])
            passed += 1
        except AssertionError as e:
            print(f"❌ {test.__name__} failed: {e}")
        finally:
            patch.undo()
    print(f"\n🎯 Results: {passed}/{len(tests)} tests passed")


if __name__ == "__main__":
    main()
