from dataclasses import dataclass, replace

import pandas as pd

from .anomaly import deviation_pct

RULE_TYPES = ("DAY_CHANGE_ABS", "DAY_CHANGE_PCT", "DEVIATION_FROM_MEAN_PCT", "CONTINUOUS_DAYS")
DIRECTIONS = ("UP", "DOWN", "BOTH")
SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")

HIT_COLUMNS = [
    "dedupe_key", "rule_id", "rule_name", "rule_type", "severity", "point_id",
    "point_name", "point_type", "region_label", "trigger_date", "trigger_value",
    "threshold_value", "message",
]


@dataclass
class AlertRule:
    """A market alert rule evaluated against the latest price of each point."""
    rule_id: str
    name: str
    type: str
    threshold: float | None = None
    days: int | None = None
    direction: str = "BOTH"
    severity: str = "MEDIUM"
    is_active: bool = True


def validate_rule(rule: AlertRule) -> AlertRule:
    name = (rule.name or "").strip()
    if not name:
        raise ValueError("Alert rule name must not be empty")
    if rule.type not in RULE_TYPES:
        raise ValueError(f"Invalid alert rule type: {rule.type}. Must be one of {RULE_TYPES}")
    if rule.type != "CONTINUOUS_DAYS" and (rule.threshold is None or rule.threshold <= 0):
        raise ValueError(f"Alert rule '{name}' needs a positive threshold")
    if rule.type == "CONTINUOUS_DAYS" and rule.days is not None and int(rule.days) < 2:
        raise ValueError(f"Alert rule '{name}' needs a run of at least 2 days, got {rule.days}")
    if rule.direction not in DIRECTIONS:
        raise ValueError(f"Invalid direction: {rule.direction}. Must be one of {DIRECTIONS}")
    if rule.severity not in SEVERITIES:
        raise ValueError(f"Invalid severity: {rule.severity}. Must be one of {SEVERITIES}")
    return replace(rule, name=name)

def _run_direction(prices: list[float]) -> tuple[bool, bool]:
    up = all(b >= a for a, b in zip(prices, prices[1:]))
    down = all(b <= a for a, b in zip(prices, prices[1:]))
    return up, down

def evaluate_alerts(series_map: dict[str, pd.DataFrame], rules: list[AlertRule]) -> pd.DataFrame:
    """
    Evaluate active alert rules against every point's latest observation.

    Args:
        series_map: point_id -> date-ordered series (see series.build_series)
        rules: Alert rules; inactive ones are skipped

    Returns:
        DataFrame of hits (HIT_COLUMNS). ``dedupe_key`` is stable for a
        rule, point and trigger day, so re-evaluating the same data yields
        the same keys.
    """
    rules = [validate_rule(r) for r in rules if r.is_active]
    live = {pid: s for pid, s in series_map.items() if not s.empty}
    if not rules or not live:
        return pd.DataFrame(columns=HIT_COLUMNS)

    latest_prices = pd.Series({pid: float(s["price"].iloc[-1]) for pid, s in live.items()})
    mean_latest = float(latest_prices.mean()) if len(latest_prices) else 0.0
    deviations = deviation_pct(latest_prices, mean_latest)

    hits = []
    for pid, s in live.items():
        latest = s.iloc[-1]
        price = float(latest["price"])
        change = latest.get("day_change")
        change = 0.0 if pd.isna(change) else float(change)
        change_pct = abs(change / price * 100) if price else 0.0
        name = latest.get("point_name") or pid
        trigger_day = pd.Timestamp(latest["date"]).normalize()

        for rule in rules:
            threshold = float(rule.threshold or 0)
            hit, value, message = False, 0.0, ""
            if rule.type == "DAY_CHANGE_ABS":
                value = abs(change)
                hit = value >= threshold
                message = f"{name} day change {change:+.2f}"
            elif rule.type == "DAY_CHANGE_PCT":
                value = change_pct
                hit = value >= threshold
                message = f"{name} day change {value:.2f}%"
            elif rule.type == "DEVIATION_FROM_MEAN_PCT":
                value = float(deviations[pid])
                hit = value >= threshold
                message = f"{name} deviates {value:.2f}% from the mean"
            elif rule.type == "CONTINUOUS_DAYS":
                window = int(rule.days or 3)
                recent = s["price"].astype(float).tolist()[-window:]
                if len(recent) >= window:
                    up, down = _run_direction(recent)
                    hit = {"BOTH": up or down, "UP": up, "DOWN": down}[rule.direction]
                    value = threshold = float(window)
                    message = f"{name} {'up' if up else 'down'} {window} days in a row"
            if not hit:
                continue
            hits.append({
                "dedupe_key": f"{rule.rule_id}:{pid}:{trigger_day:%Y-%m-%d}",
                "rule_id": rule.rule_id,
                "rule_name": rule.name,
                "rule_type": rule.type,
                "severity": rule.severity,
                "point_id": pid,
                "point_name": name,
                "point_type": latest.get("point_type"),
                "region_label": latest.get("region_label"),
                "trigger_date": trigger_day,
                "trigger_value": round(value, 2),
                "threshold_value": round(threshold, 2),
                "message": message,
            })
    return pd.DataFrame(hits, columns=HIT_COLUMNS)
