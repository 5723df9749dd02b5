from dataclasses import dataclass, field, replace

from .config import (
    DEVIATION_THRESHOLD, CHANGE_THRESHOLD, HEALTH_DAYS,
    REGION_LEVELS, REGION_WINDOWS, REGION_TOP_N, DISTRIBUTION_LIMIT,
)
from .ranking import SORT_METRICS, GROUP_MODES
from .regions import REGION_SORTS, REGION_VIEWS
from .series import to_day

DISTRIBUTION_MODES = ("box", "band")
REGION_DETAILS = ("compact", "detail")


def check_range(start, end):
    s, e = to_day(start), to_day(end)
    if s is not None and e is not None and e < s:
        raise ValueError(f"Invalid date range: end {e:%Y-%m-%d} is before start {s:%Y-%m-%d}")

def _check_choice(name: str, value, choices):
    if value not in choices:
        raise ValueError(f"Invalid {name}: {value}. Must be one of {choices}")


@dataclass
class CompareParams:
    """Everything a comparison request can tune. One instance per request."""
    point_ids: list = field(default_factory=list)
    start_date: object = None
    end_date: object = None
    sort_metric: str = "change_pct"
    group_mode: str = "all"
    distribution_mode: str = "box"
    distribution_limit: int = DISTRIBUTION_LIMIT
    index_mode: bool = False
    deviation_threshold: float = DEVIATION_THRESHOLD
    change_threshold: float = CHANGE_THRESHOLD
    baseline: str = "none"
    only_anomalies: bool = False
    type_labels: dict | None = None
    region_level: str = "city"
    region_window: str = "30"
    region_sort: str = "avg"
    region_view: str = "all"
    region_keyword: str = ""
    region_top_n: int = REGION_TOP_N
    region_detail: str = "compact"

    def validate(self) -> "CompareParams":
        check_range(self.start_date, self.end_date)
        _check_choice("sort metric", self.sort_metric, SORT_METRICS)
        _check_choice("group mode", self.group_mode, GROUP_MODES)
        _check_choice("distribution mode", self.distribution_mode, DISTRIBUTION_MODES)
        _check_choice("region level", self.region_level, REGION_LEVELS)
        _check_choice("region window", str(self.region_window), REGION_WINDOWS)
        _check_choice("region sort", self.region_sort, REGION_SORTS)
        _check_choice("region view", self.region_view, REGION_VIEWS)
        _check_choice("region detail", self.region_detail, REGION_DETAILS)
        if self.deviation_threshold < 0 or self.change_threshold < 0:
            raise ValueError("Anomaly thresholds must not be negative")
        # de-duplicated copy, selection order kept
        return replace(self, point_ids=list(dict.fromkeys(p for p in self.point_ids if p)))

    @property
    def windowed(self) -> bool:
        return self.start_date is not None and self.end_date is not None


@dataclass
class HealthParams:
    start_date: object = None
    end_date: object = None
    days: int = HEALTH_DAYS
    point_ids: list = field(default_factory=list)
    deviation_threshold: float = DEVIATION_THRESHOLD
    change_threshold: float = CHANGE_THRESHOLD

    def validate(self) -> "HealthParams":
        check_range(self.start_date, self.end_date)
        if self.days is not None and self.days < 1:
            raise ValueError(f"Invalid window length: {self.days}. Must be at least 1 day")
        return replace(self, point_ids=list(dict.fromkeys(p for p in self.point_ids if p)))
