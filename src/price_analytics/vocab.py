"""
Closed vocabularies for the price-data dimensions.

Upstream payloads spell the same thing several ways (``'BULLISH'`` vs
``'positive'``, legacy price sub-types, lower-case enum values). Everything
is mapped to the enums below once, when rows enter the system.
"""

from datetime import datetime
from enum import Enum

from .config import LATE_HOURS_THRESHOLD


class PointType(str, Enum):
    PORT = "PORT"
    ENTERPRISE = "ENTERPRISE"
    MARKET = "MARKET"
    REGION = "REGION"
    STATION = "STATION"


class QualityTag(str, Enum):
    RAW = "RAW"
    IMPUTED = "IMPUTED"
    CORRECTED = "CORRECTED"
    LATE = "LATE"


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    AUTO_APPROVED = "AUTO_APPROVED"
    REJECTED = "REJECTED"


class ReviewScope(str, Enum):
    APPROVED_ONLY = "APPROVED_ONLY"
    APPROVED_AND_PENDING = "APPROVED_AND_PENDING"
    ALL = "ALL"


class SourceScope(str, Enum):
    AI_ONLY = "AI_ONLY"
    MANUAL_ONLY = "MANUAL_ONLY"
    ALL = "ALL"


class InputMethod(str, Enum):
    AI_EXTRACTED = "AI_EXTRACTED"
    MANUAL_ENTRY = "MANUAL_ENTRY"
    BULK_IMPORT = "BULK_IMPORT"


class SourceType(str, Enum):
    ENTERPRISE = "ENTERPRISE"
    REGIONAL = "REGIONAL"
    PORT = "PORT"


class PriceSubType(str, Enum):
    LISTED = "LISTED"
    TRANSACTION = "TRANSACTION"
    ARRIVAL = "ARRIVAL"
    FOB = "FOB"
    STATION = "STATION"
    PURCHASE = "PURCHASE"
    WHOLESALE = "WHOLESALE"
    OTHER = "OTHER"


class Sentiment(str, Enum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"
    NEUTRAL = "NEUTRAL"
    MIXED = "MIXED"


LEGACY_SUB_TYPES = {
    "STATION_ORIGIN": PriceSubType.STATION,
    "STATION_DEST": PriceSubType.STATION,
}

SENTIMENT_ALIASES = {
    "POSITIVE": Sentiment.POSITIVE, "BULLISH": Sentiment.POSITIVE, "利好": Sentiment.POSITIVE,
    "NEGATIVE": Sentiment.NEGATIVE, "BEARISH": Sentiment.NEGATIVE, "利空": Sentiment.NEGATIVE,
    "NEUTRAL": Sentiment.NEUTRAL, "中性": Sentiment.NEUTRAL,
    "MIXED": Sentiment.MIXED,
}

CORRECTED_NOTE_KEYWORDS = ["修正", "更正", "校正", "修订"]
IMPUTED_NOTE_KEYWORDS = ["补录", "估算", "插值", "补齐", "回填"]


def _key(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip().upper()


def _lookup(enum_cls, value):
    key = _key(value)
    if not key:
        return None
    try:
        return enum_cls(key)
    except ValueError:
        return None


def normalize_point_type(value) -> PointType | None:
    return _lookup(PointType, value)


def normalize_quality_tag(value) -> QualityTag | None:
    return _lookup(QualityTag, value)


def normalize_review_status(value) -> ReviewStatus | None:
    return _lookup(ReviewStatus, value)


def normalize_input_method(value) -> InputMethod | None:
    return _lookup(InputMethod, value)


def normalize_source_type(value) -> SourceType | None:
    return _lookup(SourceType, value)


def normalize_sub_type(value) -> PriceSubType | None:
    key = _key(value)
    if key in LEGACY_SUB_TYPES:
        return LEGACY_SUB_TYPES[key]
    return _lookup(PriceSubType, key)


def normalize_sentiment(value) -> Sentiment | None:
    return SENTIMENT_ALIASES.get(_key(value))


def normalize_review_scope(value) -> ReviewScope:
    return _lookup(ReviewScope, value) or ReviewScope.APPROVED_AND_PENDING


def normalize_source_scope(value) -> SourceScope:
    return _lookup(SourceScope, value) or SourceScope.ALL


def resolve_review_statuses(scope) -> list[ReviewStatus] | None:
    """Review statuses admitted by a review scope; ``None`` means no filter."""
    scope = normalize_review_scope(scope)
    if scope is ReviewScope.ALL:
        return None
    if scope is ReviewScope.APPROVED_ONLY:
        return [ReviewStatus.APPROVED, ReviewStatus.AUTO_APPROVED]
    return [ReviewStatus.APPROVED, ReviewStatus.AUTO_APPROVED, ReviewStatus.PENDING]


def resolve_input_methods(scope) -> list[InputMethod] | None:
    """Input methods admitted by a source scope; ``None`` means no filter."""
    scope = normalize_source_scope(scope)
    if scope is SourceScope.AI_ONLY:
        return [InputMethod.AI_EXTRACTED]
    if scope is SourceScope.MANUAL_ONLY:
        return [InputMethod.MANUAL_ENTRY, InputMethod.BULK_IMPORT]
    return None


def infer_quality_tag(note: str | None, effective_date: datetime | None,
                      created_at: datetime | None,
                      late_hours: float = LATE_HOURS_THRESHOLD) -> QualityTag:
    """
    Classify a price record from its note and submission lag.

    Args:
        note: Free-text note attached by the reporter
        effective_date: Date the price applies to
        created_at: Ingestion timestamp
        late_hours: Lag beyond which a submission counts as late

    Returns:
        CORRECTED or IMPUTED when the note says so, LATE when the record
        was submitted more than ``late_hours`` after its effective date,
        RAW otherwise
    """
    note = (note or "").strip()
    if any(k in note for k in CORRECTED_NOTE_KEYWORDS):
        return QualityTag.CORRECTED
    if any(k in note for k in IMPUTED_NOTE_KEYWORDS):
        return QualityTag.IMPUTED
    if effective_date is not None and created_at is not None:
        lag_hours = (created_at - effective_date).total_seconds() / 3600
        if lag_hours > late_hours:
            return QualityTag.LATE
    return QualityTag.RAW
