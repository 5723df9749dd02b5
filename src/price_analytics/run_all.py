import os

from .config import DB, OUT, DEFAULT_DAYS
from .params import CompareParams, HealthParams
from .query import PriceQuery
from .report import generate_all

if __name__ == "__main__":
    OUT.mkdir(parents=True, exist_ok=True)
    query = PriceQuery(
        commodity=os.getenv("COMMODITY") or None,
        days=int(os.getenv("DAYS", str(DEFAULT_DAYS))),
        review_scope=os.getenv("REVIEW_SCOPE") or None,
        source_scope=os.getenv("SOURCE_SCOPE") or None,
    )
    generate_all(str(DB), str(OUT), query, CompareParams(), HealthParams(days=query.days))
    print("Comparison + health written to", OUT)
