from fetch import fetch_price_page, NonJSONResponseError
from normalize import normalize
from ingest import get_conn, upsert_frame, upsert_points, save_raw
from price_analytics.config import DATA
import datetime

EXP = DATA / "exports"
FAIL_LOG = EXP / "_failures.log"


def _log_failure(page: int, err: Exception):
    EXP.mkdir(parents=True, exist_ok=True)
    ts = datetime.datetime.now(datetime.timezone.utc).isoformat()
    with FAIL_LOG.open("a", encoding="utf-8") as fh:
        fh.write(f"{ts} skip page {page}: {err}\n")


def run(filters: dict | None = None, max_pages: int | None = None, refresh: bool = True, conn=None):
    """
    Page through the price-data API and upsert everything into SQLite.

    A page that keeps failing is logged to the failure log and skipped;
    the harvest stops once the reported page count is reached or a page
    comes back empty.
    """
    owns_conn = conn is None
    conn = conn or get_conn()
    page, total_pages, stored = 1, None, 0
    try:
        while total_pages is None or page <= total_pages:
            if max_pages is not None and page > max_pages:
                break
            try:
                js = fetch_price_page(page, filters=filters, refresh=refresh)
                total_pages = int(js.get("totalPages") or 0)
                rows, points = normalize(js)
                if rows.empty:
                    break
                upsert_points(conn, points)
                stored += upsert_frame(conn, rows)
                save_raw(conn, page, js)
            except (NonJSONResponseError, ValueError, OSError) as e:
                _log_failure(page, e)
                if total_pages is None:
                    # first page never arrived; nothing to page through
                    break
            page += 1
    finally:
        if owns_conn:
            conn.close()
    print(f"✅ Harvested {stored} price rows")
    return stored


if __name__ == "__main__":
    run()
