import time, json, pathlib, requests, random, datetime

from price_analytics.config import API_BASE, API_TOKEN, PAGE_SIZE, RATE, DATA

ENDPOINT = f"{API_BASE.rstrip('/')}/market-intel/price-data"
RAW_DIR = DATA / "raw"
FAIL_DIR = DATA / "raw_failed"

class NonJSONResponseError(RuntimeError):
    pass

HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "User-Agent": "price-analytics-harvester",
}
if API_TOKEN:
    HEADERS["Authorization"] = f"Bearer {API_TOKEN}"

# Persistent session
_session = requests.Session()
_session.headers.update(HEADERS)

def _cache_path(page: int, tag: str = "") -> pathlib.Path:
    return RAW_DIR / f"price_data_{tag}p{page}.json"

def _fail_path(page: int) -> pathlib.Path:
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return FAIL_DIR / f"price_data_p{page}_{ts}.txt"

def _decode_response_to_json(r) -> dict:
    ctype = (r.headers.get("content-type") or "").lower()
    if "application/json" not in ctype:
        raise NonJSONResponseError(f"Non-JSON content-type: {ctype}")
    text = (r.text or "").strip()
    if not text:
        raise NonJSONResponseError("Empty body")
    try:
        js = json.loads(text)
    except json.JSONDecodeError as e:
        raise NonJSONResponseError(f"Malformed JSON: {e}")
    if not isinstance(js, dict) or "data" not in js:
        raise NonJSONResponseError("Payload has no 'data' list")
    return js

def _fetch_once(params: dict):
    r = _session.get(ENDPOINT, params=params, timeout=30)
    r.raise_for_status()
    return r

def fetch_price_page(page: int, page_size: int = PAGE_SIZE, filters: dict | None = None,
                     refresh: bool = False, cache_tag: str = "") -> dict:
    """
    Fetch one page of price records from the market-intel API.

    Args:
        page: 1-based page number
        page_size: Rows per page
        filters: Extra query parameters (commodity, startDate, endDate, ...)
        refresh: Ignore the on-disk page cache
        cache_tag: Prefix separating caches of different filter sets

    Returns:
        Decoded payload ``{data, total, page, pageSize, totalPages}``

    Raises:
        NonJSONResponseError: If the last attempt got a non-JSON body
        requests.RequestException: If the last attempt failed at HTTP level
    """
    RAW_DIR.mkdir(parents=True, exist_ok=True)
    cache = _cache_path(page, cache_tag)
    if cache.exists() and not refresh:
        return json.loads(cache.read_text(encoding="utf-8"))

    params = {"page": page, "pageSize": page_size, **(filters or {})}
    # Retry with backoff and jitter
    last_err: Exception | None = None
    for attempt in range(1, 6):
        r = None
        try:
            r = _fetch_once(params)
            js = _decode_response_to_json(r)
            cache.write_text(json.dumps(js, ensure_ascii=False), encoding="utf-8")
            time.sleep(max(0.0, 1.0 / RATE))
            return js
        except (requests.RequestException, NonJSONResponseError) as e:
            last_err = e
            print(f"⚠️  Page {page} attempt {attempt} failed: {e}")
            # Save non-JSON body for diagnostics
            if isinstance(e, NonJSONResponseError) and r is not None:
                FAIL_DIR.mkdir(parents=True, exist_ok=True)
                _fail_path(page).write_text(str(r.text)[:2000], encoding="utf-8")
            time.sleep(attempt + random.uniform(0.25, 0.75))
    raise last_err if last_err else RuntimeError("Unknown fetch error")
