import os
from pathlib import Path
from dotenv import load_dotenv
load_dotenv()

ROOT = Path(__file__).resolve().parents[2]
DATA = ROOT / "data"
DB   = Path(os.getenv("PRICE_DB", str(DATA / "prices.sqlite")))
OUT  = DATA / "exports" / "analytics"

# anomaly rule (deviation from cross-point mean in %, absolute day change)
DEVIATION_THRESHOLD = 5.0
CHANGE_THRESHOLD = 20.0

# continuity health: weights must sum to 1
HEALTH_WEIGHTS = {"coverage": 0.5, "anomaly": 0.3, "late": 0.2}
GRADE_LADDER = [(90, "A"), (75, "B"), (60, "C")]
GRADE_FLOOR = "D"
HEALTH_DAYS = 30
TOP_RISKS = 6

LATE_HOURS_THRESHOLD = float(os.getenv("LATE_HOURS_THRESHOLD", "36"))

# region comparison
REGION_LEVELS = ("province", "city", "district")
REGION_WINDOWS = ("7", "30", "90", "all")
REGION_TOP_N = 8
UNKNOWN_REGION = "Other"

DISTRIBUTION_LIMIT = 12
DEFAULT_DAYS = 30

# upstream price-data API
API_BASE = os.getenv("PRICE_API_BASE", "http://localhost:3000/api")
API_TOKEN = os.getenv("PRICE_API_TOKEN", "")
PAGE_SIZE = int(os.getenv("PAGE_SIZE", "500"))
RATE = float(os.getenv("RATE_PER_SEC", "2"))
