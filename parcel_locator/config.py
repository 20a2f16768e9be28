# parcel_locator/config.py
from dotenv import load_dotenv
import os

load_dotenv()

# API Keys
GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# Models
VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o-mini")
TEXT_MODEL = os.getenv("TEXT_MODEL", "gpt-4o-mini")

# Runtime parameters
BATCH_SIZE = 5
REQUEST_BATCH_SIZE = 4
HTTP_CONCURRENCY = 20
OPENAI_CONCURRENCY = 10
HTTP_TIMEOUT_SECONDS = 20
REQUEST_DEADLINE_SECONDS = float(os.getenv("REQUEST_DEADLINE_SECONDS", "180"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# Decision thresholds (0-100)
SUCCESS_THRESHOLD = 60.0
LOW_CONFIDENCE_THRESHOLD = 40.0
RETRY_THRESHOLD = 30.0
NEUTRAL_SCORE = 50.0
PERSIST_TOP_N = 15

# Sub-score weights, sum to 1.0
SCORE_WEIGHTS = {
    "image": 0.25,
    "pool": 0.15,
    "roof": 0.15,
    "terrain": 0.15,
    "hints": 0.20,
    "density": 0.10,
}

# Candidate generation
GEOCODE_MAX_RESULTS = 5
GEOCODE_MAX_RESULTS_EXPANDED = 10
EXTRA_ADDRESS_CAP = 3
GRID_CELL_METERS = 200
GRID_MAX_CELLS = 50
REVERSE_GEOCODE_CAP = 20
BBOX_HALF_WIDTH_METERS = 2000
EXPAND_FACTOR = 2.0
DENSE_CENTER_RADIUS_METERS = 800
TOWN_CENTER_MAX_METERS = 3000
CITY_MATCH_MIN_RATIO = 80

# Enrichment
SALES_RADIUS_METERS = 500
HIGH_DENSITY_PER_KM2 = 30.0
LOW_DENSITY_PER_KM2 = 5.0

# Geometry
METERS_PER_DEGREE = 111_000
WALKING_METERS_PER_MINUTE = 83
POOL_CONFIDENCE_MIN = 0.5

# URLs
GOOGLE_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
GOOGLE_STATIC_MAPS_URL = "https://maps.googleapis.com/maps/api/staticmap"
IGN_WMTS_URL = "https://data.geopf.fr/wmts"
CADASTRE_URL = "https://apicarto.ign.fr/api/cadastre/parcelle"
DVF_URL = "https://api.cquest.org/dvf"

# File names
INPUT_CSV = os.getenv("INPUT_CSV", "requests.csv")
OUTPUT_CSV = os.getenv("OUTPUT_CSV", "localization_results.csv")
CANDIDATES_CSV = os.getenv("CANDIDATES_CSV", "matched_parcels.csv")
STATUS_CSV = os.getenv("STATUS_CSV", "request_status.csv")
