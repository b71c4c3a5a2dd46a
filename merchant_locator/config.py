# merchant_locator/config.py
from dotenv import load_dotenv
import os

load_dotenv()

# API Keys
KAKAO_REST_API_KEY = os.getenv("KAKAO_REST_API_KEY")

# Runtime parameters
CONCURRENCY = int(os.getenv("CONCURRENCY", "10"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# URLs
KAKAO_CATEGORY_URL = "https://dapi.kakao.com/v2/local/search/category.json"
KAKAO_KEYWORD_URL = "https://dapi.kakao.com/v2/local/search/keyword.json"

# File names
INPUT_ROSTER = os.getenv("INPUT_ROSTER", "stores.xlsx")
OUTPUT_CSV = os.getenv("OUTPUT_CSV", "store_locations.csv")
LOCALITY_TABLE_PATH = os.getenv("LOCALITY_TABLE_PATH")

# Default viewport (Eunpyeong-gu)
VIEWPORT_SW_LAT = float(os.getenv("VIEWPORT_SW_LAT", "37.5976"))
VIEWPORT_SW_LNG = float(os.getenv("VIEWPORT_SW_LNG", "126.9027"))
VIEWPORT_NE_LAT = float(os.getenv("VIEWPORT_NE_LAT", "37.6376"))
VIEWPORT_NE_LNG = float(os.getenv("VIEWPORT_NE_LNG", "126.9427"))

# Provider pacing (seconds)
API_DELAY = 0.5
KEYWORD_BATCH_DELAY = API_DELAY * 1.5
KEYWORD_VARIANT_DELAY = 0.2
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))

# Retry / circuit breaker
MAX_RETRIES = 3
RETRY_DELAY = 1.0
CIRCUIT_FAILURE_THRESHOLD = 5
CIRCUIT_RESET_TIMEOUT = 60.0

# Search
CATEGORIES = [
    ("CS2", "편의점"),
    ("FD6", "음식점"),
    ("CE7", "카페"),
    ("HP8", "병원"),
    ("PM9", "약국"),
    ("AC5", "학원"),
    ("PS3", "어린이집, 유치원"),
    ("AT4", "관광명소"),
    ("CT1", "문화시설"),
    ("AG2", "중개업소"),
    ("OL7", "주유소"),
]
MAX_RADIUS = 20000  # meters
PAGE_SIZE = 15
KEYWORD_PAGE_SIZE = 5
MAX_PAGES = 3
MIN_RESULTS_PER_CATEGORY = 5
KEYWORD_SEARCH_COUNT = 50
KEYWORD_BATCH_SIZE = 3

# Matching thresholds
SIMILARITY_THRESHOLD = 0.6
KEYWORD_SIMILARITY_THRESHOLD = 0.8
CONTAINMENT_SIMILARITY = 0.9
NEARBY_SIMILARITY_THRESHOLD = 0.6
MIN_SIMILARITY = 0.5

# Distances (meters)
EARTH_RADIUS = 6371000
GROUPING_THRESHOLD = 20
SUSPICIOUS_DISTANCE = 50
NEARBY_THRESHOLD = 50
MAX_DISTANCE = 10000
BUILDING_NUMBER_TOLERANCE = 10

# Rounding
CLUSTER_KEY_PRECISION = 8
DEDUP_PRECISION = 6
CACHE_KEY_PRECISION = 3

# Caching
SEARCH_CACHE_TTL = 30 * 60  # seconds

# Roster ingestion
ROSTER_COLUMNS = {
    "area": "읍면동명",
    "category": "표준산업분류명",
    "name": "상호명",
    "road_address": "도로명주소",
    "old_address": "지번주소",
}
MAX_STORE_NAME_LENGTH = 100
