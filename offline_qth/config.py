"""
Configuration constants for the offline SOTA summit database.
"""
from pathlib import Path
from typing import Optional

# === DATABASE BLOB ===
DATABASE_FILENAME = "sota.db"
DATABASE_URL_PATH = f"data/{DATABASE_FILENAME}"  # relative to the app base URL
DEFAULT_BASE_URL = "http://localhost:8000/"
SCHEMA_VERSION = "1"

# === INGESTION ===
DEFAULT_CSV_PATH = Path("/tmp/sota-summits-worldwide.csv")
OUTPUT_PATH = Path.cwd() / "public" / "data" / DATABASE_FILENAME
HEADER_LINES = 2  # SOTA CSV starts with a title line and a column header line
BATCH_SIZE = 1000
MIN_FIELDS = 11
PROGRESS_EVERY = 10000
TOP_ASSOCIATIONS = 10
SOURCE_NAME = "https://www.sotadata.org.uk/"

# === GEOMETRY ===
EARTH_RADIUS_M = 6371000.0
KM_PER_DEGREE = 111.0
MIN_COS_LAT = 1e-6  # floor for cos(lat) near the poles

# === QUERY DEFAULTS ===
DEFAULT_RADIUS_KM = 50.0
DEFAULT_NEARBY_LIMIT = 10
DEFAULT_PAGE_SIZE = 20
NEARBY_EXACT_RADIUS = True  # drop bbox candidates outside the true circle

# === ACTIVATION ZONE ===
AZ_HEIGHT_M = 25  # SOTA rule: within 25 vertical metres of the summit
AZ_MAX_HORIZONTAL_M = 500.0

# === DOWNLOAD ===
DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOAD_TIMEOUT = 60

# === GLOBAL DIRECTORY PATHS ===
# Set by setup functions; CacheManager falls back to Path.cwd() / "cache"
CACHE_DIR: Optional[Path] = None
