"""Configuration for the SWU card hash recognition system."""

import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).parent.parent

# Paths
DATABASE_PATH = Path(os.getenv("DATABASE_PATH", "data/swu_hashes.db"))
DATABASE_PATH = BASE_DIR / DATABASE_PATH if not DATABASE_PATH.is_absolute() else DATABASE_PATH

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_DIR = BASE_DIR / LOG_DIR if not LOG_DIR.is_absolute() else LOG_DIR

# Catalog
SWU_API_BASE_URL = os.getenv("SWU_API_BASE_URL", "https://api.swu-db.com")

# Fallback proxies, tried in order after a failed direct fetch
CORS_PROXY_TEMPLATES = [
    "https://corsproxy.io/?{url}",
    "https://api.allorigins.win/raw?url={url}",
]

# All known sets (main + promo/event/OP), in build order
ALL_SETS = [
    # Main expansions
    'SOR', 'SHD', 'TWI', 'JTL', 'LOF', 'SEC', 'LAW', 'IBH',
    # Upcoming
    'TS26',
    # Prerelease promos
    'PSOR', 'PSHD', 'PTWI',
    # Event exclusives
    'ESOR',
    # Tokens
    'TSOR',
    # Organized Play promos
    'SOROP', 'SHDOP', 'TWIOP', 'JTLOP', 'LOFOP', 'SECOP', 'LAWP',
    # Convention & yearly promos
    'C24', 'P25', 'P26',
    # Judge promos
    'J24',
    # Store Showdown promos
    'SS1', 'SS1J', 'SS2',
]

_set_override = os.getenv("SWU_SET_CODES")
SET_CODES = [s.strip().upper() for s in _set_override.split(",") if s.strip()] if _set_override else ALL_SETS

FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "30"))

# Card dimensions (63mm x 88mm)
CARD_ASPECT_WIDTH = 63
CARD_ASPECT_HEIGHT = 88
# Share of the camera frame width covered by the on-screen card guide
CENTER_CROP_WIDTH_RATIO = 0.5

# Binder page: 3x3 pockets inside a 3% page margin, 2% gutters between pockets
BINDER_ROWS = 3
BINDER_COLS = 3
BINDER_MARGIN_RATIO = 0.03
BINDER_GUTTER_RATIO = 0.02

# dHash grid: 9 columns give 8 horizontal differences per row
HASH_GRID_WIDTH = 9
HASH_GRID_HEIGHT = 8
HASH_BITS = (HASH_GRID_WIDTH - 1) * HASH_GRID_HEIGHT

# Indexing
HASH_BATCH_SIZE = int(os.getenv("HASH_BATCH_SIZE", "10"))
MIN_REFERENCE_RECORDS = int(os.getenv("MIN_REFERENCE_RECORDS", "100"))

# Recognition
MATCH_MAX_DISTANCE = int(os.getenv("MATCH_MAX_DISTANCE", "15"))

# Auto-scan
AUTO_SCAN_INTERVAL = float(os.getenv("AUTO_SCAN_INTERVAL", "3.0"))
AUTO_SCAN_COOLDOWN = float(os.getenv("AUTO_SCAN_COOLDOWN", "1.0"))
CONTENT_SAMPLE_SIZE = int(os.getenv("CONTENT_SAMPLE_SIZE", "100"))
CONTENT_MIN_BRIGHTNESS = float(os.getenv("CONTENT_MIN_BRIGHTNESS", "30"))
CONTENT_MIN_VARIANCE = float(os.getenv("CONTENT_MIN_VARIANCE", "200"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Create directories
for dir_path in [DATABASE_PATH.parent, LOG_DIR]:
    dir_path.mkdir(parents=True, exist_ok=True)
