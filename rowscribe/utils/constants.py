"""
Default geometry and pipeline constants.

Rows are as tall as one recognizer tile so a row maps onto a single strip of
tiles; the overlap is a fixed 64px (~16.7% of a tile).
"""

# Recognizer input granularity
TILE_SIZE = 384
OVERLAP_PX = 64
STRIDE = TILE_SIZE - OVERLAP_PX

# Row partition
ROW_HEIGHT = TILE_SIZE
START_Y = 0.0

# Elements with non-finite or out-of-range centers are clamped into this band
CANVAS_MIN_Y = START_Y
CANVAS_MAX_Y = 10_000_000.0

# Grayscale conversion (ITU-R BT.601 luma)
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

# Tile content hash length in hex characters (8-byte digest)
HASH_HEX_LENGTH = 16

# Recognizer pool
DEFAULT_POOL_SIZE = 2
DEFAULT_MAX_RETRIES = 2
DEFAULT_ROW_WORKERS = 2
TILE_CACHE_SIZE = 512

# Restorative merge tunables
SIMILARITY_THRESHOLD = 0.8
SIMILARITY_REPAIR_BASE = 0.85
SIMILARITY_REPAIR_WEIGHT = 0.1
MISMATCH_PENALTY = 0.5
CONFIDENCE_FLOOR = 0.01
MIN_OVERLAP_TOKENS = 1

# Share of overlap tokens found on both sides that also counts as similar,
# alone or together with a weaker character similarity
TOKEN_OVERLAP_THRESHOLD = 0.5
ASSISTED_TOKEN_OVERLAP = 0.4
ASSISTED_SIMILARITY = 0.7
TOKEN_OVERLAP_WEIGHT = 0.88

# Row identifiers look like "row-12"
ROW_ID_PREFIX = "row-"

# Per-row extract + render + hash latency target
ROW_TILING_BUDGET_MS = 200.0

# Raster areas outside the source image read as white paper
BACKGROUND_RGBA = (255, 255, 255, 255)
