"""Application-wide constants.

These are fixed values that don't change between environments.
For configurable values, see config.py Settings.
"""

# ─────────────────────────────────────────────────────────────
# API Rate Limits (external constraints)
# ─────────────────────────────────────────────────────────────
FINNHUB_RATE_LIMIT_CALLS_PER_MINUTE = 60  # Free tier limit
POLYGON_RATE_LIMIT_CALLS_PER_MINUTE = 300

# ─────────────────────────────────────────────────────────────
# API URL Defaults (used as defaults in Settings)
# ─────────────────────────────────────────────────────────────
DEFAULT_FINNHUB_API_URL = "https://finnhub.io/api/v1"
DEFAULT_POLYGON_API_URL = "https://api.polygon.io"

# ─────────────────────────────────────────────────────────────
# Exchange calendar
# ─────────────────────────────────────────────────────────────
DEFAULT_EXCHANGE_TIMEZONE = "America/New_York"
MARKET_OPEN_HOUR = 9
MARKET_OPEN_MINUTE = 30
MARKET_CLOSE_HOUR = 16

# ─────────────────────────────────────────────────────────────
# Soft confirmation (empirically tuned, overridable in Settings)
# ─────────────────────────────────────────────────────────────
DEFAULT_SOFT_CONFIRM_DELAYS_SECONDS = (600.0, 900.0, 1800.0)  # 10, 15, 30 min

# ─────────────────────────────────────────────────────────────
# Size classification (market cap, USD)
# ─────────────────────────────────────────────────────────────
MEGA_CAP_THRESHOLD = 100_000_000_000
LARGE_CAP_THRESHOLD = 10_000_000_000
MID_CAP_THRESHOLD = 2_000_000_000

# ─────────────────────────────────────────────────────────────
# Redis key layout
# ─────────────────────────────────────────────────────────────
REDIS_PREFIX = "earnflow"
LOCK_PREFIX = f"{REDIS_PREFIX}:lock"
CACHE_VERSION_KEY = f"{REDIS_PREFIX}:cache:version"
CACHE_STAGING_COUNTER_KEY = f"{REDIS_PREFIX}:cache:staging"
CACHE_NEGATIVE_PREFIX = f"{REDIS_PREFIX}:cache:neg"
LATEST_META_KEY = "earnings:latest:meta"
SNAPSHOT_TTL_SECONDS = 3 * 24 * 60 * 60  # superseded versions age out

# ─────────────────────────────────────────────────────────────
# Misc
# ─────────────────────────────────────────────────────────────
TICKER_MAX_LENGTH = 10
GUIDANCE_FETCH_LIMIT = 10
