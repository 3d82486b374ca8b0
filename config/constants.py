"""
Centralized constants for the batch engine.
All magic numbers extracted from the codebase.
"""

# ===========================================
# BATCH PROCESSING
# ===========================================
BATCH_JOB_TYPE = 'annotation_generation'   # job_type column default
BATCH_DEFAULT_CONCURRENCY = 5         # items per chunk
BATCH_MAX_CONCURRENCY = 10            # upper bound accepted on submission
BATCH_MAX_ITEMS = 1000                # upper bound accepted on submission
BATCH_MAX_ATTEMPTS = 3                # attempts per item (first try + retries)
BATCH_BACKOFF_BASE_SECONDS = 2.0      # delay = base ** attempt -> 2s, 4s, 8s
BATCH_ITEM_TIMEOUT_SECONDS = 0        # per-item work unit timeout, 0 = none
BATCH_ERROR_LIST_LIMIT = 100          # error records returned per job
BATCH_ESTIMATED_MS_PER_CHUNK = 2000   # rough duration estimate per chunk

# ===========================================
# RATE LIMITING
# ===========================================
RATE_LIMIT_MIN_PER_MINUTE = 10        # accepted rate_limit_per_minute hint
RATE_LIMIT_MAX_PER_MINUTE = 500

FREE_TIER_CAPACITY = 5                # burst size
FREE_TIER_REFILL_MS = 6000            # one token every 6s = 10/minute
FREE_TIER_TOKENS_PER_REFILL = 1

PAID_TIER_CAPACITY = 50
PAID_TIER_REFILL_MS = 1000
PAID_TIER_TOKENS_PER_REFILL = 8       # ~500/minute

# ===========================================
# WORK UNIT
# ===========================================
WORK_UNIT_TIMEOUT_SECONDS = 30.0      # HTTP work unit request timeout

# ===========================================
# STORAGE
# ===========================================
BATCH_DB_PATH = 'data/batch_jobs.db'

# ===========================================
# LOGGING
# ===========================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'logs/batch_engine.log'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
