"""
Project constants definitions
"""

# ============================================================
# Connection
# ============================================================

DEFAULT_SSH_PORT = 22
DEFAULT_FILENAME_ENCODING = "utf-8"
DEFAULT_CONNECT_TIMEOUT = 20
DEFAULT_KEEPALIVE_INTERVAL = 30
DEFAULT_KEY_FILES = ("~/.ssh/id_ed25519", "~/.ssh/id_rsa", "~/.ssh/id_ecdsa")

# ============================================================
# Directory Cache
# ============================================================

DEFAULT_CACHE_TTL = 30.0
DEFAULT_CACHE_MAX_BYTES = 50 * 1024 * 1024

# ============================================================
# Timeouts (seconds)
# ============================================================

DEFAULT_INIT_TIMEOUT = 30.0
DEFAULT_OPERATION_TIMEOUT = 30.0
DEFAULT_PATH_EXPAND_TIMEOUT = 15.0
DEFAULT_COMMAND_TIMEOUT = 300.0

# ============================================================
# Retry
# ============================================================

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_INITIAL_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 10.0
DEFAULT_RETRY_FACTOR = 2.0

RETRYABLE_MESSAGE_PATTERNS = (
    "econnreset",
    "etimedout",
    "enotfound",
    "eai_again",
    "epipe",
    "econnrefused",
    "connection lost",
    "connection closed",
    "connection reset",
    "connection refused",
    "socket hang up",
    "network error",
    "broken pipe",
    "timed out",
    "timeout",
)

# ============================================================
# Health Monitoring
# ============================================================

DEFAULT_HEALTH_INTERVAL = 30.0
DEFAULT_HEALTH_HISTORY = 10
DEFAULT_HEALTH_PROBE_TIMEOUT = 5.0
DEFAULT_HEALTH_FAILURE_THRESHOLD = 3
DEFAULT_HIGH_LATENCY_MS = 5000.0
DEFAULT_LATENCY_WARNING_MS = 1000.0
DEFAULT_STALL_THRESHOLD = 5.0

# ============================================================
# Transfers
# ============================================================

DEFAULT_CHUNK_SIZE = 32 * 1024
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_MAX_PER_HOST = 3
DEFAULT_TICK_INTERVAL = 1.0
DEFAULT_PRIORITY = 1
DEFAULT_LARGE_FILE_THRESHOLD = 100 * 1024 * 1024
PARTIAL_SUFFIX = ".part"
UNRESOLVED_LINK = "(unresolved)"
DIRECTORY_SIZE_UNKNOWN = -1
CHECKSUM_ALGORITHMS = {"md5": "md5sum", "sha1": "sha1sum", "sha256": "sha256sum"}

# ============================================================
# Sync
# ============================================================

DEFAULT_MTIME_TOLERANCE = 2.0

# ============================================================
# Environment
# ============================================================

ENV_PREFIX = "REMOTEFS_"
SECRET_ENV_PREFIX = "REMOTEFS_SECRET_"
SSH_CONFIG_PATH = "~/.ssh/config"
