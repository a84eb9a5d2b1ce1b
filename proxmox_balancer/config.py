# config.py

"""Configuration settings for Proxmox VM Balancer."""

# Concurrency and timeouts
MAX_CONCURRENT_FETCHES = 32  # Worker cap for every collection stage
REQUEST_TIMEOUT = 30  # Seconds per remote call
CPU_RETRY_ATTEMPTS = 2  # Re-fetches for nodes reporting stale 0% CPU
CPU_RETRY_DELAY = 0.5  # Seconds between CPU retries

# Disk usage cache
CACHE_MAX_AGE = 24 * 60 * 60  # Seconds a cached disk usage figure stays valid
DEFAULT_CACHE_PATH = "balancer_cache.db"
DEFAULT_STORAGE_LOG = "balancer.log"

# Storage naming conventions
LOCAL_STORAGE_PREFIX = "kv"  # Cluster-level local pools look like kv0042-storage1
LOCAL_STORAGE_MARKER = "storage"
IMAGES_CONTENT = "images"

# Node flags
OSD_VM_PREFIX = "osd"
OSD_VM_DOMAIN = "cloudwm.com"
OLD_VM_THRESHOLD_DAYS = 90
HOST_STATE_UNSET = -1
BLOCKING_HOST_STATES = (0, 3)  # 0 = maintenance, 3 = blocked

# Target scoring
UTILIZATION_WEIGHT = 0.7
BALANCE_WEIGHT = 0.3
CPU_SCORE_WEIGHT = 0.4
RAM_SCORE_WEIGHT = 0.4
STORAGE_SCORE_WEIGHT = 0.2
BALANCE_STDDEV_PENALTY = 2.0

# Evacuation (EVACUATE_ALL) scoring
EVACUATION_MARGIN = 5.0  # Percentage points above cluster average still "in bounds"
EVACUATION_BALANCE_WEIGHT = 0.2
EVACUATION_CPU_HEADROOM_WEIGHT = 0.4
EVACUATION_RAM_HEADROOM_WEIGHT = 0.4

MAX_ALTERNATIVES = 3

# Connection settings (environment variables)
ENV_API_HOST = "PROXMOX_API_HOST"
ENV_API_TOKEN = "PROXMOX_API_TOKEN"
ENV_USERNAME = "PROXMOX_USERNAME"
ENV_PASSWORD = "PROXMOX_PASSWORD"
ENV_VERIFY_SSL = "PROXMOX_VERIFY_SSL"
DEFAULT_API_HOST = "https://localhost:8006"

# Local host detection for the shell transport
PVE_CONFIG_DIR = "/etc/pve"
PVESH_BINARY = "pvesh"

# Logging format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

GIB = 1024 ** 3
