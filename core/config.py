"""
Configuration and constants for the Anti-Bootloop module manager.
"""
import os
import shutil

ADB_BINARY = shutil.which("adb") or "adb"

# Host bridge selection: auto, local, adb, mock
TRANSPORT_MODE = os.environ.get("ABL_TRANSPORT", "auto")
DEVICE_SERIAL = os.environ.get("ABL_DEVICE_SERIAL") or None

# Unique marker for output boundary detection (adb shell)
MARKER_PREFIX = "___ABL_MARKER___"

# Robust prompt patterns for various Android shells/ROMs
SHELL_PROMPT_PATTERNS = [
    r'[\$#]\s*$',           # Simple $ or # at end
    r':\S*\s*[\$#]\s*$',    # path:dir $ or #
    r'@\S+:\S*\s*[\$#]\s*$' # user@host:dir $ or #
]

# ============= MODULE LAYOUT =============

MODULE_ID = "kernelsu_antibootloop_backup"
MODULES_ROOT = "/data/adb/modules"
MODULE_DIR = os.environ.get("ABL_MODULE_DIR", f"{MODULES_ROOT}/{MODULE_ID}")
SCRIPTS_DIR = f"{MODULE_DIR}/scripts"
CONFIG_DIR = f"{MODULE_DIR}/config"

BACKUP_ENGINE = f"{SCRIPTS_DIR}/backup-engine.sh"
RECOVERY_POINT_SCRIPT = f"{SCRIPTS_DIR}/recovery-point.sh"
APPLY_SETTINGS_SCRIPT = f"{SCRIPTS_DIR}/apply-settings.sh"
SAFE_MODE_SCRIPT = f"{SCRIPTS_DIR}/safe-mode.sh"
ANALYTICS_ENGINE = f"{SCRIPTS_DIR}/analytics-engine.sh"
TEST_BOOTLOOP_SCRIPT = f"{SCRIPTS_DIR}/test-bootloop.sh"
WEBUI_MANAGER_SCRIPT = f"{MODULE_DIR}/webui_manager.sh"

SETTINGS_FILE = f"{CONFIG_DIR}/settings.json"
MODULE_PROP_FILE = f"{MODULE_DIR}/module.prop"

# Counters, flags and logs written by the boot-time scripts
STATE_DIR = "/data/local/tmp/antibootloop"
BOOT_COUNT_FILE = f"{STATE_DIR}/boot_count"
TOTAL_BOOTS_FILE = f"{STATE_DIR}/total_boots"
RECOVERY_STATE_FILE = f"{STATE_DIR}/recovery_state"
SAFE_MODE_FLAG = f"{STATE_DIR}/safe_mode_active"
EMERGENCY_DISABLE_FLAG = "/data/local/tmp/disable_antibootloop"
LOG_FILE = f"{STATE_DIR}/detailed.log"
BACKUP_DIR = f"{STATE_DIR}/kernels"

BACKUP_IMAGE_SUFFIX = ".img"
BACKUP_HASH_SUFFIX = ".sha256"
BACKUP_ARCHIVE_SUFFIXES = (".tar.gz", ".tar.xz")

# Checked in order, first readable positive value wins
THERMAL_ZONE_PATHS = [
    "/sys/class/thermal/thermal_zone0/temp",
    "/sys/class/thermal/thermal_zone1/temp",
    "/sys/devices/virtual/thermal/thermal_zone0/temp",
]
STORAGE_HEALTH_FILE = "/sys/class/mmc_host/mmc0/mmc0:0001/life_time"

DEVICE_PROPERTIES = {
    "device_model": "ro.product.model",
    "device_name": "ro.product.device",
    "android_version": "ro.build.version.release",
    "kernelsu_version": "ro.kernelsu.version",
}

# ============= EXECUTION CLIENT =============

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 3
MAX_CONCURRENT_COMMANDS = 5

CACHE_TTL_MS = 30000
CACHE_MAX_ENTRIES = 100  # Above this, expired entries are swept before insert

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 10000

# Errors that will not go away by retrying
NON_TRANSIENT_ERROR_PATTERNS = [
    r'permission denied',
    r'not found',
    r'no such file',
]

# ============= ACTIONS =============

NAME_PATTERN = r'^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$'
MAX_DESCRIPTION_LENGTH = 200
BACKUP_TYPES = ("full", "incremental", "kernel")

# export_backup writes here; import_backup reads archives from shared storage
EXPORT_DIR = "/sdcard/KernelSU_Backups"
IMPORT_PATH_PATTERN = r'^/(sdcard|storage|data/local/tmp)/[A-Za-z0-9._/-]{1,200}$'

# False runs create_backup detached and reports "initiated"
CREATE_BACKUP_WAIT = os.environ.get("ABL_CREATE_BACKUP_WAIT", "1") != "0"
BACKUP_TIMEOUT_MS = 600000

DEFAULT_LOG_LINES = 100
MAX_LOG_LINES = 5000

# ============= MONITORING =============

DEFAULT_MAX_BOOT_ATTEMPTS = 3
CPU_TEMP_THRESHOLD = 75
MIN_FREE_RAM_MB = 200

POLL_INTERVAL_SECONDS = float(os.environ.get("ABL_POLL_INTERVAL", "10"))
MIN_POLL_INTERVAL_SECONDS = 2
MAX_POLL_INTERVAL_SECONDS = 30

DEFAULT_SETTINGS = {
    "webuiEnabled": True,
    "webuiPort": 8080,
    "authRequired": True,
    "debugLogging": False,
    "backupEncryption": False,
    "backupCompression": True,
    "autoBackup": False,
    "backupSchedule": "weekly",
    "useOverlayfs": True,
    "selinuxMode": "enforcing",
    "storagePath": BACKUP_DIR,
    "bootTimeout": 120,
    "maxBootAttempts": DEFAULT_MAX_BOOT_ATTEMPTS,
    "autoRestore": True,
    "disableModules": True,
    "safeModeTimeout": 5,
}

# ============= FRONT ENDS =============

HTTP_HOST = os.environ.get("ABL_HTTP_HOST", "127.0.0.1")
HTTP_PORT = int(os.environ.get("ABL_HTTP_PORT", "8888"))
