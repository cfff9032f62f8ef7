from __future__ import annotations

import logging
from os import environ, getcwd
from os.path import abspath, isdir, join
from sys import stdout

# Logging Configuration
LOG_LEVEL = environ.get('LOG_LEVEL', 'DEBUG').upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.DEBUG),
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=stdout
)
logger = logging.getLogger('frameServer')

# Pillow emits very noisy DEBUG logs while verifying uploads. Keep them at INFO+.
logging.getLogger('PIL').setLevel(logging.INFO)
logging.getLogger('httpx').setLevel(logging.WARNING)
logging.getLogger('httpcore').setLevel(logging.WARNING)

logger.info('[Config] loading module')

_TRUE_VALUES = {'true', '1', 't', 'yes', 'on'}

SERVER_PORT = 3000
ENABLE_SSL = False
SERVER_SCHEME = 'http'
STORAGE_BACKEND = 'sqlite'
DATA_ROOT = 'var/data'
UPLOADS_ROOT = 'uploads'
STATIC_ROOT = 'web'
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
MAX_LOG_ENTRIES = 1000

# Slideshow defaults
#
# Durations are expressed in milliseconds on the wire and in storage.
DEFAULT_DURATION_MS = 120000
MIN_DURATION_MS = 1000

# Display power
#
# Ordered list of mechanisms tried when switching the physical display.
# The first one that exits cleanly wins; see services/display_power.py for
# the commands behind each name.
DISPLAY_POWER_METHODS = 'vcgencmd,wlr-randr,xrandr,xset'
DISPLAY_OUTPUT = 'HDMI-A-1'
DISPLAY_COMMAND_TIMEOUT = 5.0

# Native display client
SERVER_URL = 'http://localhost:3000'
POLL_INTERVAL = 1000
IMAGE_POLL_INTERVAL = 1000
READY_RETRY_SECONDS = 2.0
POWER_SETTLE_SECONDS = 2.0
REQUEST_TIMEOUT = 5.0
RENDERER_COMMAND = 'feh -F -Z -Y -x --no-menus --quiet'
CLIENT_UPLOADS_DIR = ''

CONFIG_DIR = getcwd()
VAR_ROOT = join(CONFIG_DIR, 'var')
DATABASE_PATH = join(VAR_ROOT, 'db', 'frame.db')
LOGS_DIR = join(VAR_ROOT, 'logs')
SSL_DIR = join(VAR_ROOT, 'ssl')
DATA_DIR = join(CONFIG_DIR, DATA_ROOT)
UPLOADS_DIR = join(CONFIG_DIR, UPLOADS_ROOT)
WEB_STATIC_DIR = join(CONFIG_DIR, STATIC_ROOT)

_ENV_OVERRIDES: set[str] = set()


def _env_str(name: str, default: str, config_key: str) -> str:
    value = environ.get(name)
    if value is None:
        return default
    _ENV_OVERRIDES.add(config_key)
    return value


def _env_bool(name: str, default: bool, config_key: str) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    _ENV_OVERRIDES.add(config_key)
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int, config_key: str) -> int:
    value = environ.get(name)
    if value is None:
        return default
    try:
        number = int(value)
        _ENV_OVERRIDES.add(config_key)
        return number
    except ValueError:
        logger.warning('[Config] Invalid int for %s: %s', name, value)
        return default


def _env_float(name: str, default: float, config_key: str) -> float:
    value = environ.get(name)
    if value is None:
        return default
    try:
        number = float(value)
        _ENV_OVERRIDES.add(config_key)
        return number
    except ValueError:
        logger.warning('[Config] Invalid float for %s: %s', name, value)
        return default


def _apply_environment_overrides() -> None:
    global SERVER_PORT, ENABLE_SSL, STORAGE_BACKEND
    global DATA_ROOT, UPLOADS_ROOT, STATIC_ROOT, MAX_UPLOAD_BYTES, MAX_LOG_ENTRIES
    global DEFAULT_DURATION_MS
    global DISPLAY_POWER_METHODS, DISPLAY_OUTPUT, DISPLAY_COMMAND_TIMEOUT
    global SERVER_URL, POLL_INTERVAL, IMAGE_POLL_INTERVAL
    global READY_RETRY_SECONDS, POWER_SETTLE_SECONDS, REQUEST_TIMEOUT
    global RENDERER_COMMAND, CLIENT_UPLOADS_DIR
    _ENV_OVERRIDES.clear()

    SERVER_PORT = _env_int('SERVER_PORT', 3000, 'server_port')
    ENABLE_SSL = _env_bool('ENABLE_SSL', False, 'enable_ssl')
    STORAGE_BACKEND = _env_str('STORAGE_BACKEND', 'sqlite', 'storage_backend').strip().lower()
    DATA_ROOT = _env_str('DATA_ROOT', 'var/data', 'data_root')
    UPLOADS_ROOT = _env_str('UPLOADS_ROOT', 'uploads', 'uploads_root')
    STATIC_ROOT = _env_str('STATIC_ROOT', 'web', 'static_root')
    MAX_UPLOAD_BYTES = _env_int('MAX_UPLOAD_BYTES', 10 * 1024 * 1024, 'max_upload_bytes')
    MAX_LOG_ENTRIES = max(1, _env_int('MAX_LOG_ENTRIES', 1000, 'max_log_entries'))
    DEFAULT_DURATION_MS = max(MIN_DURATION_MS, _env_int('DEFAULT_DURATION_MS', 120000, 'default_duration_ms'))
    DISPLAY_POWER_METHODS = _env_str(
        'DISPLAY_POWER_METHODS',
        'vcgencmd,wlr-randr,xrandr,xset',
        'display_power_methods'
    )
    DISPLAY_OUTPUT = _env_str('DISPLAY_OUTPUT', 'HDMI-A-1', 'display_output')
    DISPLAY_COMMAND_TIMEOUT = _env_float('DISPLAY_COMMAND_TIMEOUT', 5.0, 'display_command_timeout')
    SERVER_URL = _env_str('SERVER_URL', 'http://localhost:3000', 'server_url').rstrip('/')
    POLL_INTERVAL = _env_int('POLL_INTERVAL', 1000, 'poll_interval')
    IMAGE_POLL_INTERVAL = _env_int('IMAGE_POLL_INTERVAL', POLL_INTERVAL, 'image_poll_interval')
    READY_RETRY_SECONDS = _env_float('READY_RETRY_SECONDS', 2.0, 'ready_retry_seconds')
    POWER_SETTLE_SECONDS = _env_float('POWER_SETTLE_SECONDS', 2.0, 'power_settle_seconds')
    REQUEST_TIMEOUT = _env_float('REQUEST_TIMEOUT', 5.0, 'request_timeout')
    RENDERER_COMMAND = _env_str('RENDERER_COMMAND', 'feh -F -Z -Y -x --no-menus --quiet', 'renderer_command')
    CLIENT_UPLOADS_DIR = _env_str('CLIENT_UPLOADS_DIR', '', 'client_uploads_dir')
    _refresh_server_scheme()


def _refresh_server_scheme() -> None:
    global SERVER_SCHEME
    SERVER_SCHEME = 'https' if ENABLE_SSL else 'http'


def _refresh_path_constants() -> None:
    global VAR_ROOT, DATABASE_PATH, LOGS_DIR, SSL_DIR
    global DATA_DIR, UPLOADS_DIR, WEB_STATIC_DIR
    VAR_ROOT = join(CONFIG_DIR, 'var')
    DATABASE_PATH = join(VAR_ROOT, 'db', 'frame.db')
    LOGS_DIR = join(VAR_ROOT, 'logs')
    SSL_DIR = join(VAR_ROOT, 'ssl')
    DATA_DIR = join(CONFIG_DIR, DATA_ROOT)
    UPLOADS_DIR = join(CONFIG_DIR, UPLOADS_ROOT)
    WEB_STATIC_DIR = join(CONFIG_DIR, STATIC_ROOT)


def load_config(base_dir: str | None = None) -> None:
    """Apply environment overrides and update path constants for the provided base directory."""
    global CONFIG_DIR
    _apply_environment_overrides()
    if base_dir:
        candidate = abspath(base_dir)
        if not isdir(candidate):
            logger.warning('[Config] Provided base_dir %s is not a directory; using current working directory', base_dir)
            candidate = getcwd()
        CONFIG_DIR = candidate
    else:
        CONFIG_DIR = getcwd()
    _refresh_path_constants()


def _coerce_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


def display_power_method_names() -> list[str]:
    """Return the configured display power mechanisms in fallback order."""
    return [name.strip().lower() for name in DISPLAY_POWER_METHODS.split(',') if name.strip()]


def client_uploads_dir() -> str:
    return CLIENT_UPLOADS_DIR or UPLOADS_DIR


def update_config(key: str, value) -> None:
    """Update an in-memory configuration value."""
    global SERVER_PORT, ENABLE_SSL, MAX_UPLOAD_BYTES
    global DISPLAY_POWER_METHODS, DISPLAY_OUTPUT, DISPLAY_COMMAND_TIMEOUT
    global UPLOADS_ROOT, STATIC_ROOT, DATA_ROOT

    logger.info('[Config] Updating %s to %s', key, value)

    if key == 'server_port':
        SERVER_PORT = int(value)
    elif key == 'enable_ssl':
        ENABLE_SSL = _coerce_bool(value)
        _refresh_server_scheme()
    elif key == 'max_upload_bytes':
        MAX_UPLOAD_BYTES = int(value)
    elif key == 'display_power_methods':
        DISPLAY_POWER_METHODS = str(value)
    elif key == 'display_output':
        DISPLAY_OUTPUT = str(value)
    elif key == 'display_command_timeout':
        DISPLAY_COMMAND_TIMEOUT = float(value)
    elif key == 'uploads_root':
        UPLOADS_ROOT = str(value)
        _refresh_path_constants()
    elif key == 'static_root':
        STATIC_ROOT = str(value)
        _refresh_path_constants()
    elif key == 'data_root':
        DATA_ROOT = str(value)
        _refresh_path_constants()
    else:
        logger.warning('[Config] Unknown config key: %s', key)


def apply_persisted_config(entries: dict[str, str]) -> None:
    """Apply database-backed configuration entries unless overridden by env vars."""
    for key, raw_value in entries.items():
        if key in _ENV_OVERRIDES:
            continue
        update_config(key, raw_value)


_apply_environment_overrides()
_refresh_path_constants()
