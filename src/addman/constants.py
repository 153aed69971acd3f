"""
Constants and configuration values for addman.

This module contains hardcoded values, URLs, timeouts, and other constants
used throughout the application.
"""

# GitHub endpoints
GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_LATEST_RELEASE_URL = GITHUB_API_BASE + "/{name}/releases/latest"
GITHUB_TAG_REFS_URL = GITHUB_API_BASE + "/{name}/git/refs/tags"
# sample: https://github.com/kesava-wow/kuispelllistconfig/archive/refs/tags/31.zip
GITHUB_ARCHIVE_URL = "https://github.com/{name}/archive/{ref}.zip"
GITHUB_TOKEN_ENV_VAR = "GITHUB_TOKEN"

# Network settings (in seconds / bytes)
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_CHUNK_SIZE = 8192

# Worker pools
DEFAULT_NET_TASKS = 2
MAX_NET_TASKS = 8
DEFAULT_DISK_TASKS = 32
# more than 4k disk tasks is probably not a good idea, even on nvme drives
MAX_DISK_TASKS = 4096
MAX_ADDON_TASKS = 16

# Release assets
CONTENT_TYPE_ZIP = "application/zip"
CONTENT_TYPE_JSON = "application/json"
RELEASE_MANIFEST_NAME = "release.json"
MAINLINE_FLAVOR = "mainline"
CLASSIC_FLAVORS_PATTERN = r"classic|bc|wrath|cata"
ZIP_EXTENSION = ".zip"

# Cache file names, formatted with the add-on short name
CACHE_RELEASE_FILE = "{short_name}-rel.json"
CACHE_REF_FILE = "{short_name}-ref.json"
CACHE_MANIFEST_FILE = "{short_name}-addonRel.json"
CACHE_ARCHIVE_FILE = "{short_name}-{asset_name}"
CACHE_ADDONS_DIR_NAME = "addons"

# Configuration
APP_NAME = "addman"
CONFIG_FILE_NAME = "addman.yaml"
DIR_SEPARATOR = "/"
EXCLUDE_PREFIX = "-"
SKIP_PREFIX = "-"

# Logging configuration
LOGGER_NAME = "addman"
LOG_LEVEL_ENV_VAR = "ADDMAN_LOG_LEVEL"
LOG_FILE_NAME = "addman.log"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5
