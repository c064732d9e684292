"""
Constants and configuration values for Formulary.

This module contains the hardcoded defaults, URLs, timeouts, and other constants
used throughout the application.
"""

# GitHub API URLs
GITHUB_API_BASE = "https://api.github.com/repos"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_MAX_PER_PAGE = 100

# gh CLI invocation
GH_EXECUTABLE = "gh"
GH_RELEASE_LIST_FIELDS = (
    "createdAt,isDraft,isLatest,isPrerelease,name,publishedAt,tagName"
)
GH_RELEASE_VIEW_FIELDS = "tarballUrl"

# Network timeouts (in seconds)
GITHUB_API_TIMEOUT = 10
DEFAULT_REQUEST_TIMEOUT = 300
DEFAULT_CHUNK_SIZE = 8192
HTTP_STATUS_ERROR_THRESHOLD = 400

# Release enumeration
DEFAULT_RELEASE_LIMIT = 100

# Output layout
DEFAULT_OUTPUT_DIR = "./Formula"
DEFAULT_MANIFEST_EXTENSION = ".rb"
VERSIONED_NAME_SEPARATOR = "@"

# Configuration
DEFAULT_CONFIG_PATH = "./util/config/config.yaml"
CONFIG_PATH_ENV_VAR = "FORMULARY_CONFIG"
GITHUB_TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
SOURCE_GH = "gh"
SOURCE_API = "api"
SUPPORTED_SOURCES = (SOURCE_GH, SOURCE_API)

# Logging configuration
LOGGER_NAME = "formulary"
LOG_FILE_NAME = "formulary.log"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5
LOG_LEVEL_ENV_VAR = "FORMULARY_LOG_LEVEL"

# Process exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130
