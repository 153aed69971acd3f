# src/addman/utils.py
import importlib.metadata
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TypeVar

import requests
from requests.adapters import HTTPAdapter

from addman.constants import APP_NAME, GITHUB_TOKEN_ENV_VAR
from addman.log_utils import logger

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE = None

T = TypeVar("T", int, float)


def get_app_version() -> str:
    """Return the installed addman version, or `unknown` when not installed."""
    try:
        return importlib.metadata.version(APP_NAME)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `addman/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        _USER_AGENT_CACHE = f"{APP_NAME}/{get_app_version()}"

    return _USER_AGENT_CACHE


def get_effective_github_token(
    github_token: Optional[str], allow_env_token: bool = True
) -> Optional[str]:
    """
    Pick the GitHub token to authenticate with.

    An explicit, non-blank token wins; otherwise the GITHUB_TOKEN environment
    variable is used when `allow_env_token` is set.

    Returns:
        Optional[str]: The stripped token, or None for unauthenticated requests.
    """
    token = (github_token or "").strip()
    if token:
        return token
    if allow_env_token:
        env_token = os.environ.get(GITHUB_TOKEN_ENV_VAR, "").strip()
        if env_token:
            return env_token
    return None


def build_session(
    pool_size: int, github_token: Optional[str] = None, allow_env_token: bool = True
) -> requests.Session:
    """
    Create the HTTP session shared by the network workers.

    The connection pool is sized to the number of network workers so every
    worker can hold a connection. No retry policy is mounted: failed requests
    are reported to the add-on that made them.

    Parameters:
        pool_size (int): Number of concurrent network workers.
        github_token (Optional[str]): Token used for the Authorization header.
        allow_env_token (bool): Fall back to the GITHUB_TOKEN environment variable.
    """
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)

    headers: Dict[str, Any] = {
        "Accept": "application/vnd.github+json",
        "User-Agent": get_user_agent(),
    }
    effective_token = get_effective_github_token(github_token, allow_env_token)
    if effective_token:
        headers["Authorization"] = f"token {effective_token}"
        logger.debug("Using GitHub token for API authentication")
    else:
        logger.debug("No GitHub token available - using unauthenticated API requests")
    session.headers.update(headers)
    return session


def parse_iso_datetime_utc(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp and normalize it to UTC.

    Parameters:
        value (Any): An ISO 8601 datetime representation (commonly a string) or a datetime. Falsey values or unparsable values are treated as absent.

    Returns:
        A timezone-aware datetime in UTC if parsing succeeds, `None` otherwise.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_iso_datetime_utc(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as a `Z`-suffixed ISO 8601 string, or None when unset."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def format_release_date(value: Optional[datetime]) -> str:
    """
    Format a release timestamp for add-on log lines, e.g. ``Jan 2, 2006``.

    Unset timestamps render as ``never``.
    """
    if value is None:
        return "never"
    local = value.astimezone()
    return f"{local:%b} {local.day}, {local.year}"


def clamp(lower: T, value: T, upper: T) -> T:
    """Clamp `value` into the inclusive range [lower, upper]."""
    return max(lower, min(value, upper))
