"""
Process configuration
=====================
Everything is read from the environment once at startup and frozen for the
rest of the run. Tuning knobs that are not worth an env var live here as
module constants.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urljoin

from .errors import ConfigError


DEFAULT_USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
DEFAULT_BASE_URL = "https://flavortown.hackclub.com/"
DEFAULT_CDN_BASE_URL = "https://cdn.hackclub.com/api/file"
DEFAULT_CDN_KEY = "beans"

# Slack rejects messages with more blocks than this
SLACK_MAX_BLOCKS = 50
SLACK_HEADER_MAX_CHARS = 150
SLACK_SECTION_MAX_CHARS = 3000

# Connection-level retries only, a non-success status is never retried
FETCH_RETRIES = 3
RETRY_DELAY_MIN = 1.0
RETRY_DELAY_MAX = 2.0

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


@dataclass(frozen=True)
class Settings:
    cookie: str
    webhook_url: str
    status_webhook_url: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    base_url: str = DEFAULT_BASE_URL
    storage_path: str = "flavortown-storage"
    cdn_key: str = DEFAULT_CDN_KEY
    cdn_base_url: str = DEFAULT_CDN_BASE_URL
    log_dir: str = "logs"
    max_concurrent_requests: int = 10
    request_timeout: float = 30.0
    snapshot_retention: int = 50

    def url(self, path: str) -> str:
        """Absolute URL for a path on the shop"""
        return urljoin(self.base_url, path)


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigError(f"missing required environment variable {name}")
    return value


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables (os.environ by default)"""
    if env is None:
        env = os.environ

    base_url = env.get("BASE_URL") or DEFAULT_BASE_URL
    if not base_url.endswith("/"):
        base_url += "/"

    return Settings(
        cookie=_required(env, "COOKIE"),
        webhook_url=_required(env, "WEBHOOK_URL"),
        status_webhook_url=env.get("STATUS_WEBHOOK_URL") or None,
        user_agent=env.get("USER_AGENT") or DEFAULT_USER_AGENT,
        base_url=base_url,
        storage_path=env.get("STORAGE_PATH") or os.path.join(os.getcwd(), "flavortown-storage"),
        cdn_key=env.get("CDN_KEY") or DEFAULT_CDN_KEY,
        cdn_base_url=env.get("CDN_BASE_URL") or DEFAULT_CDN_BASE_URL,
        log_dir=env.get("LOG_DIR") or os.path.join(os.getcwd(), "logs"),
        max_concurrent_requests=_number(env, "MAX_CONCURRENT_REQUESTS", 10, int),
        request_timeout=_number(env, "REQUEST_TIMEOUT", 30.0, float),
        snapshot_retention=_number(env, "SNAPSHOT_RETENTION", 50, int),
    )


def get_headers(settings: Settings) -> dict:
    """Browser-like headers sent with every shop request"""
    return {
        "User-Agent": settings.user_agent,
        "Cookie": settings.cookie,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-GB,en;q=0.5",
        "Connection": "keep-alive",
    }


def setup_logging(log_dir: str, level: int = logging.INFO) -> str:
    """Log to <log_dir>/monitor.log and to the console. Returns the log file path."""
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, 'monitor.log')
    logging.basicConfig(
        filename=log_file,
        level=level,
        format=LOG_FORMAT,
    )
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(console)
    return log_file
