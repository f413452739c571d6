"""Async Elasticsearch client for the hosted search service, configured from the environment."""
import logging
import os

from dotenv import load_dotenv
from elasticsearch import AsyncElasticsearch

from search_quickstart.errors import ConfigurationMissingError

load_dotenv()

logger = logging.getLogger("search_quickstart")
if os.getenv("SEARCH_DEBUG", "").strip().lower() in ("1", "true", "yes"):
    logger.setLevel(logging.DEBUG)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setLevel(logging.DEBUG)
        logger.addHandler(h)

SEARCH_API_ENDPOINT = (os.getenv("SEARCH_API_ENDPOINT") or "").strip()
SEARCH_API_KEY = (os.getenv("SEARCH_API_KEY") or "").strip()
SEARCH_VERIFY_TLS = os.getenv("SEARCH_VERIFY_TLS", "true").lower() in ("true", "1", "yes")


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


SEARCH_REQUEST_TIMEOUT = _int_env("SEARCH_REQUEST_TIMEOUT", 10)
SEARCH_MAX_RETRIES = _int_env("SEARCH_MAX_RETRIES", 2)
SEARCH_RETRY_ON_TIMEOUT = os.getenv("SEARCH_RETRY_ON_TIMEOUT", "true").lower() in ("true", "1", "yes")
# Eventual consistency: how long to wait for uploaded documents to become countable.
SEARCH_SETTLE_TIMEOUT = _float_env("SEARCH_SETTLE_TIMEOUT", 10.0)
SEARCH_SETTLE_INTERVAL = _float_env("SEARCH_SETTLE_INTERVAL", 1.0)


def require_env() -> None:
    """Raise ConfigurationMissingError if SEARCH_API_ENDPOINT or SEARCH_API_KEY are missing."""
    missing = []
    if not SEARCH_API_ENDPOINT:
        missing.append("SEARCH_API_ENDPOINT")
    if not SEARCH_API_KEY:
        missing.append("SEARCH_API_KEY")
    if missing:
        raise ConfigurationMissingError(missing)


def get_client() -> AsyncElasticsearch:
    """Return a new async client (api_key auth, verify_certs from SEARCH_VERIFY_TLS). Caller closes it."""
    require_env()
    logger.debug(
        "Creating search client: endpoint=%s timeout=%ss retries=%s",
        SEARCH_API_ENDPOINT,
        SEARCH_REQUEST_TIMEOUT,
        SEARCH_MAX_RETRIES,
    )
    return AsyncElasticsearch(
        SEARCH_API_ENDPOINT,
        api_key=SEARCH_API_KEY,
        verify_certs=SEARCH_VERIFY_TLS,
        request_timeout=SEARCH_REQUEST_TIMEOUT,
        max_retries=SEARCH_MAX_RETRIES,
        retry_on_timeout=SEARCH_RETRY_ON_TIMEOUT,
    )
