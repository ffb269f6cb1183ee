import json
import logging
import time
from data.database import ABTest, ABTestSession
from config import config

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
TEST_CACHE_TTL = 60        # test definition, invalidated on every status change
ASSIGNMENT_CACHE_TTL = 60  # sticky assignments never change, short TTL keeps memory bounded
RESULTS_CACHE_TTL = config.monitor_interval_seconds * 2

# --- Valkey/Redis Backend Implementations ---

class _LocalValkeyBackend:
    """
    In-process stand-in for Valkey when no server is reachable. Entries expire
    after `ex` seconds like SET EX, so status changes made by another worker
    are seen once the cached test runs out.
    """
    def __init__(self):
        self._cache = {}  # key -> (value, expires_at)

    def get(self, key: str) -> str | None:
        logger.debug("cache local get: %s", key)
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        return value

    def set(self, key: str, value: str, ex: int):
        logger.debug("cache local set: %s", key)
        self._cache[key] = (value, time.monotonic() + ex)

    def delete(self, key: str):
        logger.debug("cache local delete: %s", key)
        self._cache.pop(key, None)


class RealValkeyBackend:
    """Real implementation using redis-py client (compatible with Valkey)."""
    def __init__(self, host: str, port: int, db: int = 0, password: str | None = None):
        import redis

        try:
            self.client = redis.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                decode_responses=True,
                socket_timeout=2.0
            )
            self.client.ping()
        except redis.RedisError as e:
            logger.error("Failed to connect to Valkey/Redis: %s", e)
            raise

    def get(self, key: str) -> str | None:
        try:
            logger.debug("cache valkey get: %s", key)
            return self.client.get(key)
        except Exception as e:
            logger.error("Valkey GET error for key %s: %s", key, e)
            return None

    def set(self, key: str, value: str, ex: int):
        try:
            logger.debug("cache valkey set: %s", key)
            self.client.set(key, value, ex=ex)
        except Exception as e:
            logger.error("Valkey SET error for key %s: %s", key, e)

    def delete(self, key: str):
        try:
            logger.debug("cache valkey delete: %s", key)
            self.client.delete(key)
        except Exception as e:
            logger.error("Valkey DEL error for key %s: %s", key, e)


# --- Dedicated Cache Client Class ---

class CacheClient:
    """High-level client for managing application cache operations."""

    def __init__(self, backend):
        self.backend = backend
        logger.debug("CacheClient backend: %s", self.backend)

    # --- Test Caching ---

    def get_test(self, test_id: int) -> ABTest | None:
        json_str = self.backend.get(f"abt:{test_id}")
        if json_str:
            return ABTest.from_json(json_str=json_str)
        return None

    def set_test(self, ab_test: ABTest):
        self.backend.set(f"abt:{ab_test.id}", ab_test.to_json(), ex=TEST_CACHE_TTL)
        logger.debug("A/B test %d cached.", ab_test.id)

    def invalidate_test(self, test_id: int):
        self.backend.delete(f"abt:{test_id}")

    # --- Assignment Caching ---

    def get_assignment(self, test_id: int, session_id: str) -> ABTestSession | None:
        json_str = self.backend.get(f"abs:{test_id}:{session_id}")
        if json_str:
            return ABTestSession.from_json(json_str=json_str)
        return None

    def set_assignment(self, session: ABTestSession):
        key = f"abs:{session.ab_test_id}:{session.session_id}"
        self.backend.set(key, session.to_json(), ex=ASSIGNMENT_CACHE_TTL)
        logger.debug("Assignment for session %s (test %d) cached.", session.session_id, session.ab_test_id)

    # --- Results Caching (written by the monitoring task) ---

    def get_results(self, test_id: int) -> dict | None:
        json_str = self.backend.get(f"abr:{test_id}")
        if json_str:
            return json.loads(json_str)
        return None

    def set_results(self, test_id: int, results_json: str):
        self.backend.set(f"abr:{test_id}", results_json, ex=RESULTS_CACHE_TTL)


# --- Initialize Backend and Default Client ---
valkey_host = config.valkey_host
valkey_port = config.valkey_port

if valkey_host:
    logger.info("valkey_host: %s, port: %d", valkey_host, valkey_port)
    try:
        VALKEY_BACKEND = RealValkeyBackend(host=valkey_host, port=valkey_port)
    except Exception:
        logger.warning("Falling back to local cache backend due to connection failure; "
                       "cached test status is per process until it expires.")
        VALKEY_BACKEND = _LocalValkeyBackend()
else:
    logger.info("VALKEY_HOST is empty. Using local cache backend.")
    VALKEY_BACKEND = _LocalValkeyBackend()

# Initialize a default client (singleton)
_DEFAULT_CACHE_CLIENT = CacheClient(backend=VALKEY_BACKEND)

def get_cache_client():
    return _DEFAULT_CACHE_CLIENT

def get_local_cache_client():
    return CacheClient(backend=_LocalValkeyBackend())
