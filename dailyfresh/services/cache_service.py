"""
Redis cache for delivery slot listings.

Only the read side of ListAvailableSlots goes through here. Slot and stock
writes always hit the database, and any Redis problem turns into a cache
miss so the listing is served from the database instead.

Keys: {prefix}:slots:{YYYY-MM-DD}:{slot_type}
"""

import logging
import json
from datetime import date
from typing import Any, Callable, List, Optional

import redis
from redis.exceptions import RedisError, ConnectionError, TimeoutError
from flask import Flask

logger = logging.getLogger(__name__)

LISTING_NAMESPACE = 'slots'


class SlotListingCache:
    """Cache-aside store for available-slot listings, one key per date and slot type."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self.enabled = False
        self.prefix = 'dailyfresh'
        self.ttl = 30

        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.enabled = app.config.get('CACHE_ENABLED', True)
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'dailyfresh')
        self.ttl = app.config.get('CACHE_SLOTS_TTL', 30)

        if not self.enabled:
            logger.info("[CACHE] slot listing cache disabled by config")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://localhost:6379/0')
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] status=connected url={redis_url}")
        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.warning(f"[CACHE] status=unavailable detail={e}; listings served from the database")
            self.enabled = False
            self.client = None

    def is_available(self) -> bool:
        if not self.enabled or self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def listing_key(self, on_date: date, slot_type: str) -> str:
        return f"{self.prefix}:{LISTING_NAMESPACE}:{on_date.isoformat()}:{slot_type}"

    def get_listing(self, on_date: date, slot_type: str) -> Optional[List[dict]]:
        if not self.is_available():
            return None
        try:
            raw = self.client.get(self.listing_key(on_date, slot_type))
            return json.loads(raw) if raw is not None else None
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] op=get date={on_date} type={slot_type} status=error detail={e}")
            return None

    def store_listing(self, on_date: date, slot_type: str, slots: List[dict]) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.setex(self.listing_key(on_date, slot_type), self.ttl, json.dumps(slots))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] op=set date={on_date} type={slot_type} status=error detail={e}")
            return False

    def listing(self, on_date: date, slot_type: str, loader: Callable[[], List[dict]]) -> List[dict]:
        """Cached listing for the date and type, loading and storing it on a miss."""
        cached = self.get_listing(on_date, slot_type)
        if cached is not None:
            return cached
        slots = loader()
        self.store_listing(on_date, slot_type, slots)
        return slots

    def invalidate_listings(self) -> int:
        """Drop every cached listing; a booking changes what every listing shows."""
        if not self.is_available():
            return 0
        pattern = f"{self.prefix}:{LISTING_NAMESPACE}:*"
        deleted = 0
        try:
            for key in self.client.scan_iter(match=pattern, count=100):
                deleted += self.client.delete(key)
        except RedisError as e:
            logger.warning(f"[CACHE] op=invalidate status=error detail={e}")
            return deleted
        if deleted:
            logger.info(f"[CACHE] op=invalidate keys={deleted}")
        return deleted

    def round_trip(self) -> bool:
        """Write and read back a probe key (health check)."""
        if not self.is_available():
            return False
        probe = f"{self.prefix}:health"
        try:
            self.client.setex(probe, 10, 'ok')
            return self.client.get(probe) == 'ok'
        except RedisError:
            return False


_slot_cache: Optional[SlotListingCache] = None


def init_cache(app: Flask) -> None:
    global _slot_cache
    _slot_cache = SlotListingCache(app)
    app.extensions['slot_cache'] = _slot_cache


def get_cache() -> Optional[SlotListingCache]:
    """The app's slot listing cache, or None before init_cache ran."""
    return _slot_cache
