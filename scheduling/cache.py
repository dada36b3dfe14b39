"""
Shared cache of available-slot rows, keyed per service type.

Backed by Redis so every server instance sees the same view. Invalidation is
a version bump (INCR) issued synchronously after each committing write; stale
versions simply stop being read and expire on their own. With no REDIS_URL
configured the cache is disabled and every read goes to the database.
"""
import json
import logging

import redis
from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "availability_cache"


class AvailabilityCache:
    def __init__(self, prefix: str = "availability"):
        self.prefix = prefix

    def init_app(self, app, client=None):
        if client is None:
            url = app.config.get("REDIS_URL")
            client = redis.Redis.from_url(url, decode_responses=True) if url else None
        app.extensions[EXTENSION_KEY] = client

    @property
    def client(self):
        return current_app.extensions.get(EXTENSION_KEY)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _version_key(self, service_type: str) -> str:
        return f"{self.prefix}:{service_type}:version"

    def _data_key(self, service_type: str, version: str, scope: str) -> str:
        return f"{self.prefix}:{service_type}:v{version}:{scope}"

    def version(self, service_type: str):
        """
        Current version of a service's listing, or None when the cache is
        unusable. Read it before querying the database and write under it.
        """
        client = self.client
        if client is None:
            return None
        try:
            return client.get(self._version_key(service_type)) or "0"
        except redis.RedisError as exc:
            logger.warning("Availability cache read failed for %s: %s", service_type, exc)
            return None

    def get(self, service_type: str, scope: str, version: str):
        client = self.client
        if client is None or version is None:
            return None
        try:
            raw = client.get(self._data_key(service_type, version, scope))
        except redis.RedisError as exc:
            logger.warning("Availability cache read failed for %s: %s", service_type, exc)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, service_type: str, scope: str, value, version: str) -> bool:
        # a write under a superseded version is never read back
        client = self.client
        if client is None or version is None:
            return False
        ttl = current_app.config.get("AVAILABILITY_CACHE_TTL_SECONDS", 86400)
        try:
            client.setex(self._data_key(service_type, version, scope), ttl, json.dumps(value))
        except redis.RedisError as exc:
            logger.warning("Availability cache write failed for %s: %s", service_type, exc)
            return False
        return True

    def invalidate(self, service_type: str) -> None:
        client = self.client
        if client is None:
            return
        try:
            client.incr(self._version_key(service_type))
        except redis.RedisError as exc:
            # write is already committed; reserve() stays the authority
            logger.error("Availability cache invalidation failed for %s: %s", service_type, exc)


availability_cache = AvailabilityCache()
