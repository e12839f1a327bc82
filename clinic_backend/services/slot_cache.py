"""
Shared cache for slot listings, backed by Redis.

Slot listings are advisory, so serving them a few seconds stale is safe: the
booking path re-checks everything at write time. Every worker and replica
talks to the same Redis, so an invalidation issued by one worker is seen by
all of them.

Keys look like ``slots:<company>:<YYYY-MM-DD>:<procedure>:<professional|any>``
so a whole day or a whole company can be dropped with one SCAN pattern.
Redis failures are logged and treated as a cache miss.
"""

import json
import logging
from datetime import date
from typing import Optional

import redis
from redis import Redis
from redis.exceptions import RedisError

from clinic_backend.scheduling.slots import Slot

logger = logging.getLogger(__name__)

KEY_PREFIX = 'slots'
ANY_PROFESSIONAL = 'any'


class SlotCache:
    def __init__(self, client: Redis, ttl_seconds: int, prefix: str = KEY_PREFIX) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int, prefix: str = KEY_PREFIX) -> 'SlotCache':
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        return cls(client, ttl_seconds, prefix)

    def make_key(
        self,
        company_id: int,
        target_date: date,
        procedure_id: int,
        professional_id: Optional[int],
    ) -> str:
        professional = ANY_PROFESSIONAL if professional_id is None else professional_id
        return f'{self.prefix}:{company_id}:{target_date.isoformat()}:{procedure_id}:{professional}'

    def get(self, key: str) -> Optional[list[Slot]]:
        try:
            raw = self.client.get(key)
        except RedisError as exc:
            logger.warning('Slot cache read failed for %s: %s', key, exc)
            return None

        if raw is None:
            return None
        return [Slot.model_validate(item) for item in json.loads(raw)]

    def set(self, key: str, slots: list[Slot]) -> None:
        if self.ttl_seconds <= 0:
            return

        payload = json.dumps([slot.model_dump(mode='json') for slot in slots])
        try:
            self.client.setex(key, self.ttl_seconds, payload)
        except RedisError as exc:
            logger.warning('Slot cache write failed for %s: %s', key, exc)

    def invalidate(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            logger.warning('Slot cache delete failed for %s: %s', key, exc)

    def invalidate_day(self, company_id: int, target_date: date) -> int:
        return self._delete_pattern(f'{self.prefix}:{company_id}:{target_date.isoformat()}:*')

    def invalidate_company(self, company_id: int) -> int:
        return self._delete_pattern(f'{self.prefix}:{company_id}:*')

    def _delete_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            for key in self.client.scan_iter(match=pattern):
                deleted += self.client.delete(key)
        except RedisError as exc:
            logger.warning('Slot cache invalidation failed for %s: %s', pattern, exc)
        return deleted
