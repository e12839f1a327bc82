import logging
from datetime import date, time

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from clinic_backend.scheduling.slots import Slot
from clinic_backend.services import slot_cache as slot_cache_module
from clinic_backend.services.slot_cache import SlotCache

MONDAY = date(2024, 6, 10)
TUESDAY = date(2024, 6, 11)

MORNING = [Slot(time=time(8, 0), available=True), Slot(time=time(8, 30), available=False)]


class _BrokenRedis:
    def get(self, key):
        raise RedisConnectionError('connection refused')

    def setex(self, key, seconds, value):
        raise RedisConnectionError('connection refused')

    def delete(self, *keys):
        raise RedisConnectionError('connection refused')

    def scan_iter(self, match='*'):
        raise RedisConnectionError('connection refused')


def test_keys_are_scoped_by_company_date_procedure_and_professional(slot_cache) -> None:
    assert slot_cache.make_key(1, MONDAY, 2, None) == 'slots:1:2024-06-10:2:any'
    assert slot_cache.make_key(1, MONDAY, 2, 7) == 'slots:1:2024-06-10:2:7'


def test_cached_listing_comes_back_as_slots(slot_cache) -> None:
    key = slot_cache.make_key(1, MONDAY, 2, None)

    slot_cache.set(key, MORNING)

    assert slot_cache.get(key) == MORNING


def test_entries_expire_after_ttl(fake_redis) -> None:
    cache = SlotCache(fake_redis, ttl_seconds=30)
    key = cache.make_key(1, MONDAY, 2, None)

    cache.set(key, MORNING)
    fake_redis.now += 29
    assert cache.get(key) == MORNING

    fake_redis.now += 1
    assert cache.get(key) is None


def test_zero_ttl_disables_caching(fake_redis) -> None:
    cache = SlotCache(fake_redis, ttl_seconds=0)
    key = cache.make_key(1, MONDAY, 2, None)

    cache.set(key, MORNING)

    assert cache.get(key) is None
    assert fake_redis.store == {}


def test_invalidate_day_only_drops_that_company_and_date(slot_cache) -> None:
    slot_cache.set(slot_cache.make_key(1, MONDAY, 2, None), MORNING)
    slot_cache.set(slot_cache.make_key(1, MONDAY, 3, 7), MORNING)
    slot_cache.set(slot_cache.make_key(1, TUESDAY, 2, None), MORNING)
    slot_cache.set(slot_cache.make_key(2, MONDAY, 2, None), MORNING)

    assert slot_cache.invalidate_day(1, MONDAY) == 2
    assert slot_cache.get(slot_cache.make_key(1, TUESDAY, 2, None)) == MORNING
    assert slot_cache.get(slot_cache.make_key(2, MONDAY, 2, None)) == MORNING


def test_invalidate_company_drops_every_date(slot_cache) -> None:
    slot_cache.set(slot_cache.make_key(1, MONDAY, 2, None), MORNING)
    slot_cache.set(slot_cache.make_key(1, TUESDAY, 2, None), MORNING)
    slot_cache.set(slot_cache.make_key(12, MONDAY, 2, None), MORNING)

    assert slot_cache.invalidate_company(1) == 2
    assert slot_cache.get(slot_cache.make_key(12, MONDAY, 2, None)) == MORNING


def test_single_key_invalidation(slot_cache) -> None:
    key = slot_cache.make_key(1, MONDAY, 2, None)
    slot_cache.set(key, MORNING)

    slot_cache.invalidate(key)
    slot_cache.invalidate(key)

    assert slot_cache.get(key) is None


def test_invalidation_from_one_worker_is_seen_by_another(fake_redis) -> None:
    first_worker = SlotCache(fake_redis, ttl_seconds=60)
    second_worker = SlotCache(fake_redis, ttl_seconds=60)
    key = second_worker.make_key(1, MONDAY, 2, None)
    second_worker.set(key, MORNING)

    first_worker.invalidate_day(1, MONDAY)

    assert second_worker.get(key) is None


def test_redis_outage_is_a_cache_miss(caplog: pytest.LogCaptureFixture) -> None:
    cache = SlotCache(_BrokenRedis(), ttl_seconds=60)
    key = cache.make_key(1, MONDAY, 2, None)

    with caplog.at_level(logging.WARNING, logger='clinic_backend.services.slot_cache'):
        cache.set(key, MORNING)
        assert cache.get(key) is None
        cache.invalidate(key)
        assert cache.invalidate_day(1, MONDAY) == 0

    assert len(caplog.records) == 4
    assert 'connection refused' in caplog.records[0].getMessage()


def test_from_url_builds_a_decoding_client(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {}

    def fake_from_url(url, **kwargs):
        calls['url'] = url
        calls.update(kwargs)
        return 'client'

    monkeypatch.setattr(slot_cache_module.redis, 'from_url', fake_from_url)

    cache = SlotCache.from_url('redis://cache:6379/0', ttl_seconds=45)

    assert cache.client == 'client'
    assert cache.ttl_seconds == 45
    assert calls['url'] == 'redis://cache:6379/0'
    assert calls['decode_responses'] is True
