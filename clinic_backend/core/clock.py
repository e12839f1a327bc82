"""Clinic timezone convention shared by every scheduling call site."""

from datetime import datetime
from functools import lru_cache
from zoneinfo import ZoneInfo

from clinic_backend.core import config


@lru_cache(maxsize=None)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def clinic_timezone() -> ZoneInfo:
    return _zone(config.CLINIC_TIMEZONE)


def to_clinic_local(instant: datetime) -> datetime:
    # Stored instants are naive clinic-local wall time; aware input is converted first.
    if instant.tzinfo is None:
        return instant.replace(second=0, microsecond=0)
    local = instant.astimezone(clinic_timezone())
    return local.replace(tzinfo=None, second=0, microsecond=0)


def clinic_now() -> datetime:
    return datetime.now(clinic_timezone()).replace(tzinfo=None, microsecond=0)
