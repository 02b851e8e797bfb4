from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from contentflow.models import KeyValueRecord, utcnow


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...


def _as_aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round-trip.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _expiry(now: datetime, ttl_seconds: int | None) -> datetime | None:
    if ttl_seconds is None:
        return None
    return now + timedelta(seconds=ttl_seconds)


class SqlKeyValueStore:
    def __init__(self, session: Session, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.session = session
        self._clock = clock

    def _is_expired(self, record: KeyValueRecord) -> bool:
        return record.expires_at is not None and _as_aware(record.expires_at) <= self._clock()

    def get(self, key: str) -> Any | None:
        record = self.session.get(KeyValueRecord, key)
        if record is None:
            return None
        if self._is_expired(record):
            self.session.delete(record)
            self.session.commit()
            return None
        return copy.deepcopy(record.value)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        now = self._clock()
        record = self.session.get(KeyValueRecord, key)
        if record is None:
            record = KeyValueRecord(key=key, value=value, updated_at=now, expires_at=_expiry(now, ttl_seconds))
            self.session.add(record)
        else:
            record.value = value
            record.updated_at = now
            record.expires_at = _expiry(now, ttl_seconds)
        self.session.commit()

    def delete(self, key: str) -> bool:
        result = self.session.execute(delete(KeyValueRecord).where(KeyValueRecord.key == key))
        self.session.commit()
        return bool(result.rowcount)

    def keys(self, prefix: str = "") -> list[str]:
        records = self.session.scalars(
            select(KeyValueRecord).where(KeyValueRecord.key.startswith(prefix, autoescape=True)).order_by(KeyValueRecord.key)
        ).all()
        return [record.key for record in records if not self._is_expired(record)]

    def purge_expired(self) -> int:
        result = self.session.execute(delete(KeyValueRecord).where(KeyValueRecord.expires_at <= self._clock()))
        self.session.commit()
        return int(result.rowcount or 0)


class InMemoryKeyValueStore:
    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._records: dict[str, tuple[Any, datetime | None]] = {}
        self._clock = clock

    def _live(self, key: str) -> tuple[Any, datetime | None] | None:
        entry = self._records.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._records[key]
            return None
        return entry

    def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return copy.deepcopy(entry[0]) if entry else None

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        self._records[key] = (copy.deepcopy(value), _expiry(self._clock(), ttl_seconds))

    def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in list(self._records) if key.startswith(prefix) and self._live(key))
