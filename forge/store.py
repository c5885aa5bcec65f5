"""Storage boundary for features, evidence and forecast versions."""
from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from forge.errors import VersionConflictError
from forge.models import Evidence, Feature, Forecast

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForecastDraft:
    """An assembled forecast that has not yet been given a version."""
    feature_id: int
    fields: dict[str, Any]


class ForecastStore(Protocol):
    def get_feature(self, feature_id: int) -> Feature | None: ...

    def list_evidence(self, feature_id: int) -> list[Evidence]: ...

    def list_forecasts(self, feature_id: int) -> list[Forecast]: ...

    def get_forecast(self, forecast_id: int) -> Forecast | None: ...

    def append_forecast(self, draft: ForecastDraft) -> Forecast: ...


class _KeyedLocks:
    """One lock per key, created on demand and dropped once no thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}
        self._users: dict[int, int] = {}

    @contextmanager
    def hold(self, key: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key], self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


_version_locks = _KeyedLocks()


class SqlForecastStore:
    """SQLAlchemy implementation of :class:`ForecastStore`.

    ``append_forecast`` assigns ``max(version) + 1`` and inserts in one
    transaction while holding a per-feature lock.  The unique
    ``(feature_id, version)`` constraint catches writers in other
    processes; on conflict the transaction is rolled back and the next
    number is tried.
    """

    def __init__(self, session: Session, max_conflict_retries: int = 5):
        self.session = session
        self.max_conflict_retries = max_conflict_retries

    def get_feature(self, feature_id: int) -> Feature | None:
        return self.session.get(Feature, feature_id)

    def list_evidence(self, feature_id: int) -> list[Evidence]:
        return list(self.session.execute(
            select(Evidence).where(Evidence.feature_id == feature_id).order_by(Evidence.id)
        ).scalars().all())

    def list_forecasts(self, feature_id: int) -> list[Forecast]:
        """Forecast versions for a feature, newest first."""
        return list(self.session.execute(
            select(Forecast).where(Forecast.feature_id == feature_id).order_by(Forecast.version.desc())
        ).scalars().all())

    def get_forecast(self, forecast_id: int) -> Forecast | None:
        return self.session.get(Forecast, forecast_id)

    def latest_version(self, feature_id: int) -> int:
        return self.session.execute(
            select(func.coalesce(func.max(Forecast.version), 0)).where(Forecast.feature_id == feature_id)
        ).scalar_one()

    def append_forecast(self, draft: ForecastDraft) -> Forecast:
        with _version_locks.hold(draft.feature_id):
            for attempt in range(1, self.max_conflict_retries + 1):
                version = self.latest_version(draft.feature_id) + 1
                forecast = Forecast(feature_id=draft.feature_id, version=version, **draft.fields)
                self.session.add(forecast)
                try:
                    self.session.commit()
                except IntegrityError:
                    self.session.rollback()
                    log.warning(
                        "Version %d for feature %s already taken (attempt %d), retrying",
                        version, draft.feature_id, attempt,
                    )
                    continue
                self.session.refresh(forecast)
                log.info("Stored forecast %s as version %d of feature %s",
                         forecast.id, version, draft.feature_id)
                return forecast
        raise VersionConflictError(draft.feature_id, self.max_conflict_retries)
