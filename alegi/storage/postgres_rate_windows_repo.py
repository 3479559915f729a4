"""Postgres-backed rate windows: one row per resource, committed with a version-guarded UPDATE."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert

from alegi.core.database import require_session_factory
from alegi.core.errors import RateLimitBackpressure
from alegi.ratelimit.windows import MIN_WAIT_SECONDS, Admission, AdmissionRequest, WindowState, evaluate
from alegi.schema.rate_windows import RateWindow
from alegi.storage.rate_windows_repo import RateWindowRepository


def encode_admissions(admissions: tuple[Admission, ...]) -> list[dict[str, Any]]:
  return [{"at": admission.at.isoformat(), "tokens": admission.tokens} for admission in admissions]


def decode_admissions(raw: list[dict[str, Any]] | None) -> tuple[Admission, ...]:
  return tuple(Admission(at=datetime.fromisoformat(item["at"]), tokens=int(item["tokens"])) for item in raw or [])


def _row_to_state(row: RateWindow) -> WindowState:
  return WindowState(resource_key=row.resource_key, admissions=decode_admissions(row.admissions), last_admitted_at=row.last_admitted_at, version=row.version)


class PostgresRateWindowRepository(RateWindowRepository):
  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def try_admit(self, resource_key: str, request: AdmissionRequest, *, now: datetime) -> WindowState:
    async with self._session_factory() as session:
      seed = insert(RateWindow).values(resource_key=resource_key, admissions=[], version=0).on_conflict_do_nothing(index_elements=[RateWindow.resource_key])
      await session.execute(seed)
      row = (await session.execute(select(RateWindow).where(RateWindow.resource_key == resource_key))).scalars().one()
      stored = _row_to_state(row)
      decision = evaluate(stored, request, resource_key=resource_key, now=now)
      if not decision.admitted:
        await session.commit()
        raise RateLimitBackpressure(resource_key, decision.retry_after)

      # Compare-and-set on the version read above; a concurrent admission makes this match no row.
      admit = (
        update(RateWindow)
        .where(RateWindow.resource_key == resource_key, RateWindow.version == stored.version)
        .values(admissions=encode_admissions(decision.state.admissions), last_admitted_at=now, version=stored.version + 1)
        .returning(RateWindow.version)
        .execution_options(synchronize_session=False)
      )
      version = (await session.execute(admit)).scalar_one_or_none()
      await session.commit()

    if version is None:
      # Another invocation admitted a call in between; re-evaluate against its write almost immediately.
      raise RateLimitBackpressure(resource_key, MIN_WAIT_SECONDS)
    return WindowState(resource_key=resource_key, admissions=decision.state.admissions, last_admitted_at=now, version=version)

  async def get_window(self, resource_key: str) -> WindowState | None:
    async with self._session_factory() as session:
      row = await session.get(RateWindow, resource_key)
    return None if row is None else _row_to_state(row)
