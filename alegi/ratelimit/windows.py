"""Pure admission rules for rolling one-minute rate windows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

WINDOW_SECONDS = 60.0
# Floor for computed waits so a caller never spins on a zero-length sleep.
MIN_WAIT_SECONDS = 0.05


@dataclass(frozen=True)
class Admission:
  at: datetime
  tokens: int


@dataclass(frozen=True)
class WindowState:
  """Admissions still inside the rolling window, oldest first."""

  resource_key: str
  admissions: tuple[Admission, ...] = ()
  last_admitted_at: datetime | None = None
  version: int = 0

  @property
  def request_count(self) -> int:
    return len(self.admissions)

  @property
  def token_count(self) -> int:
    return sum(admission.tokens for admission in self.admissions)


@dataclass(frozen=True)
class AdmissionRequest:
  rpm: int
  tpm: int
  tokens: int
  min_interval: float = 0.0

  @property
  def charged_tokens(self) -> int:
    # A single call larger than the whole TPM budget is charged the full budget so it can still be admitted.
    return min(max(self.tokens, 0), self.tpm)


@dataclass(frozen=True)
class AdmissionDecision:
  admitted: bool
  state: WindowState
  retry_after: float = 0.0


def live_admissions(state: WindowState | None, now: datetime) -> tuple[Admission, ...]:
  """Admissions made in the 60 seconds before now; older ones no longer count."""
  if state is None:
    return ()
  cutoff = now - timedelta(seconds=WINDOW_SECONDS)
  return tuple(admission for admission in state.admissions if admission.at > cutoff)


def _expiries_needed(live: tuple[Admission, ...], request: AdmissionRequest, tokens: int) -> int:
  """How many of the oldest admissions must age out before this call fits."""
  by_requests = max(len(live) + 1 - request.rpm, 0)
  remaining = sum(admission.tokens for admission in live)
  by_tokens = 0
  while remaining + tokens > request.tpm and by_tokens < len(live):
    remaining -= live[by_tokens].tokens
    by_tokens += 1
  return max(by_requests, by_tokens)


def evaluate(state: WindowState | None, request: AdmissionRequest, *, resource_key: str, now: datetime) -> AdmissionDecision:
  """Admit when the last 60 seconds leave room for one more request and its token estimate, and the minimum interval has passed.

  Every admission is checked against the admissions of the preceding 60 seconds, so no rolling
  60-second interval ever holds more than rpm calls or tpm estimated tokens.
  """
  live = live_admissions(state, now)
  last_admitted_at = state.last_admitted_at if state is not None else None
  version = state.version if state is not None else 0
  tokens = request.charged_tokens
  window = WindowState(resource_key=resource_key, admissions=live, last_admitted_at=last_admitted_at, version=version)

  interval_wait = 0.0
  if last_admitted_at is not None and request.min_interval > 0:
    interval_wait = request.min_interval - (now - last_admitted_at).total_seconds()

  expiries = _expiries_needed(live, request, tokens)
  if expiries == 0 and interval_wait <= 0:
    admitted = WindowState(resource_key=resource_key, admissions=live + (Admission(at=now, tokens=tokens),), last_admitted_at=now, version=version)
    return AdmissionDecision(admitted=True, state=admitted)

  wait = max(interval_wait, 0.0)
  if expiries:
    ages_out_at = live[expiries - 1].at + timedelta(seconds=WINDOW_SECONDS)
    wait = max(wait, (ages_out_at - now).total_seconds())
  return AdmissionDecision(admitted=False, state=window, retry_after=max(wait, MIN_WAIT_SECONDS))
