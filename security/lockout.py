"""
Per-IP lockout policy with exponential backoff.

Everything here is pure: callers load a LockoutState, pass it through these
functions together with the current time, and persist whatever comes back.
"""
import json
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

INITIAL_MAX_ATTEMPTS = 3
INITIAL_LOCK_MINUTES = 15

# Longest lock a datetime can hold; past this lock_until saturates at datetime.max
MAX_LOCK_MINUTES = int((datetime.max - datetime.min).total_seconds() // 60)


@dataclass(frozen=True)
class LockoutState:
    failed_attempts: int = 0
    lock_count: int = 0
    current_lock_minutes: int = INITIAL_LOCK_MINUTES
    lock_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now


def _as_count(value, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(int(number), 0)


def _parse_timestamp(value) -> datetime | None:
    """
    Stored timestamps are ISO-8601; aware values are normalized to naive UTC.
    Anything unparseable is treated as "no lock".
    """
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def state_from_dict(data, initial_lock_minutes: int = INITIAL_LOCK_MINUTES) -> LockoutState:
    if not isinstance(data, dict):
        return LockoutState(current_lock_minutes=initial_lock_minutes)

    minutes = _as_count(data.get("current_lock_minutes"), initial_lock_minutes)
    return LockoutState(
        failed_attempts=_as_count(data.get("failed_attempts")),
        lock_count=_as_count(data.get("lock_count")),
        current_lock_minutes=min(max(minutes, initial_lock_minutes), MAX_LOCK_MINUTES),
        lock_until=_parse_timestamp(data.get("lock_until")),
    )


def state_to_dict(state: LockoutState) -> dict:
    return {
        "failed_attempts": state.failed_attempts,
        "lock_count": state.lock_count,
        "current_lock_minutes": state.current_lock_minutes,
        "lock_until": state.lock_until.isoformat() + "Z" if state.lock_until else None,
    }


def loads_state(raw: str | None, initial_lock_minutes: int = INITIAL_LOCK_MINUTES) -> LockoutState:
    if not raw:
        return LockoutState(current_lock_minutes=initial_lock_minutes)
    try:
        data = json.loads(raw)
    except ValueError:
        data = None
    return state_from_dict(data, initial_lock_minutes)


def dumps_state(state: LockoutState) -> str:
    return json.dumps(state_to_dict(state))


def remaining_minutes(lock_until: datetime, now: datetime) -> int:
    seconds = (lock_until - now).total_seconds()
    if seconds <= 0:
        return 0
    return max(math.ceil(seconds / 60), 1)


def check_lock(state: LockoutState, now: datetime) -> tuple[LockoutState, bool, int]:
    """
    Returns (state, locked, minutes_remaining).
    An expired lock_until is cleared so the attempt is judged as OPEN.
    """
    if state.is_locked(now):
        return state, True, remaining_minutes(state.lock_until, now)

    if state.lock_until is not None:
        state = replace(state, lock_until=None)
    return state, False, 0


def _lock_until(now: datetime, minutes: int) -> datetime:
    try:
        return now + timedelta(minutes=minutes)
    except OverflowError:
        return datetime.max


def register_failure(
    state: LockoutState,
    now: datetime,
    max_attempts: int = INITIAL_MAX_ATTEMPTS,
    initial_lock_minutes: int = INITIAL_LOCK_MINUTES,
) -> tuple[LockoutState, bool]:
    """
    Applies one wrong PIN to an OPEN state. Returns (new_state, locked_now).

    A never-locked IP gets max_attempts tries before the first lock; after
    that every failure re-locks with the duration doubled.
    """
    if state.lock_count == 0:
        failed = state.failed_attempts + 1
        if failed < max_attempts:
            return replace(state, failed_attempts=failed), False
        minutes = initial_lock_minutes
    else:
        minutes = max(initial_lock_minutes, state.current_lock_minutes * 2)
    minutes = min(minutes, MAX_LOCK_MINUTES)

    locked = LockoutState(
        failed_attempts=0,
        lock_count=state.lock_count + 1,
        current_lock_minutes=minutes,
        lock_until=_lock_until(now, minutes),
    )
    return locked, True


def register_success(state: LockoutState) -> LockoutState:
    # lock_count and current_lock_minutes survive: the backoff schedule is not forgiven
    return replace(state, failed_attempts=0, lock_until=None)
