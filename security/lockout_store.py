from flask import current_app

from models import db
from models.pin_attempt_meta import PinAttemptMeta
from security.lockout import LockoutState, loads_state, dumps_state

BLOCKED_COUNT_KEY = "cumulative_blocked_count"
LOCKOUT_KEY_PREFIX = "lockout:"


def lockout_key(ip: str) -> str:
    return LOCKOUT_KEY_PREFIX + ip


def get_value(key: str) -> str | None:
    row = db.session.get(PinAttemptMeta, key)
    if row is None:
        return None
    return row.value


def set_value(key: str, value: str) -> None:
    """
    Upsert without relying on the primary key constraint: update the row if
    it exists, otherwise insert it. Concurrent writers race; the last write wins.
    """
    row = db.session.get(PinAttemptMeta, key)
    if row is None:
        row = PinAttemptMeta(key=key, value=value)
        db.session.add(row)
    else:
        row.value = value
    db.session.commit()


def _initial_lock_minutes() -> int:
    return current_app.config.get("INITIAL_LOCK_MINUTES", 15)


def load_state(ip: str) -> tuple[LockoutState, bool]:
    """
    Returns (state, exists). A missing or corrupt row yields a fresh state.
    """
    raw = get_value(lockout_key(ip))
    return loads_state(raw, _initial_lock_minutes()), raw is not None


def save_state(ip: str, state: LockoutState) -> None:
    set_value(lockout_key(ip), dumps_state(state))


def get_blocked_count() -> int:
    raw = get_value(BLOCKED_COUNT_KEY)
    if raw is None:
        return 0
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0


def increment_blocked_count() -> int:
    count = get_blocked_count() + 1
    set_value(BLOCKED_COUNT_KEY, str(count))
    return count


def reset_blocked_count() -> None:
    set_value(BLOCKED_COUNT_KEY, "0")
