from datetime import datetime, timedelta
from flask import current_app

from models import db
from models.pin_attempt import PinAttempt


def record_attempt(ip: str, success: bool, now: datetime | None = None) -> PinAttempt:
    row = PinAttempt(ip=ip, success=success, created_at=now or datetime.utcnow())
    db.session.add(row)
    db.session.commit()
    return row


def retention_cutoff(now: datetime | None = None, days: int | None = None) -> datetime:
    if days is None:
        days = current_app.config.get("ATTEMPT_RETENTION_DAYS", 30)
    return (now or datetime.utcnow()) - timedelta(days=days)


def prune_attempts(older_than: datetime) -> int:
    """
    Deletes ledger rows created before the cutoff. Returns how many were removed.
    """
    deleted = (
        PinAttempt.query
        .filter(PinAttempt.created_at < older_than)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted


def count_recent_failures(ip: str, since: datetime) -> int:
    return (
        PinAttempt.query
        .filter(PinAttempt.ip == ip, PinAttempt.success.is_(False), PinAttempt.created_at >= since)
        .count()
    )
