import hashlib
import secrets
from datetime import datetime, timedelta
from flask import current_app

from models import db
from models.session import Session


def _hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random session tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, ip: str | None = None) -> tuple[str, str]:
    """
    Creates a server-side session and returns the RAW (access, refresh) tokens.
    Only their hashes are stored in DB.
    """
    access_token = secrets.token_urlsafe(32)
    refresh_token = secrets.token_urlsafe(32)

    now = datetime.utcnow()
    access_ttl = current_app.config.get("ACCESS_TOKEN_TTL_SECONDS", 3600)
    refresh_ttl = current_app.config.get("REFRESH_TOKEN_TTL_SECONDS", 30 * 24 * 60 * 60)

    row = Session(
        user_id=user_id,
        access_token_hash=_hash_token(access_token),
        refresh_token_hash=_hash_token(refresh_token),
        expires_at=now + timedelta(seconds=access_ttl),
        refresh_expires_at=now + timedelta(seconds=refresh_ttl),
        ip=ip,
    )
    db.session.add(row)
    db.session.commit()
    return access_token, refresh_token


def get_session_by_access_token(raw_token: str):
    if not raw_token:
        return None

    sess = (
        Session.query
        .filter_by(access_token_hash=_hash_token(raw_token), revoked=False)
        .first()
    )
    if not sess:
        return None

    # Absolute expiry
    if sess.expires_at <= datetime.utcnow():
        return None

    return sess
