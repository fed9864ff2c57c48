from functools import wraps
from flask import g, jsonify, request, current_app

from security.identity import IdentityProviderError, get_identity_provider


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    if not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


def load_bearer_identity():
    """
    Resolves the bearer token against the identity provider. Any failure
    leaves g.identity as None.
    """
    g.identity = None
    token = _bearer_token()
    if not token:
        return None
    try:
        g.identity = get_identity_provider().get_user(token)
    except IdentityProviderError as exc:
        current_app.logger.info("Bearer token rejected: %s", exc)
    except Exception:
        current_app.logger.warning("Bearer token check failed", exc_info=True)
    return g.identity


def bearer_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if load_bearer_identity() is None:
            return jsonify(success=False, error="Non autorisé"), 401
        return fn(*args, **kwargs)
    return wrapper
