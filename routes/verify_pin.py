from datetime import datetime
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from security.attempts import record_attempt, prune_attempts, retention_cutoff
from security.credentials import CredentialExchangeError, exchange_for_session
from security.lockout import check_lock, register_failure, register_success
from security.lockout_store import (
    get_blocked_count,
    increment_blocked_count,
    load_state,
    reset_blocked_count,
    save_state,
)
from security.password import pin_matches
from utils.audit import log_event
from utils.auth_context import bearer_required
from utils.client_ip import client_ip


verify_pin_bp = Blueprint("verify_pin", __name__)


def _now() -> datetime:
    return datetime.utcnow()


def _fail(message: str, status: int):
    return jsonify(success=False, error=message), status


def _locked_response(minutes: int):
    return _fail(f"Accès refusé. Réessaie dans {minutes} min", 401)


@verify_pin_bp.after_request
def add_cors_headers(resp):
    resp.headers["Access-Control-Allow-Origin"] = current_app.config.get("CORS_ALLOW_ORIGIN", "*")
    resp.headers["Access-Control-Allow-Headers"] = current_app.config.get(
        "CORS_ALLOW_HEADERS", "authorization, x-client-info, apikey, content-type"
    )
    resp.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    return resp


@verify_pin_bp.route("/verify-pin", methods=["POST", "OPTIONS"])
@verify_pin_bp.route("/functions/v1/verify-pin", methods=["POST", "OPTIONS"])
def verify_pin():
    if request.method == "OPTIONS":
        return "", 200

    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        return _fail("Requête invalide", 400)

    try:
        if data.get("reset_blocked"):
            return reset_blocked()
        if data.get("admin_stats"):
            return admin_stats()
        return _check_pin(data.get("pin"))
    except Exception:
        db.session.rollback()
        current_app.logger.exception("verify-pin error")
        return _fail("Erreur interne", 500)


@bearer_required
def reset_blocked():
    reset_blocked_count()
    log_event("BLOCKED_COUNT_RESET")
    return jsonify(success=True), 200


@bearer_required
def admin_stats():
    return jsonify(blocked_count=get_blocked_count()), 200


def _check_pin(pin):
    ip = client_ip()
    now = _now()

    state, exists = load_state(ip)
    state, locked, minutes_left = check_lock(state, now)
    if locked:
        return _locked_response(minutes_left)

    if not pin or not isinstance(pin, str):
        return _fail("PIN requis", 400)

    server_pin = current_app.config.get("APP_PIN")
    # No PIN configured server-side: nobody gets in
    if not server_pin:
        return _fail("PIN non configuré", 500)

    is_valid = pin_matches(pin, server_pin)
    _record(ip, is_valid, now)

    if not is_valid:
        state, locked_now = register_failure(
            state,
            now,
            max_attempts=current_app.config.get("INITIAL_MAX_ATTEMPTS", 3),
            initial_lock_minutes=current_app.config.get("INITIAL_LOCK_MINUTES", 15),
        )
        saved = _save(ip, state)
        if locked_now:
            # only a lock that was actually stored counts as a new lockout
            if saved:
                _on_locked(ip, state)
            return _locked_response(state.current_lock_minutes)
        # Wrong PIN is not a system error
        return _fail("Code incorrect", 200)

    if exists:
        _save(ip, register_success(state))
    _prune(now)

    try:
        tokens = exchange_for_session()
    except CredentialExchangeError as exc:
        return _fail(exc.public_message, 500)

    return jsonify(
        success=True,
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    ), 200


def _record(ip: str, success: bool, now: datetime):
    try:
        record_attempt(ip, success, now)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("PIN attempt from %s not recorded", ip, exc_info=True)


def _save(ip: str, state) -> bool:
    # A lost write here is a lost accounting event, not a failed request
    try:
        save_state(ip, state)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Lockout state for %s not saved", ip, exc_info=True)
        return False
    return True


def _on_locked(ip: str, state):
    current_app.logger.info(
        "IP %s locked for %s min (lock #%s)", ip, state.current_lock_minutes, state.lock_count
    )
    try:
        increment_blocked_count()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Blocked counter not incremented for %s", ip, exc_info=True)
    log_event("PIN_LOCKED", metadata={
        "ip": ip,
        "lock_count": state.lock_count,
        "minutes": state.current_lock_minutes,
    })


def _prune(now: datetime):
    try:
        prune_attempts(retention_cutoff(now))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("PIN attempt pruning failed", exc_info=True)
