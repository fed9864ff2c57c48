"""End-to-end tests for the /verify-pin endpoint."""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from models.audit_log import AuditLog
from models.pin_attempt import PinAttempt
from security.identity import IdentityProviderError
from security.lockout_store import get_blocked_count, load_state, lockout_key, set_value
from utils.client_ip import MAX_IP_LENGTH

IP = "1.2.3.4"
GOOD_PIN = "4821"
BAD_PIN = "0000"


def _post(client, body, ip=IP, **headers):
    headers = {"X-Forwarded-For": ip, **headers}
    return client.post("/verify-pin", json=body, headers=headers)


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _login(client, ip="10.0.0.1"):
    resp = _post(client, {"pin": GOOD_PIN}, ip=ip)
    assert resp.status_code == 200
    return resp.get_json()["access_token"]


class TestPinVerification:
    def test_correct_pin_returns_tokens(self, client, clock):
        resp = _post(client, {"pin": GOOD_PIN})
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["success"] is True
        assert body["access_token"]
        assert body["refresh_token"]

    def test_second_correct_pin_also_succeeds(self, client, clock):
        first = _post(client, {"pin": GOOD_PIN})
        second = _post(client, {"pin": GOOD_PIN})
        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json()["access_token"] != first.get_json()["access_token"]

    def test_success_does_not_create_lockout_state(self, client, clock):
        _post(client, {"pin": GOOD_PIN})
        _, exists = load_state(IP)
        assert exists is False

    def test_wrong_pin_below_threshold(self, client, clock):
        for _ in range(2):
            resp = _post(client, {"pin": BAD_PIN})
            assert resp.status_code == 200
            assert resp.get_json() == {"success": False, "error": "Code incorrect"}

        state, _ = load_state(IP)
        assert state.failed_attempts == 2
        assert state.lock_until is None

    def test_lockout_scenario_with_backoff(self, client, clock):
        statuses = [_post(client, {"pin": BAD_PIN}).status_code for _ in range(3)]
        assert statuses == [200, 200, 401]
        state, _ = load_state(IP)
        assert state.lock_count == 1
        assert get_blocked_count() == 1

        clock.advance(minutes=5)
        resp = _post(client, {"pin": BAD_PIN})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Accès refusé. Réessaie dans 10 min"

        clock.advance(minutes=11)
        resp = _post(client, {"pin": BAD_PIN})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Accès refusé. Réessaie dans 30 min"
        state, _ = load_state(IP)
        assert state.lock_count == 2
        assert state.current_lock_minutes == 30
        assert get_blocked_count() == 2

    def test_third_failure_reports_initial_lock_minutes(self, client, clock):
        _post(client, {"pin": BAD_PIN})
        _post(client, {"pin": BAD_PIN})
        resp = _post(client, {"pin": BAD_PIN})
        assert resp.get_json() == {"success": False, "error": "Accès refusé. Réessaie dans 15 min"}

    def test_correct_pin_refused_while_locked(self, client, clock):
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})
        attempts_before = PinAttempt.query.count()

        clock.advance(minutes=1)
        resp = _post(client, {"pin": GOOD_PIN})

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Accès refusé. Réessaie dans 14 min"
        # the PIN was never compared, so nothing was recorded
        assert PinAttempt.query.count() == attempts_before

    def test_remaining_minutes_decrease(self, client, clock):
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})
        seen = []
        for _ in range(3):
            clock.advance(minutes=4)
            seen.append(_post(client, {"pin": GOOD_PIN}).get_json()["error"])
        assert seen == [
            "Accès refusé. Réessaie dans 11 min",
            "Accès refusé. Réessaie dans 7 min",
            "Accès refusé. Réessaie dans 3 min",
        ]

    def test_success_after_lock_keeps_backoff_history(self, client, clock):
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})
        clock.advance(minutes=16)

        resp = _post(client, {"pin": GOOD_PIN})
        assert resp.status_code == 200
        state, _ = load_state(IP)
        assert state.failed_attempts == 0
        assert state.lock_until is None
        assert state.lock_count == 1
        assert state.current_lock_minutes == 15

        # no grace attempts once an IP has been locked
        resp = _post(client, {"pin": BAD_PIN})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Accès refusé. Réessaie dans 30 min"

    def test_lockouts_are_per_ip(self, client, clock):
        for _ in range(3):
            _post(client, {"pin": BAD_PIN}, ip="5.5.5.5")
        resp = _post(client, {"pin": BAD_PIN}, ip="6.6.6.6")
        assert resp.status_code == 200

    def test_first_forwarded_hop_is_the_client(self, client, clock):
        _post(client, {"pin": BAD_PIN}, ip="7.7.7.7, 10.0.0.2")
        assert PinAttempt.query.filter_by(ip="7.7.7.7").count() == 1

    def test_every_submission_is_recorded(self, client, clock):
        _post(client, {"pin": BAD_PIN})
        _post(client, {"pin": GOOD_PIN})
        rows = PinAttempt.query.filter_by(ip=IP).all()
        assert sorted(r.success for r in rows) == [False, True]

    def test_lock_writes_audit_event(self, client, clock):
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})
        assert AuditLog.query.filter_by(action="PIN_LOCKED").count() == 1


class TestInputErrors:
    @pytest.mark.parametrize("body", [{}, {"pin": ""}, {"pin": 4821}, {"pin": None}])
    def test_missing_or_invalid_pin(self, client, clock, body):
        resp = _post(client, body)
        assert resp.status_code == 400
        assert resp.get_json() == {"success": False, "error": "PIN requis"}

    def test_unparseable_body(self, client):
        resp = client.post("/verify-pin", data="{not json", content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json() == {"success": False, "error": "Requête invalide"}

    def test_non_object_body(self, client):
        resp = client.post("/verify-pin", json=["pin", "4821"])
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Requête invalide"

    def test_pin_not_configured_fails_secure(self, app, client, clock):
        app.config["APP_PIN"] = None
        resp = _post(client, {"pin": GOOD_PIN})
        assert resp.status_code == 500
        assert resp.get_json() == {"success": False, "error": "PIN non configuré"}

    def test_options_preflight(self, client):
        resp = client.options("/verify-pin")
        assert resp.status_code == 200
        assert resp.data == b""
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "authorization" in resp.headers["Access-Control-Allow-Headers"]

    def test_cors_headers_on_json_responses(self, client, clock):
        resp = _post(client, {"pin": BAD_PIN})
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    def test_functions_path_alias(self, client, clock):
        resp = client.post("/functions/v1/verify-pin", json={"pin": GOOD_PIN})
        assert resp.status_code == 200


class TestFailureHandling:
    def test_lost_lockout_write_does_not_fail_request(self, client, clock, monkeypatch):
        def broken_save(ip, state):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr("routes.verify_pin.save_state", broken_save)
        resp = _post(client, {"pin": BAD_PIN})
        assert resp.status_code == 200
        assert resp.get_json()["error"] == "Code incorrect"

    def test_lost_ledger_write_does_not_fail_request(self, client, clock, monkeypatch):
        def broken_record(ip, success, now):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr("routes.verify_pin.record_attempt", broken_record)
        resp = _post(client, {"pin": GOOD_PIN})
        assert resp.status_code == 200
        assert resp.get_json()["success"] is True

    def test_unexpected_error_is_generic_500(self, client, clock, monkeypatch):
        def explode(ip):
            raise RuntimeError("internal detail")

        monkeypatch.setattr("routes.verify_pin.load_state", explode)
        resp = _post(client, {"pin": GOOD_PIN})
        assert resp.status_code == 500
        assert resp.get_json() == {"success": False, "error": "Erreur interne"}

    def test_identity_provider_failure_is_not_leaked(self, client, clock, fake_provider):
        fake_provider.create_error = IdentityProviderError("service key rejected")
        resp = _post(client, {"pin": GOOD_PIN})
        assert resp.status_code == 500
        assert resp.get_json() == {"success": False, "error": "Erreur interne"}


class TestAdmin:
    def test_stats_requires_auth(self, client):
        resp = client.post("/verify-pin", json={"admin_stats": True})
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "error": "Non autorisé"}

    @pytest.mark.parametrize("header", ["Basic abc", "Bearer ", "Bearer not-a-token", "garbage"])
    def test_bad_auth_headers_are_uniformly_unauthorized(self, client, header):
        resp = client.post("/verify-pin", json={"admin_stats": True}, headers={"Authorization": header})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Non autorisé"

    def test_stats_with_session(self, client, clock):
        token = _login(client)
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})

        resp = client.post("/verify-pin", json={"admin_stats": True}, headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.get_json() == {"blocked_count": 1}

    def test_stats_is_idempotent(self, client, clock):
        token = _login(client)
        first = client.post("/verify-pin", json={"admin_stats": True}, headers=_bearer(token))
        second = client.post("/verify-pin", json={"admin_stats": True}, headers=_bearer(token))
        assert first.get_json() == second.get_json() == {"blocked_count": 0}

    def test_reset(self, client, clock):
        token = _login(client)
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})

        resp = client.post("/verify-pin", json={"reset_blocked": True}, headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True}
        assert get_blocked_count() == 0
        assert AuditLog.query.filter_by(action="BLOCKED_COUNT_RESET").count() == 1

    def test_unauthenticated_reset_leaves_counter(self, client, clock):
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})

        resp = client.post("/verify-pin", json={"reset_blocked": True}, headers=_bearer("forged"))
        assert resp.status_code == 401
        assert get_blocked_count() == 1

    def test_reset_is_checked_before_stats(self, client, clock):
        token = _login(client)
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})

        resp = client.post(
            "/verify-pin", json={"reset_blocked": True, "admin_stats": True}, headers=_bearer(token)
        )
        assert resp.get_json() == {"success": True}

    def test_admin_requests_skip_lockout(self, client, clock):
        token = _login(client, ip=IP)
        for _ in range(3):
            _post(client, {"pin": BAD_PIN})

        resp = client.post("/verify-pin", json={"admin_stats": True},
                           headers={"X-Forwarded-For": IP, **_bearer(token)})
        assert resp.status_code == 200


class TestStoredStateEdgeCases:
    def test_absurd_stored_duration_still_locks(self, client, clock):
        set_value(lockout_key(IP), '{"lock_count": 1, "current_lock_minutes": 1e300}')

        resp = _post(client, {"pin": BAD_PIN})
        assert resp.status_code == 401
        assert resp.get_json()["error"].startswith("Accès refusé. Réessaie dans ")

        state, _ = load_state(IP)
        assert state.lock_until == datetime.max
        assert state.lock_count == 2
        assert get_blocked_count() == 1

        resp = _post(client, {"pin": GOOD_PIN})
        assert resp.status_code == 401

    def test_unsaved_lock_is_not_counted(self, client, clock, monkeypatch):
        set_value(lockout_key(IP), '{"lock_count": 1, "current_lock_minutes": 15}')

        def broken_save(ip, state):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr("routes.verify_pin.save_state", broken_save)
        for _ in range(2):
            resp = _post(client, {"pin": BAD_PIN})
            assert resp.status_code == 401
        assert get_blocked_count() == 0
        assert AuditLog.query.filter_by(action="PIN_LOCKED").count() == 0

    def test_oversized_forwarded_header_is_truncated(self, client, clock):
        ip = "9" * 500
        for _ in range(3):
            _post(client, {"pin": BAD_PIN}, ip=ip)

        rows = PinAttempt.query.all()
        assert len(rows) == 3
        assert all(r.ip == ip[:MAX_IP_LENGTH] for r in rows)
        state, exists = load_state(ip[:MAX_IP_LENGTH])
        assert exists is True
        assert state.lock_count == 1
