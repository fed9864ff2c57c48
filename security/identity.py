"""
Identity providers used to mint and verify session tokens.

Two backends share one small interface: LocalIdentityProvider keeps accounts
and hashed tokens in this app's database, SupabaseIdentityProvider talks to a
hosted GoTrue server over its REST API.
"""
from dataclasses import dataclass
from datetime import datetime

import httpx
from flask import current_app

from models import db
from models.user import User
from security.password import hash_password, verify_password
from security.session import create_session, get_session_by_access_token


class IdentityProviderError(Exception):
    pass


class InvalidCredentials(IdentityProviderError):
    pass


class UserAlreadyExists(IdentityProviderError):
    pass


class InvalidToken(IdentityProviderError):
    pass


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class Identity:
    id: str
    email: str


class IdentityProvider:
    def sign_in_with_password(self, email: str, password: str) -> TokenPair:
        raise NotImplementedError

    def create_user(self, email: str, password: str) -> Identity:
        raise NotImplementedError

    def get_user(self, access_token: str) -> Identity:
        raise NotImplementedError


class LocalIdentityProvider(IdentityProvider):
    def __init__(self, bcrypt_rounds: int = 12):
        self.bcrypt_rounds = bcrypt_rounds

    def sign_in_with_password(self, email, password):
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid login credentials")

        user.last_sign_in_at = datetime.utcnow()
        access_token, refresh_token = create_session(user.id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def create_user(self, email, password):
        email = email.strip().lower()
        if User.query.filter_by(email=email).first():
            raise UserAlreadyExists("A user with this email address has already been registered")

        user = User(email=email, password_hash=hash_password(password, rounds=self.bcrypt_rounds))
        db.session.add(user)
        db.session.commit()
        return Identity(id=str(user.id), email=user.email)

    def get_user(self, access_token):
        sess = get_session_by_access_token(access_token)
        if not sess:
            raise InvalidToken("Invalid or expired token")
        return Identity(id=str(sess.user.id), email=sess.user.email)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if not isinstance(body, dict):
        return resp.text
    for field in ("msg", "message", "error_description", "error"):
        if body.get(field):
            return str(body[field])
    return resp.text


class SupabaseIdentityProvider(IdentityProvider):
    def __init__(self, url: str, anon_key: str, service_role_key: str, timeout: float = 10.0,
                 transport: httpx.BaseTransport | None = None):
        if not url or not anon_key or not service_role_key:
            raise IdentityProviderError("Supabase is not configured")
        self.base_url = url.rstrip("/") + "/auth/v1"
        self.anon_key = anon_key
        self.service_role_key = service_role_key
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, key: str, bearer: str | None = None, **kwargs) -> httpx.Response:
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                return client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise IdentityProviderError(f"Auth server unreachable: {exc}") from exc

    def sign_in_with_password(self, email, password):
        resp = self._request(
            "POST", "/token", self.anon_key,
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code == 400:
            raise InvalidCredentials(_error_message(resp))
        if resp.status_code != 200:
            raise IdentityProviderError(f"Sign-in failed ({resp.status_code}): {_error_message(resp)}")

        body = resp.json()
        if not body.get("access_token") or not body.get("refresh_token"):
            raise IdentityProviderError("Sign-in returned no session")
        return TokenPair(access_token=body["access_token"], refresh_token=body["refresh_token"])

    def create_user(self, email, password):
        resp = self._request(
            "POST", "/admin/users", self.service_role_key,
            json={"email": email, "password": password, "email_confirm": True},
        )
        if resp.status_code in (200, 201):
            body = resp.json()
            return Identity(id=str(body.get("id", "")), email=body.get("email", email))

        message = _error_message(resp)
        if resp.status_code == 422 or "already been registered" in message or "email_exists" in resp.text:
            raise UserAlreadyExists(message)
        raise IdentityProviderError(f"User creation failed ({resp.status_code}): {message}")

    def get_user(self, access_token):
        resp = self._request("GET", "/user", self.anon_key, bearer=access_token)
        if resp.status_code in (401, 403):
            raise InvalidToken(_error_message(resp))
        if resp.status_code != 200:
            raise IdentityProviderError(f"Token check failed ({resp.status_code}): {_error_message(resp)}")

        body = resp.json()
        if not body.get("id"):
            raise InvalidToken("No user for token")
        return Identity(id=str(body["id"]), email=body.get("email", ""))


def build_identity_provider(config) -> IdentityProvider:
    kind = (config.get("IDENTITY_PROVIDER") or "local").lower()
    if kind == "local":
        return LocalIdentityProvider(bcrypt_rounds=config.get("BCRYPT_ROUNDS", 12))
    if kind == "supabase":
        return SupabaseIdentityProvider(
            url=config.get("SUPABASE_URL"),
            anon_key=config.get("SUPABASE_ANON_KEY"),
            service_role_key=config.get("SUPABASE_SERVICE_ROLE_KEY"),
            timeout=config.get("SUPABASE_TIMEOUT_SECONDS", 10.0),
        )
    raise ValueError(f"Unknown IDENTITY_PROVIDER: {kind}")


def get_identity_provider() -> IdentityProvider:
    return current_app.extensions["identity_provider"]
