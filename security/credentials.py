from flask import current_app

from security.identity import (
    IdentityProviderError,
    InvalidCredentials,
    TokenPair,
    UserAlreadyExists,
    get_identity_provider,
)
from security.password import derive_account_password
from utils.audit import log_event


class CredentialExchangeError(Exception):
    """
    Raised when no session could be obtained. `public_message` is safe to return
    to the caller; provider details stay in the server log.
    """

    def __init__(self, public_message: str):
        super().__init__(public_message)
        self.public_message = public_message


def exchange_for_session() -> TokenPair:
    """
    Signs in as the shared backing account, creating it on first use.
    """
    provider = get_identity_provider()
    email = current_app.config.get("APP_USER_EMAIL", "app@internal.local")
    try:
        password = derive_account_password(current_app.config.get("APP_ACCOUNT_SECRET"))
    except ValueError:
        current_app.logger.error("APP_ACCOUNT_SECRET is not configured")
        raise CredentialExchangeError("Erreur interne")

    try:
        return provider.sign_in_with_password(email, password)
    except InvalidCredentials:
        pass
    except IdentityProviderError as exc:
        current_app.logger.error("Sign-in failed: %s", exc)
        raise CredentialExchangeError("Erreur de session")

    # Account missing: create it, tolerating a concurrent creator
    try:
        provider.create_user(email, password)
        log_event("APP_ACCOUNT_CREATED", metadata={"email": email})
    except UserAlreadyExists:
        pass
    except IdentityProviderError as exc:
        current_app.logger.error("Failed to create app user: %s", exc)
        raise CredentialExchangeError("Erreur interne")

    try:
        return provider.sign_in_with_password(email, password)
    except IdentityProviderError as exc:
        current_app.logger.error("Sign-in failed after account creation: %s", exc)
        raise CredentialExchangeError("Erreur de session")
