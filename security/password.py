import hmac

import bcrypt

ACCOUNT_PASSWORD_LENGTH = 32


def hash_password(plain_password: str, rounds: int = 12) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    # bcrypt expects bytes
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8")
        )
    except ValueError:
        return False


def derive_account_password(secret: str) -> str:
    """
    Password of the shared backing account: a fixed prefix of a server-held
    secret. Never derived from the PIN.
    """
    if not secret:
        raise ValueError("Account secret is not configured")
    return secret[:ACCOUNT_PASSWORD_LENGTH]


def pin_matches(submitted: str, expected: str) -> bool:
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))
