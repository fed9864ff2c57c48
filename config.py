import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as pin_gate.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "pin_gate.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Reference PIN (unset means nobody can get in)
    APP_PIN = os.getenv("APP_PIN") or os.getenv("VITE_APP_PIN")

    # Lockout policy
    INITIAL_MAX_ATTEMPTS = int(os.getenv("INITIAL_MAX_ATTEMPTS", "3"))
    INITIAL_LOCK_MINUTES = int(os.getenv("INITIAL_LOCK_MINUTES", "15"))

    # Attempt ledger retention
    ATTEMPT_RETENTION_DAYS = int(os.getenv("ATTEMPT_RETENTION_DAYS", "30"))

    # Shared backing account used to mint sessions after a good PIN
    APP_USER_EMAIL = os.getenv("APP_USER_EMAIL", "app@internal.local")
    APP_ACCOUNT_SECRET = (
        os.getenv("APP_ACCOUNT_SECRET")
        or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        or SECRET_KEY
    )

    # "local" (tables in this database) or "supabase" (hosted GoTrue)
    IDENTITY_PROVIDER = os.getenv("IDENTITY_PROVIDER", "local")
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_TIMEOUT_SECONDS = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "10"))

    # Local token lifetimes
    ACCESS_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "3600"))
    REFRESH_TOKEN_TTL_SECONDS = int(os.getenv("REFRESH_TOKEN_TTL_SECONDS", str(30 * 24 * 60 * 60)))

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # CORS (the frontend is served from a different origin)
    CORS_ALLOW_ORIGIN = "*"
    CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"

    # Behind a proxy the socket address is the proxy's
    TRUST_FORWARDED_FOR = _env_bool("TRUST_FORWARDED_FOR", "true")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    APP_PIN = "4821"
    APP_ACCOUNT_SECRET = "s3cr3t-" + "x" * 40
    IDENTITY_PROVIDER = "local"
    BCRYPT_ROUNDS = 4
