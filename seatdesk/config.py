import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Payment gateway (Stripe) ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    # Shared secret for the client-side verification assertion:
    # signature = HMAC-SHA256(order_id + "|" + payment_id)
    PAYMENT_SIGNING_SECRET = os.environ.get("PAYMENT_SIGNING_SECRET")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "inr")

    # --- Fee structure (whole currency units) ---
    FEES = {
        "monthly": 600,
        "quarterly": 1700,
        "half_yearly": 3200,
        "yearly": 6000,
    }

    # --- Facility ---
    SEAT_COUNT = int(os.environ.get("SEAT_COUNT", 60))
    FACILITY_NAME = os.environ.get("FACILITY_NAME", "Shivika Digital Library")

    # --- Identity provider ---
    # The upstream identity proxy puts the member's stable id in this header.
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-Member-Id")

    # --- Best-effort collaborators ---
    REALTIME_HUB_URL = os.environ.get("REALTIME_HUB_URL")    # fan-out endpoint
    SHEETS_MIRROR_URL = os.environ.get("SHEETS_MIRROR_URL")  # Apps Script web app
    COLLABORATOR_TIMEOUT = float(os.environ.get("COLLABORATOR_TIMEOUT", 5))

    # --- Lifecycle sweeper ---
    STALE_PENDING_DAYS = int(os.environ.get("STALE_PENDING_DAYS", 30))
    SWEEP_TICK_SECONDS = int(os.environ.get("SWEEP_TICK_SECONDS", 60))
    SWEEP_EXPIRY_SECONDS = int(os.environ.get("SWEEP_EXPIRY_SECONDS", 3600))
    SWEEP_OVERDUE_SECONDS = int(os.environ.get("SWEEP_OVERDUE_SECONDS", 86400))
    SWEEP_MIRROR_SECONDS = int(os.environ.get("SWEEP_MIRROR_SECONDS", 900))
    SWEEP_PRUNE_SECONDS = int(os.environ.get("SWEEP_PRUNE_SECONDS", 604800))
    SWEEPER_AUTOSTART = _env_flag("SWEEPER_AUTOSTART")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- JSON ---
    JSON_SORT_KEYS = False

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_PUBLISHABLE_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "PAYMENT_SIGNING_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake gateway keys."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_PUBLISHABLE_KEY = "pk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    PAYMENT_SIGNING_SECRET = "signing_secret_test"
    PAYMENT_CURRENCY = "inr"
    SEAT_COUNT = 60
    STALE_PENDING_DAYS = 30
    REALTIME_HUB_URL = None
    SHEETS_MIRROR_URL = None
    SWEEPER_AUTOSTART = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
