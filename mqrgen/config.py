import os
from dotenv import load_dotenv

load_dotenv()


def require_settings(config, keys) -> None:
    """Fail fast at startup when a mandatory setting is empty."""
    missing = [key for key in keys if not config.get(key)]
    if missing:
        raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///mqrgen.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BASE_URL = os.getenv("BASE_URL", "http://127.0.0.1:5000")

    # "sql" or "memory"; chosen once at startup
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "sql")
    CONFLICT_RETRIES = int(os.getenv("CONFLICT_RETRIES", 8))

    # HS256 tokens minted by the identity provider
    IDENTITY_SECRET_KEY = os.getenv("IDENTITY_SECRET_KEY")
    IDENTITY_ISSUER = os.getenv("IDENTITY_ISSUER")

    # "razorpay" or "mock"
    PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "mock")
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
    GATEWAY_TIMEOUT = int(os.getenv("GATEWAY_TIMEOUT", 10))

    API_CALLS_PER_DAY = int(os.getenv("API_CALLS_PER_DAY", 100))
    API_STATS_CALLS_PER_DAY = int(os.getenv("API_STATS_CALLS_PER_DAY", 30))
    API_BULK_CALLS_PER_DAY = int(os.getenv("API_BULK_CALLS_PER_DAY", 10))

    # Defaults to <static folder>/qrcodes
    QR_OUTPUT_DIR = os.getenv("QR_OUTPUT_DIR")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    REQUIRED_SETTINGS = ("SECRET_KEY", "IDENTITY_SECRET_KEY")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STORAGE_BACKEND = "memory"
    IDENTITY_SECRET_KEY = "test-identity-secret"
    IDENTITY_ISSUER = "https://identity.test"
    PAYMENT_GATEWAY = "mock"
    RAZORPAY_KEY_SECRET = "test-key-secret"
    RAZORPAY_WEBHOOK_SECRET = "test-webhook-secret"
    LOG_LEVEL = "DEBUG"
