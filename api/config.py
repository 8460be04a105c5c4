"""
Environment-aware configuration.
Values come from the environment (a .env file is read if present); the
application factory turns the auth-related keys into an AuthSettings object.
"""
import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()  # Read .env if present


def _seconds(name: str, default: int) -> timedelta:
    return timedelta(seconds=int(os.getenv(name, str(default))))


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///campground-auth.db")
    SQL_ECHO = _flag("SQL_ECHO")

    # JWT access tokens
    JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "campground-auth")
    ACCESS_TOKEN_EXPIRES = _seconds("ACCESS_TOKEN_EXPIRES_SECONDS", 15 * 60)
    TWO_FACTOR_TOKEN_EXPIRES = _seconds("TWO_FACTOR_TOKEN_EXPIRES_SECONDS", 10 * 60)
    REFRESH_TOKEN_EXPIRES = _seconds("REFRESH_TOKEN_EXPIRES_SECONDS", 7 * 24 * 3600)

    # Mailed single-use links
    EMAIL_VERIFICATION_EXPIRES = _seconds("EMAIL_VERIFICATION_EXPIRES_SECONDS", 24 * 3600)
    PASSWORD_RESET_EXPIRES = _seconds("PASSWORD_RESET_EXPIRES_SECONDS", 3600)
    CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")

    # Password hashing (argon2) and lockout
    ARGON2_TIME_COST = int(os.getenv("ARGON2_TIME_COST", "3"))
    ARGON2_MEMORY_COST = int(os.getenv("ARGON2_MEMORY_COST", "65536"))
    ARGON2_PARALLELISM = int(os.getenv("ARGON2_PARALLELISM", "4"))
    MAX_FAILED_LOGINS = int(os.getenv("MAX_FAILED_LOGINS", "5"))
    LOCKOUT_DURATION = _seconds("LOCKOUT_DURATION_SECONDS", 30 * 60)

    # Two-factor
    TWO_FACTOR_ISSUER = os.getenv("TWO_FACTOR_ISSUER", "MyanCamp")
    BACKUP_CODE_COUNT = int(os.getenv("BACKUP_CODE_COUNT", "10"))

    # Outbound mail: "log" writes messages to the log, "smtp" sends them
    MAIL_BACKEND = os.getenv("MAIL_BACKEND", "log")
    MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@myancamp.local")
    SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS = _flag("SMTP_USE_TLS", "true")

    # OAuth providers (a provider is enabled when both values are set)
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    FACEBOOK_APP_ID = os.getenv("FACEBOOK_APP_ID")
    FACEBOOK_APP_SECRET = os.getenv("FACEBOOK_APP_SECRET")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True


class TestingConfig(BaseConfig):
    TESTING = True
    DATABASE_URL = "sqlite://"
    JWT_SECRET = "test-secret-with-at-least-32-bytes!!"
    MAIL_BACKEND = "log"
    # cheap hashing keeps the suite fast
    ARGON2_TIME_COST = 1
    ARGON2_MEMORY_COST = 8
    ARGON2_PARALLELISM = 1


class ProductionConfig(BaseConfig):
    DEBUG = False


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/test/prod).
    """
    if name:
        name = name.lower()
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig
