import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw is not None else default
    except ValueError:
        return default


@dataclass
class Settings:
    environment: str = "development"
    debug: bool = False
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_hours: int = 24
    jwt_oauth_expires_days: int = 30
    bcrypt_rounds: int = 12
    stripe_secret_key: Optional[str] = None
    payment_currency: str = "usd"
    resend_api_key: Optional[str] = None
    email_from: str = "Storefront <orders@storefront.local>"
    frontend_url: str = "http://localhost:5173"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    seed_demo_data: bool = False
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    mongo_connect_retries: int = 5
    mongo_retry_delay_seconds: float = 5.0

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "staging")

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            environment=os.getenv("ENVIRONMENT", "development").lower(),
            debug=_env_bool("DEBUG"),
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            jwt_secret=os.getenv("JWT_SECRET", cls.jwt_secret),
            jwt_expires_hours=_env_int("JWT_EXPIRES_HOURS", cls.jwt_expires_hours),
            jwt_oauth_expires_days=_env_int("JWT_OAUTH_EXPIRES_DAYS", cls.jwt_oauth_expires_days),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", cls.bcrypt_rounds),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            payment_currency=os.getenv("PAYMENT_CURRENCY", cls.payment_currency).lower(),
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            email_from=os.getenv("EMAIL_FROM", cls.email_from),
            frontend_url=os.getenv("FRONTEND_URL", cls.frontend_url).rstrip("/"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            seed_demo_data=_env_bool("SEED_DEMO_DATA"),
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            mongo_connect_retries=_env_int("MONGO_CONNECT_RETRIES", cls.mongo_connect_retries),
            mongo_retry_delay_seconds=_env_float("MONGO_RETRY_DELAY_SECONDS", cls.mongo_retry_delay_seconds),
        )
