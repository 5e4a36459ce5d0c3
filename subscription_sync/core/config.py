import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv


class Settings:
    """Centralised application configuration sourced from environment variables."""

    def __init__(self) -> None:
        load_dotenv()
        self.database_path = Path(os.getenv("DATABASE_PATH", "data/subscriptions.db")).resolve()
        self.stripe_secret_key = os.getenv("STRIPE_SECRET_KEY")
        self.stripe_webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
        self.stripe_webhook_tolerance = self._get_int("STRIPE_WEBHOOK_TOLERANCE", default=300)
        self.stripe_default_price_id = os.getenv("STRIPE_DEFAULT_PRICE_ID")
        self.stripe_price_ids = self._parse_price_ids(os.getenv("STRIPE_PRICE_IDS", ""))
        self.default_plan = os.getenv("DEFAULT_PLAN", "standard")
        self.auth_jwt_secret = self._get("AUTH_JWT_SECRET")
        self.auth_jwt_algorithm = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
        self.auth_jwt_audience = os.getenv("AUTH_JWT_AUDIENCE") or None
        self.payment_grace_seconds = self._get_int("PAYMENT_GRACE_SECONDS", default=3600)
        self.frontend_base_url = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000").rstrip("/")
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        if origins:
            self.cors_allow_origins = [item.strip() for item in origins.split(",") if item.strip()]
        else:
            self.cors_allow_origins = ["*"]

    @staticmethod
    def _get(key: str) -> str:
        value = os.getenv(key)
        if not value:
            raise RuntimeError(f"Missing required environment variable: {key}")
        return value

    @staticmethod
    def _get_int(key: str, default: Optional[int] = None) -> int:
        value = os.getenv(key)
        if value is None:
            if default is None:
                raise RuntimeError(f"Missing required environment variable: {key}")
            return default
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Environment variable {key} must be an integer") from exc

    @staticmethod
    def _parse_price_ids(raw: str) -> Dict[str, str]:
        """Parse ``plan=price_id`` pairs separated by commas."""
        prices: Dict[str, str] = {}
        for item in raw.split(","):
            plan, sep, price_id = item.strip().partition("=")
            if not item.strip():
                continue
            if not sep or not plan.strip() or not price_id.strip():
                raise RuntimeError(f"Invalid STRIPE_PRICE_IDS entry: {item.strip()!r}")
            prices[plan.strip()] = price_id.strip()
        return prices
