# core/config.py
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ────────────────────────────────
    # 1. APP & ENVIRONMENT
    # ────────────────────────────────
    PROJECT_NAME: str = "MIPROJET"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)
    BACKEND_URL: str = "http://127.0.0.1:8000"
    TRUSTED_PROXIES: List[str] = Field(
        default=[],
        description="Peer addresses whose X-Forwarded-For / X-Forwarded-Proto are honoured"
    )

    # ────────────────────────────────
    # 2. FRONTEND
    # ────────────────────────────────
    FRONTEND_URL: str = Field(
        default="https://miprojet.com",
        description="Base URL for the web client (payment callback page lives here)"
    )
    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:8080",
        "https://miprojet.com",
    ]

    # ────────────────────────────────
    # 3. FIREBASE / FIRESTORE
    # ────────────────────────────────
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = Field(
        default=None,
        description="Path to Firebase service account JSON"
    )
    MIPROJET_FIREBASE_KEY: Optional[str] = Field(
        default=None,
        description="Base64-encoded Firebase service account JSON"
    )

    # ────────────────────────────────
    # 4. PAYMENTS (shared)
    # ────────────────────────────────
    PAYMENT_REFERENCE_PREFIX: str = "MIPROJET"
    DEFAULT_CURRENCY: str = "XOF"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    PAYMENT_UPDATE_MAX_ATTEMPTS: int = 5

    # ────────────────────────────────
    # 5. MONEY FUSION
    # ────────────────────────────────
    MONEY_FUSION_API_URL: str = "https://api.moneyfusion.net/v1"
    MONEY_FUSION_API_KEY: Optional[str] = None
    MONEY_FUSION_MERCHANT_ID: Optional[str] = None
    MONEY_FUSION_WEBHOOK_SECRET: Optional[str] = Field(
        default=None,
        description="HMAC-SHA256 secret; webhooks are rejected while unset"
    )

    # ────────────────────────────────
    # 6. FEDAPAY
    # ────────────────────────────────
    FEDAPAY_API_URL: str = "https://api.fedapay.com/v1"
    FEDAPAY_SECRET_KEY: Optional[str] = None
    FEDAPAY_WEBHOOK_SECRET: Optional[str] = None
    FEDAPAY_ENFORCE_SIGNATURE: bool = Field(
        default=False,
        description="Reject unsigned or mismatched FedaPay webhooks instead of logging them"
    )
    FEDAPAY_COUNTRY: str = "CI"

    class Config:
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"


# Create singleton
settings = Settings()
