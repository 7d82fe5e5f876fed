from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_version: str = "2026-10-18.v1"
    database_url: str = "sqlite:///./handoff.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Identity ----
    auth_mode: str = "dev"  # dev|jwt
    dev_auto_provision: bool = True
    dev_header_user_email: str = "X-User-Email"

    jwt_secret: str = "dev-change-me"
    jwt_algorithm: str = "HS256"
    jwt_cookie_name: str = "handoff_jwt"

    # ---- Access codes ----
    access_code_length: int = 8
    # no I, O, 0, 1 so codes survive being read aloud
    access_code_alphabet: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    access_code_ttl_days: int = 7
    access_code_max_attempts: int = 3
    access_code_retention_days: int = 30

    # ---- Payment gateway ----
    stripe_api_key: str | None = None
    stripe_base_url: str = "https://api.stripe.com/v1"
    payment_gateway_timeout_seconds: float = 10.0

    # ---- Celery ----
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    subscription_retry_base_seconds: int = 30
    subscription_retry_max_seconds: int = 900

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if self.jwt_secret == "dev-change-me":
                raise ValueError("SECURITY: jwt_secret must be set in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")

        if self.access_code_max_attempts < 1:
            raise ValueError("access_code_max_attempts must be >= 1")


settings = Settings()
