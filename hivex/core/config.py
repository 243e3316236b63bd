from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Hivex Deals API"
    APP_VERSION: str = "0.1.0"

    DATABASE_URL: str

    JWT_SECRET: str
    JWT_ACCESS_MINUTES: int = 30
    JWT_REFRESH_DAYS: int = 14
    JWT_ALG: str = "HS256"

    # Coupon codes: 4 alphanumeric chars is ~14.7M combinations, fine for a
    # single small deployment. Raise the length before running many venues.
    COUPON_CODE_LENGTH: int = 4
    COUPON_CODE_CHARSET: str = "alphanumeric"
    COUPON_CODE_MAX_RETRIES: int = 20

    MEMBER_COUPON_CAP: int = 6
    MAX_COUPONS_PER_DEAL: int = 500
    CLAIM_MAX_ATTEMPTS: int = 5
    DEFAULT_DEAL_DAYS: int = 7
    COUPON_POINTS: int = 10

    QR_ENABLED: bool = True
    QR_STORAGE_DIR: str = "media/qr"

    SMTP_ENABLED: bool = False
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 1025
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = False
    SMTP_FROM_EMAIL: str = "no-reply@hivex.local"

    PASSWORD_RESET_MINUTES: int = 60

    LOG_JSON: bool = False
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


settings = Settings()
