from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in str(raw or "").split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "production"  # development | production
    APP_NAME: str = "natours-api"
    API_PREFIX: str = "/api"

    CORS_ORIGINS: str = "http://127.0.0.1:3000"

    DATABASE_URL: str = "sqlite+pysqlite:///./natours.db"
    REDIS_URL: str = ""

    RATE_LIMIT_MAX: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60 * 60
    RATE_LIMIT_MESSAGE: str = "Too many requests from this IP, please try again in an hour!"
    BODY_LIMIT_BYTES: int = 10 * 1024

    STATIC_DIR: str = "public"

    # Query parameters allowed to repeat (kept as a list instead of collapsing to the last value).
    HPP_WHITELIST: str = "duration,ratingsQuantity,ratingsAverage,maxGroupSize,difficulty,price"

    # External domains merged into the Content-Security-Policy at startup.
    CSP_SCRIPT_SRC_URLS: str = (
        "https://unpkg.com/,https://tile.openstreetmap.org,"
        "https://cdnjs.cloudflare.com/ajax/libs/axios/1.7.7/axios.min.js"
    )
    CSP_STYLE_SRC_URLS: str = "https://unpkg.com/,https://tile.openstreetmap.org,https://fonts.googleapis.com/"
    CSP_CONNECT_SRC_URLS: str = (
        "https://unpkg.com,https://tile.openstreetmap.org,"
        "https://cdnjs.cloudflare.com/ajax/libs/axios/1.7.7/axios.min.js"
    )
    CSP_WORKER_SRC_URLS: str = (
        "http://127.0.0.1:3000,"
        "https://cdnjs.cloudflare.com/ajax/libs/axios/1.7.7/axios.min.js,https://tile.openstreetmap.org"
    )
    CSP_FONT_SRC_URLS: str = "fonts.googleapis.com,fonts.gstatic.com"

    EMAIL_PROVIDER: str = "dummy"  # dummy | smtp
    EMAIL_FROM: str = "Natours <hello@natours.io>"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False

    @property
    def is_development(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        return _split_csv(self.CORS_ORIGINS)

    @property
    def hpp_whitelist(self) -> List[str]:
        return _split_csv(self.HPP_WHITELIST)

    @property
    def csp_script_src_urls(self) -> List[str]:
        return _split_csv(self.CSP_SCRIPT_SRC_URLS)

    @property
    def csp_style_src_urls(self) -> List[str]:
        return _split_csv(self.CSP_STYLE_SRC_URLS)

    @property
    def csp_connect_src_urls(self) -> List[str]:
        return _split_csv(self.CSP_CONNECT_SRC_URLS)

    @property
    def csp_worker_src_urls(self) -> List[str]:
        return _split_csv(self.CSP_WORKER_SRC_URLS)

    @property
    def csp_font_src_urls(self) -> List[str]:
        return _split_csv(self.CSP_FONT_SRC_URLS)

settings = Settings()
