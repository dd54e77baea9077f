"""Application settings and configuration.

This module defines all configuration options for the LinkGate service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BOT_USER_AGENTS = [
    "python-requests",
    "python-urllib",
    "aiohttp",
    "httpx",
    "curl/",
    "wget/",
    "go-http-client",
    "okhttp",
    "java/",
    "libwww-perl",
    "scrapy",
    "headlesschrome",
    "phantomjs",
    "puppeteer",
    "playwright",
    "selenium",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets are optional at load time so that the service can start and
    report a deployment defect; every verifier that needs a missing secret
    fails closed instead.
    """

    # Application metadata
    app_name: str = Field(default="LinkGate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    app_env: Literal["production", "development", "test"] = Field(
        default="production", alias="APP_ENV"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Signing secrets
    secret_key: str = Field(alias="SECRET_KEY")
    challenge_secret: str | None = Field(default=None, alias="CHALLENGE_SECRET")
    trap_secret: str | None = Field(default=None, alias="TRAP_SECRET")
    request_signing_secret: str | None = Field(default=None, alias="REQUEST_SIGNING_SECRET")

    # Database configuration
    database_url: str = Field(default="sqlite:///./linkgate.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Ephemeral store for rate limits, replay and dedupe windows
    store_backend: Literal["memory", "redis"] = Field(default="memory", alias="STORE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # JWT authentication settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Proof-of-work challenge policy (difficulty counts leading hex zeros)
    challenge_difficulty: int = Field(default=3, alias="CHALLENGE_DIFFICULTY")
    challenge_ttl_seconds: int = Field(default=300, alias="CHALLENGE_TTL_SECONDS")
    challenge_rate_limit: int = Field(default=10, alias="CHALLENGE_RATE_LIMIT")
    challenge_rate_window_seconds: int = Field(default=60, alias="CHALLENGE_RATE_WINDOW_SECONDS")
    challenge_clock_skew_seconds: int = Field(default=60, alias="CHALLENGE_CLOCK_SKEW_SECONDS")
    challenge_min_solve_ms: int = Field(default=300, alias="CHALLENGE_MIN_SOLVE_MS")
    challenge_max_counter: int = Field(default=5_000_000, alias="CHALLENGE_MAX_COUNTER")
    challenge_min_entropy_length: int = Field(default=10, alias="CHALLENGE_MIN_ENTROPY_LENGTH")
    challenge_bind_user_agent: bool = Field(default=True, alias="CHALLENGE_BIND_USER_AGENT")

    # Signed request bodies
    request_max_age_seconds: int = Field(default=30, alias="REQUEST_MAX_AGE_SECONDS")
    request_future_tolerance_seconds: int = Field(
        default=5, alias="REQUEST_FUTURE_TOLERANCE_SECONDS"
    )

    # Redirect session policy
    session_max_uses: int = Field(default=3, alias="SESSION_MAX_USES")
    session_ttl_seconds: int = Field(default=360, alias="SESSION_TTL_SECONDS")
    session_callback_min_seconds: int = Field(default=75, alias="SESSION_CALLBACK_MIN_SECONDS")
    session_complete_min_seconds: int = Field(default=5, alias="SESSION_COMPLETE_MIN_SECONDS")
    session_cookie_name: str = Field(default="lg_sid", alias="SESSION_COOKIE_NAME")

    # Replay windows
    replay_token_window_seconds: int = Field(default=300, alias="REPLAY_TOKEN_WINDOW_SECONDS")
    replay_request_window_seconds: int = Field(default=60, alias="REPLAY_REQUEST_WINDOW_SECONDS")

    # Suspicious IP reputation
    suspicious_ip_threshold: int = Field(default=5, alias="SUSPICIOUS_IP_THRESHOLD")
    suspicious_ip_window_seconds: int = Field(default=3600, alias="SUSPICIOUS_IP_WINDOW_SECONDS")
    suspicious_ip_retention_seconds: int = Field(
        default=86_400, alias="SUSPICIOUS_IP_RETENTION_SECONDS"
    )

    # Resource trap and honeypot
    security_profile: Literal["standard", "strict"] = Field(
        default="standard", alias="SECURITY_PROFILE"
    )
    trap_cookie_name: str = Field(default="lg_trap_proof", alias="TRAP_COOKIE_NAME")
    bot_flag_cookie_name: str = Field(default="lg_bot_flag", alias="BOT_FLAG_COOKIE_NAME")

    # CAPTCHA verification
    captcha_mode: Literal["recaptcha", "turnstile", "self_hosted"] = Field(
        default="turnstile", alias="CAPTCHA_MODE"
    )
    recaptcha_secret_key: str | None = Field(default=None, alias="RECAPTCHA_SECRET_KEY")
    recaptcha_verify_url: str = Field(
        default="https://www.google.com/recaptcha/api/siteverify",
        alias="RECAPTCHA_VERIFY_URL",
    )
    recaptcha_min_score: float = Field(default=0.5, alias="RECAPTCHA_MIN_SCORE")
    turnstile_secret_key: str | None = Field(default=None, alias="TURNSTILE_SECRET_KEY")
    turnstile_verify_url: str = Field(
        default="https://challenges.cloudflare.com/turnstile/v0/siteverify",
        alias="TURNSTILE_VERIFY_URL",
    )
    self_hosted_captcha_secret: str | None = Field(
        default=None, alias="SELF_HOSTED_CAPTCHA_SECRET"
    )
    self_hosted_captcha_url: str | None = Field(default=None, alias="SELF_HOSTED_CAPTCHA_URL")
    self_hosted_token_max_age_seconds: int = Field(
        default=120, alias="SELF_HOSTED_TOKEN_MAX_AGE_SECONDS"
    )

    # Upstream shortener providers
    upstream_timeout_seconds: float = Field(default=8.0, alias="UPSTREAM_TIMEOUT_SECONDS")
    blocked_target_domains: list[str] = Field(
        default=[
            "linkshortify.com",
            "arolinks.com",
            "vplink.in",
            "inshorturl.com",
            "bit.ly",
            "tinyurl.com",
        ],
        alias="BLOCKED_TARGET_DOMAINS",
    )

    # Bot shield middleware
    protected_path_prefixes: list[str] = Field(default=["/api/"], alias="PROTECTED_PATH_PREFIXES")
    bot_user_agents: list[str] = Field(default=DEFAULT_BOT_USER_AGENTS, alias="BOT_USER_AGENTS")

    # Periodic maintenance
    maintenance_enabled: bool = Field(default=True, alias="MAINTENANCE_ENABLED")
    maintenance_interval_seconds: float = Field(
        default=60.0, alias="MAINTENANCE_INTERVAL_SECONDS"
    )

    # CORS configuration for the web frontend
    cors_origins: list[str] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["Content-Type", "Authorization", "X-Client-Proof"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def effective_trap_secret(self) -> str | None:
        """Return the secret used to sign resource-trap cookies."""
        return self.trap_secret or self.challenge_secret

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
