"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated (e.g. http://localhost:5173,https://law-network.onrender.com). Empty = default list in code.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # ADMIN (single shared key, header X-Owner-Key or Bearer)
    # ===========================================
    owner_key: str  # Required, no default
    admin_rate_limit_attempts: int = 10
    admin_rate_limit_window_seconds: int = 900  # 15 min

    # ===========================================
    # GRANTS & PLAN TIERS
    # ===========================================
    # Fallback duration when the plan tier cannot be resolved (1 day)
    default_grant_seconds: int = 86400
    plan_weekly_days: int = 7
    plan_monthly_days: int = 30
    # Older builds mapped yearly to 90 days; 365 is the current product rule
    plan_yearly_days: int = 365
    plan_currency: str = "₹"
    # Initial value of the auto-approval toggle (admin can flip it at runtime)
    auto_approve_default: bool = False
    grant_sweep_interval_minutes: int = 15
    grant_sweep_grace_seconds: int = 0

    # ===========================================
    # SUBMISSION INTAKE
    # ===========================================
    proof_upload_dir: str = "data/uploads/submissions"
    max_proof_size_mb: int = 20
    allowed_proof_extensions: str = ".jpg,.jpeg,.png,.webp,.pdf"
    submission_rate_limit: int = 5  # max submissions per window per subject
    submission_rate_window_seconds: int = 300
    idempotency_ttl: int = 300  # 5 minutes

    # ===========================================
    # APPROVAL ENGINE
    # ===========================================
    approval_retry_max_attempts: int = 3
    approval_retry_backoff_seconds: float = 0.5

    # ===========================================
    # LIVE UPDATES (SSE)
    # ===========================================
    # redis = fan-out across API workers via pub/sub; memory = single process only
    live_updates_backend: str = "redis"
    live_updates_channel_prefix: str = "access-events:"
    stream_heartbeat_seconds: float = 25.0
    stream_max_lifetime_seconds: int = 3600
    stream_queue_size: int = 100
    stream_retry_ms: int = 3000
    # Signed stream tokens (itsdangerous). Without a secret only ?email= is accepted.
    stream_token_secret: str | None = None
    stream_token_ttl_seconds: int = 7 * 86400
    stream_require_token: bool = False

    # ===========================================
    # CLIENT DEFAULTS (lawnet.client)
    # ===========================================
    client_poll_interval_seconds: float = 5.0
    client_request_timeout: float = 10.0
    client_negative_ttl_seconds: float = 5.0
    preview_seconds_video: int = 10
    preview_seconds_podcast: int = 10
    preview_seconds_pdf: int = 2

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("allowed_proof_extensions")
    @classmethod
    def parse_extensions(cls, v: str) -> str:
        """Validate extensions format."""
        return v.lower().strip()

    @property
    def allowed_extensions_set(self) -> set[str]:
        """Get allowed proof extensions as a set."""
        return {ext.strip() for ext in self.allowed_proof_extensions.split(",") if ext.strip()}

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @field_validator("owner_key")
    @classmethod
    def validate_owner_key(cls, v: str) -> str:
        """Reject empty and well-known keys."""
        if not v or not v.strip():
            raise ValueError("owner_key must not be empty")
        if v in ("changeme", "secret", "password", "admin", "owner"):
            raise ValueError("owner_key is too weak, please change it")
        return v

    @field_validator("stream_token_secret")
    @classmethod
    def validate_stream_secret(cls, v: str | None) -> str | None:
        """Ensure stream token secret is reasonably secure."""
        if v is not None and len(v) < 16:
            raise ValueError("stream_token_secret must be at least 16 characters")
        return v

    @field_validator("live_updates_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ("redis", "memory"):
            raise ValueError("live_updates_backend must be 'redis' or 'memory'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
