"""
CalorieSnap Backend: Application Configuration
===============================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads environment variables (or a .env file),
       validates types and ranges, and exposes a singleton `settings` object.
Who:   Imported by the app factory, which hands it to every service.
When:  Loaded once at module import time; checked again during startup.
"""

from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every value has a development default. Production deployments must set
    N8N_WEBHOOK_URL, and S3_BUCKET when STORAGE_MODE=s3.
    """

    # ── Analysis Webhook ──────────────────────────────────────────────────
    # What: n8n webhook that receives the meal image and answers with JSON
    # The webhook must be configured to "Respond When Workflow Finishes".
    webhook_url: str = Field(
        default="",
        validation_alias="N8N_WEBHOOK_URL",
        description="Endpoint of the external analysis workflow",
    )

    # Upper bound for a single webhook round trip, in seconds
    webhook_timeout: float = Field(default=30.0, gt=0, le=300)

    # Upper bound for fetching a remote image before analysis, in seconds
    image_fetch_timeout: float = Field(default=30.0, gt=0, le=300)

    # ── Upload Storage ────────────────────────────────────────────────────
    # local: files under storage_root, served back at /uploads/<key>
    # s3:    objects in s3_bucket, uploaded by clients through presigned URLs
    storage_mode: Literal["local", "s3"] = Field(default="local")

    storage_root: str = Field(default="./uploads")

    # 10 MiB = 10 * 1024 * 1024
    max_file_size: int = Field(default=10_485_760, ge=1_048_576, le=52_428_800)

    # Base used to build image locators. When unset, the base URL of the
    # incoming request is used instead.
    public_base_url: Optional[str] = Field(default=None)

    s3_bucket: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_endpoint_url: Optional[str] = Field(default=None)
    s3_upload_url_expiry: int = Field(default=900, ge=60, le=604_800)

    # ── CORS ──────────────────────────────────────────────────────────────
    # Comma-separated list of origins
    cors_origins: str = Field(default="http://localhost:3000,http://localhost:5173")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else v

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # Per-IP sliding window, applied to /api/ routes only
    rate_limit_requests: int = Field(default=100, ge=10, le=10000)
    rate_limit_window: int = Field(default=3600, ge=60, le=86400)  # seconds

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore",
    }

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that settings the analysis flow depends on are present.
        When:  Called during app startup (lifespan).
        Raises ValueError listing every problem found.
        """
        errors = []
        if not self.webhook_url:
            errors.append(
                "N8N_WEBHOOK_URL is not set. Point it at the production webhook "
                "of the meal analysis workflow."
            )
        if self.storage_mode == "s3" and not self.s3_bucket:
            errors.append("STORAGE_MODE is 's3' but S3_BUCKET is not set.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance used when the app factory is not given explicit settings
settings = Settings()
