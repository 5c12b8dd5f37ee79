"""
Configuration module for the chat gateway.

This module uses Pydantic Settings to load and validate environment variables
for Cloudflare Access token verification, the Workers AI inference platform,
static asset serving and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import GatewayOptions


DEFAULT_MODEL_ID = "@cf/meta/llama-3.3-70b-instruct-fp8-fast"

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, friendly assistant. Provide concise and accurate responses."
)

KEY_SET_PATH = "/cdn-cgi/access/certs"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Read once at startup and treated as immutable afterwards.
    """

    # =========================================================================
    # Cloudflare Access (token verification)
    # =========================================================================

    TEAM_DOMAIN: str = Field(
        ...,
        description="Access team domain, also the expected token issuer "
        "(e.g., https://your-team.cloudflareaccess.com)",
        min_length=1,
    )

    POLICY_AUD: Optional[str] = Field(
        None,
        description="Expected audience tag of the Access policy protecting this service",
    )

    PROPAGATE_IDENTITY: bool = Field(
        default=True,
        description="Prepend the authenticated identity to the model's system context",
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the Access key set in seconds",
        ge=0,
        le=86400,
    )

    # =========================================================================
    # Workers AI (inference)
    # =========================================================================

    CF_ACCOUNT_ID: str = Field(
        ...,
        description="Cloudflare account that owns the Workers AI binding",
        min_length=1,
    )

    CF_API_TOKEN: str = Field(
        ...,
        description="API token with Workers AI read/run permission",
        min_length=1,
    )

    MODEL_ID: str = Field(
        default=DEFAULT_MODEL_ID,
        description="Workers AI model identifier",
    )

    SYSTEM_PROMPT: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt added when the caller supplies none",
    )

    MAX_TOKENS: int = Field(
        default=1024,
        description="Maximum number of output tokens per completion",
        ge=1,
    )

    INFERENCE_TIMEOUT_SECONDS: Optional[float] = Field(
        None,
        description="Client timeout for inference calls (unset: no timeout)",
        gt=0,
    )

    # =========================================================================
    # AI Gateway (optional)
    # =========================================================================

    AI_GATEWAY_ID: Optional[str] = Field(
        None,
        description="AI Gateway id; inference goes direct when unset",
    )

    AI_GATEWAY_SKIP_CACHE: bool = Field(
        default=False,
        description="Bypass the gateway cache",
    )

    AI_GATEWAY_CACHE_TTL: Optional[int] = Field(
        default=3600,
        description="Gateway cache time-to-live in seconds",
        ge=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    ASSETS_DIR: str = Field(
        default="public",
        description="Directory holding the frontend served for non-API paths",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=8787, description="Port to bind the server", ge=1, le=65535)

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def key_set_url(self) -> str:
        """URL of the Access public key set for TEAM_DOMAIN."""
        return f"{self.TEAM_DOMAIN}{KEY_SET_PATH}"

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def gateway(self) -> Optional[GatewayOptions]:
        """Gateway routing options, or None when inference goes direct."""
        if not self.AI_GATEWAY_ID:
            return None
        return GatewayOptions(
            id=self.AI_GATEWAY_ID,
            skip_cache=self.AI_GATEWAY_SKIP_CACHE,
            cache_ttl=self.AI_GATEWAY_CACHE_TTL,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("TEAM_DOMAIN")
    @classmethod
    def validate_team_domain(cls, v: str) -> str:
        """
        Validate that TEAM_DOMAIN is an absolute http(s) URL.

        The value doubles as the expected ``iss`` claim, so a trailing slash
        is removed to match what Access puts in its tokens.

        Raises:
            ValueError: If the scheme is missing
        """
        v = v.strip().rstrip("/")
        if not v.startswith(("https://", "http://")):
            raise ValueError(
                f"Invalid TEAM_DOMAIN: '{v}'. "
                "Expected format: 'https://your-team.cloudflareaccess.com'"
            )
        return v

    @field_validator("POLICY_AUD", "AI_GATEWAY_ID")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip()
        return v or None

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        v = v.upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so the environment is read only once during the application
    lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> Dict[str, Any]:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup so operators see misconfiguration in
    the logs before the first request fails on it.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    if not settings.POLICY_AUD:
        warnings.append(
            "POLICY_AUD is not set; every /api/chat request will be rejected with 403"
        )

    if not settings.PROPAGATE_IDENTITY:
        warnings.append("PROPAGATE_IDENTITY is disabled; the model will not see caller identity")

    if settings.TEAM_DOMAIN.startswith("http://"):
        warnings.append("TEAM_DOMAIN uses plain http; the key set will be fetched unencrypted")

    if settings.AI_GATEWAY_SKIP_CACHE and settings.AI_GATEWAY_ID is None:
        warnings.append("AI_GATEWAY_SKIP_CACHE has no effect without AI_GATEWAY_ID")

    if not settings.SYSTEM_PROMPT.strip():
        errors.append("SYSTEM_PROMPT is empty")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "model_id": settings.MODEL_ID,
        "gateway_id": settings.AI_GATEWAY_ID,
    }
