# python
# app/core/config.py
"""Configuration settings for the Document Chat API.

Uses Pydantic BaseSettings for environment variable management.
"""
from enum import Enum
from urllib.parse import urlparse

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class PromptProfileEnum(str, Enum):
    documents = "documents"
    marketing = "marketing"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Document Chat API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    db_pool_size: int = Field(default=20, description="Database connection pool size")

    # Test database URL
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Authentication (Clerk) =====
    clerk_secret_key: str | None = Field(default=None, description="Clerk secret key")
    clerk_api_url: AnyHttpUrl = Field(default="https://api.clerk.com", description="Clerk API URL")

    # ===== AI Service (Gemini) =====
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-1.5-flash", description="Gemini model to use")
    gemini_embedding_model: str = Field(
        default="models/embedding-001", description="Gemini embedding model for the vector index"
    )
    gemini_max_tokens: int = Field(default=1000, description="Maximum tokens for Gemini")
    gemini_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    ai_request_timeout: int = Field(default=30, description="AI request timeout in seconds")
    ai_max_retry_attempts: int = Field(default=3, description="Retries for rate-limited AI calls")
    ai_retry_min_wait: float = Field(default=1.0, description="Minimum retry backoff in seconds")
    ai_retry_max_wait: float = Field(default=30.0, description="Maximum retry backoff in seconds")

    # ===== Vector Index (Chroma) =====
    chroma_url: AnyHttpUrl = Field(default="http://localhost:8001", description="Chroma server URL")
    chroma_collection: str = Field(default="documents", description="Chroma collection name")
    retrieval_top_k: int = Field(default=4, ge=1, le=50, description="Chunks retrieved per turn")

    # ===== Chat Pipeline =====
    chat_history_window: int = Field(
        default=5,
        ge=0,
        validation_alias=AliasChoices("chat_history_window", "LAST_K_CHAT_HISTORY"),
        description="Number of prior messages used as turn context",
    )
    chat_title_length: int = Field(default=100, ge=1, le=255, description="Chat title length")
    stream_end_sentinel: str = Field(
        default="\x00__END__END__\x00", min_length=1, description="End-of-stream marker"
    )
    prompt_profile: PromptProfileEnum = Field(
        default=PromptProfileEnum.documents, description="Named answer prompt template"
    )

    # ===== Document Uploads =====
    max_upload_size: int = Field(default=10485760, description="Maximum upload size in bytes (10MB)")
    chunk_size: int = Field(default=1000, ge=100, description="Characters per indexed chunk")
    chunk_overlap: int = Field(default=200, ge=0, description="Characters shared by adjacent chunks")

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.json, description="Log format")

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_ai_enabled(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def chroma_host(self) -> str:
        return urlparse(str(self.chroma_url)).hostname or "localhost"

    @property
    def chroma_port(self) -> int:
        parsed = urlparse(str(self.chroma_url))
        if parsed.port:
            return parsed.port
        return 443 if parsed.scheme == "https" else 80

    @property
    def chroma_ssl(self) -> bool:
        return urlparse(str(self.chroma_url)).scheme == "https"

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
            if lv in ["test"]:
                return "testing"
            return lv
        return v

    @field_validator("max_upload_size")
    @classmethod
    def validate_upload_size(cls, v):
        if v > 100 * 1024 * 1024:
            raise ValueError("Maximum upload size cannot exceed 100MB")
        return v

    @model_validator(mode="after")
    def validate_chunking(self):
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if not settings.clerk_secret_key:
            errors.append("CLERK_SECRET_KEY is required")
        if settings.is_production and not settings.gemini_api_key:
            errors.append("GEMINI_API_KEY is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "ai_enabled": settings.has_ai_enabled,
            "vector_index": str(settings.chroma_url),
            "prompt_profile": settings.prompt_profile.value,
            "history_window": settings.chat_history_window,
            "environment": settings.environment,
        }


def get_config_summary() -> dict:
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "debug": settings.debug,
        "features": ConfigValidator.get_feature_status(),
        "database_configured": bool(settings.database_url),
        "auth_configured": bool(settings.clerk_secret_key),
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
    "PromptProfileEnum",
]
