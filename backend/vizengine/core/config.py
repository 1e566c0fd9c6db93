"""
Centralized configuration management.

All engine and API configuration is loaded and validated here.
"""
import os
import logging
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Application settings with validation."""

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="'text' or 'json'")

    # API limits
    rate_limit_per_minute: int = Field(default=60, ge=1, le=10000, description="Suggest requests per minute per IP")
    request_timeout_seconds: int = Field(default=30, ge=1, le=3600, description="Request timeout in seconds")
    max_dataset_rows: int = Field(default=100000, ge=100, le=5000000, description="Maximum rows accepted per request")

    # CORS
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # Feedback learning
    learning_interval_seconds: float = Field(default=300, gt=0, le=86400, description="Seconds between learning runs")
    auto_learning_enabled: bool = Field(default=True, description="Run the learning job on a timer")
    min_pattern_support: int = Field(default=2, ge=2, le=1000, description="Corrections needed before a pattern is mined")
    min_rule_confidence: float = Field(default=0.6, ge=0.0, le=1.0, description="Minimum pattern confidence to become a rule")

    # Hierarchy detection
    hierarchy_min_confidence: float = Field(default=0.9, ge=0.5, le=1.0, description="Single-parent fraction required for a relation")
    hierarchy_max_cardinality: int = Field(default=50, ge=2, le=10000, description="Max distinct values for a hierarchy level")
    tree_max_depth: int = Field(default=3, ge=1, le=20, description="Default depth cap for hierarchy trees")
    tree_max_breadth: int = Field(default=10, ge=1, le=1000, description="Default sibling cap for hierarchy trees")

    # Rule / feedback storage
    storage_backend: str = Field(default="memory", description="'memory' or 'redis'")
    redis_url: Optional[str] = Field(default=None, description="Redis URL when storage_backend is 'redis'")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @field_validator('log_format', 'storage_backend')
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in ("memory", "redis"):
            raise ValueError(f"STORAGE_BACKEND must be 'memory' or 'redis', got '{v}'")
        return v

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
            rate_limit_per_minute=int(os.getenv("RATE_LIMIT_PER_MINUTE", "60")),
            request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
            max_dataset_rows=int(os.getenv("MAX_DATASET_ROWS", "100000")),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"),
            learning_interval_seconds=float(os.getenv("LEARNING_INTERVAL_SECONDS", "300")),
            auto_learning_enabled=os.getenv("AUTO_LEARNING_ENABLED", "true").lower() in ("1", "true", "yes"),
            min_pattern_support=int(os.getenv("MIN_PATTERN_SUPPORT", "2")),
            min_rule_confidence=float(os.getenv("MIN_RULE_CONFIDENCE", "0.6")),
            hierarchy_min_confidence=float(os.getenv("HIERARCHY_MIN_CONFIDENCE", "0.9")),
            hierarchy_max_cardinality=int(os.getenv("HIERARCHY_MAX_CARDINALITY", "50")),
            tree_max_depth=int(os.getenv("TREE_MAX_DEPTH", "3")),
            tree_max_breadth=int(os.getenv("TREE_MAX_BREADTH", "10")),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory"),
            redis_url=os.getenv("REDIS_URL") or None,
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info("Configuration loaded and validated successfully")
    return _settings


def reload_settings() -> Settings:
    """Reload settings (useful for testing)."""
    global _settings
    _settings = None
    return get_settings()
