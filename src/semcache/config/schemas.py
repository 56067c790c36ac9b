"""
semcache - Configuration Schemas

Typed configuration models using Pydantic for validation and type safety.
All configuration is defined here (or imported here from its owning
module) and validated at startup.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Section configs are owned by their modules; imported here so the root
# model stays the single source of truth for the runtime.
from ..providers.base import EmbeddingProviderConfig as EmbeddingProviderConfig
from ..semantic_cache.config import SemanticCacheConfig as SemanticCacheConfig


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ObservabilityConfig(BaseModel):
    """Observability and monitoring configuration."""

    enable_metrics: bool = Field(default=True, description="Enable metrics collection")
    enable_tracing: bool = Field(default=False, description="Enable span tracing")
    json_logs: bool = Field(default=True, description="Emit logs as JSON lines")
    metrics_db_path: str = Field(default="./data/metrics.db", description="SQLite file for persisted metrics")


class AppConfig(BaseModel):
    """Root configuration for semcache."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    semantic_cache: SemanticCacheConfig = Field(default_factory=SemanticCacheConfig)
    embedding: EmbeddingProviderConfig = Field(default_factory=EmbeddingProviderConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
