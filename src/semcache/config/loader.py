"""
semcache - Configuration Loader

Loads and validates configuration from environment variables and .env files.
Provides a singleton configuration instance for the runtime.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import AppConfig

logger = logging.getLogger(__name__)

_config_instance: AppConfig | None = None


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_optional(name: str, cast: Any) -> Any:
    """Return cast(value) when the variable is set, else None so the schema default applies."""
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return cast(value)


def _drop_unset(section: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in section.items() if value is not None}


def load_config(
    env_file: str | None = None,
    reload: bool = False,
) -> AppConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in working directory)
        reload: Force reload even if config already loaded

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        config_dict = _build_config_dict()
        _config_instance = AppConfig(**config_dict)
        logger.info(
            f"Configuration loaded successfully (environment: {_config_instance.environment})",
            extra={
                "environment": _config_instance.environment,
                "embedding_model": _config_instance.embedding.model,
            },
        )
        return _config_instance
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors()},
            exc_info=True,
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e
    except ValueError as e:
        # Raised by int()/float() on malformed environment values
        logger.error(
            f"Unexpected error loading configuration: {e}",
            extra={"error": str(e)},
            exc_info=True,
        )
        raise ConfigurationError(
            f"Failed to load configuration: {e}",
            details={"error": str(e)},
        ) from e


def _build_config_dict() -> dict[str, Any]:
    """Build the raw configuration mapping from environment variables."""
    retryable_codes = os.getenv("EMBEDDING_RETRYABLE_STATUS_CODES")

    return {
        "environment": os.getenv("ENVIRONMENT", "development"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "semantic_cache": _drop_unset(
            {
                "enabled": _env_bool("SEMANTIC_CACHE_ENABLED", "true"),
                "minimum_similarity_threshold": _env_optional("SEMANTIC_CACHE_SIMILARITY_THRESHOLD", float),
                "threshold_floor": _env_optional("SEMANTIC_CACHE_THRESHOLD_FLOOR", float),
                "threshold_ceiling": _env_optional("SEMANTIC_CACHE_THRESHOLD_CEILING", float),
                "adaptation_min_queries": _env_optional("SEMANTIC_CACHE_ADAPTATION_MIN_QUERIES", int),
                "max_cache_entries": _env_optional("SEMANTIC_CACHE_MAX_ENTRIES", int),
                "default_ttl_seconds": _env_optional("SEMANTIC_CACHE_TTL_SECONDS", int),
                "embedding_dimension": _env_optional("SEMANTIC_CACHE_EMBEDDING_DIMENSION", int),
                "prune_on_insert": _env_bool("SEMANTIC_CACHE_PRUNE_ON_INSERT", "true"),
                "optimization_interval_seconds": _env_optional("SEMANTIC_CACHE_OPTIMIZATION_INTERVAL", int),
            }
        ),
        "embedding": _drop_unset(
            {
                "api_key": os.getenv("EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY"),
                "base_url": os.getenv("EMBEDDING_BASE_URL"),
                "model": os.getenv("EMBEDDING_MODEL"),
                "timeout": _env_optional("EMBEDDING_TIMEOUT", float),
                "max_retries": _env_optional("EMBEDDING_MAX_RETRIES", int),
                "retry_base_delay": _env_optional("EMBEDDING_RETRY_BASE_DELAY", float),
                "max_batch_size": _env_optional("EMBEDDING_MAX_BATCH_SIZE", int),
                "batch_delay": _env_optional("EMBEDDING_BATCH_DELAY", float),
                "cache_ttl_seconds": _env_optional("EMBEDDING_CACHE_TTL_SECONDS", int),
                "cache_max_size": _env_optional("EMBEDDING_CACHE_MAX_SIZE", int),
                "retryable_status_codes": [int(x.strip()) for x in retryable_codes.split(",") if x.strip()]
                if retryable_codes
                else None,
            }
        ),
        "observability": {
            "enable_metrics": _env_bool("ENABLE_METRICS", "true"),
            "enable_tracing": _env_bool("ENABLE_TRACING", "false"),
            "json_logs": _env_bool("JSON_LOGS", "true"),
            "metrics_db_path": os.getenv("METRICS_DB_PATH", "./data/metrics.db"),
        },
    }


def get_config() -> AppConfig:
    """
    Get the current configuration instance.

    Returns:
        Current AppConfig instance (loaded on first access)
    """
    if _config_instance is None:
        return load_config()

    return _config_instance


def reload_config(env_file: str | None = None) -> AppConfig:
    """
    Force reload configuration.

    Args:
        env_file: Optional path to .env file

    Returns:
        Reloaded AppConfig instance
    """
    return load_config(env_file=env_file, reload=True)
