"""
Configuration settings for the Activity Duel Recommender

Manages all configuration parameters including:
- Catalog connection
- Session model and pool parameters
- Redis embedding cache settings
- API settings
"""

import os
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

from config.config import CatalogConfig, DuelConfig, PoolConfig, RankingConfig, TagSelectionConfig

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Catalog settings
    catalog_base_url: str = Field(
        default="http://localhost:8001",
        description="Base URL of the activity catalog backend"
    )
    catalog_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for each catalog request"
    )

    # Session model settings
    learning_rate: float = Field(
        default=0.8,
        description="Learning rate of the session-local ranking model"
    )
    context_dim: int = Field(
        default=43,
        description="Length of the context vector"
    )
    embedding_dim: int = Field(
        default=384,
        description="Length of activity embeddings"
    )

    # Pool settings
    top_tier_fraction: float = Field(
        default=0.2,
        description="Fraction of the ranked pool eligible for duels"
    )
    min_tier_size: int = Field(
        default=2,
        description="Minimum number of candidates in the top tier"
    )
    replenish_threshold: int = Field(
        default=10,
        description="Pool size at or below which more candidates are fetched"
    )
    replenish_timeout: float = Field(
        default=15.0,
        description="Seconds before an outstanding refill is abandoned"
    )
    random_seed: Optional[int] = Field(
        default=None,
        description="Seed for duel drawing (unset for OS entropy)"
    )

    # Tag selection
    min_tags: int = Field(
        default=3,
        description="Minimum number of context tags per session"
    )
    max_tags: int = Field(
        default=8,
        description="Maximum number of context tags per session"
    )

    # Redis settings
    redis_enabled: bool = Field(
        default=False,
        description="Cache embeddings in Redis"
    )
    redis_host: str = Field(
        default="localhost",
        description="Redis server host"
    )
    redis_port: int = Field(
        default=6379,
        description="Redis server port"
    )
    redis_password: Optional[str] = Field(
        default=None,
        description="Redis server password"
    )
    embedding_cache_ttl: int = Field(
        default=3600,
        description="Embedding cache time-to-live in seconds"
    )

    # Session registry
    max_sessions: int = Field(
        default=1000,
        description="Maximum number of live sessions kept in memory"
    )

    # API settings
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Log file path"
    )

    def to_duel_config(self) -> DuelConfig:
        """Map settings onto the session configuration dataclasses."""
        return DuelConfig(
            ranking=RankingConfig(
                learning_rate=self.learning_rate,
                context_dim=self.context_dim,
                embedding_dim=self.embedding_dim
            ),
            pool=PoolConfig(
                top_tier_fraction=self.top_tier_fraction,
                min_tier_size=self.min_tier_size,
                replenish_threshold=self.replenish_threshold,
                replenish_timeout=self.replenish_timeout
            ),
            catalog=CatalogConfig(
                base_url=self.catalog_base_url,
                request_timeout=self.catalog_timeout
            ),
            tags=TagSelectionConfig(
                min_tags=self.min_tags,
                max_tags=self.max_tags
            ),
            seed=self.random_seed
        )


# Global settings instance
_settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Environment-specific configurations
class DevelopmentSettings(Settings):
    """Development environment settings."""
    debug: bool = True
    log_level: str = "DEBUG"


class ProductionSettings(Settings):
    """Production environment settings."""
    debug: bool = False
    log_level: str = "WARNING"
    redis_enabled: bool = True
    catalog_timeout: float = 5.0


class TestingSettings(Settings):
    """Testing environment settings."""
    debug: bool = True
    log_level: str = "DEBUG"
    random_seed: Optional[int] = 42
    replenish_timeout: float = 2.0


def get_environment_settings(environment: str = None) -> Settings:
    """Get settings for a specific environment."""
    if environment is None:
        environment = os.getenv("ENVIRONMENT", "development")

    if environment == "production":
        return ProductionSettings()
    elif environment == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


# Configuration validation
def validate_settings(settings: Settings) -> bool:
    """Validate configuration settings."""
    errors = []

    if not settings.catalog_base_url.startswith(("http://", "https://")):
        errors.append("Invalid catalog URL format")

    if not (0 < settings.learning_rate <= 1):
        errors.append("Learning rate must be in (0, 1]")

    if not (0 < settings.top_tier_fraction <= 1):
        errors.append("Top tier fraction must be in (0, 1]")

    if settings.min_tier_size < 1:
        errors.append("Minimum tier size must be positive")

    if settings.replenish_threshold < 0:
        errors.append("Replenish threshold cannot be negative")

    if not (0 < settings.min_tags <= settings.max_tags):
        errors.append("Tag bounds must satisfy 0 < min_tags <= max_tags")

    if not (0 <= settings.redis_port <= 65535):
        errors.append("Invalid Redis port number")

    if not (1 <= settings.api_port <= 65535):
        errors.append("Invalid API port number")

    if errors:
        raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    return True
