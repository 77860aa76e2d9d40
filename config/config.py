"""
Configuration classes for the activity duel recommender.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class TagSelectionConfig:
    """Bounds on the active tag set accepted from the tag picker."""
    min_tags: int = 3
    max_tags: int = 8


@dataclass
class RankingConfig:
    """Configuration for the session-local linear ranking model."""
    learning_rate: float = 0.8  # Fixed for the whole session, never annealed
    context_dim: int = 43  # Length of the one-hot context vector
    embedding_dim: int = 384  # Length of activity embeddings
    reward: float = 1.0  # Reward applied to the chosen activity


@dataclass
class PoolConfig:
    """Configuration for the candidate pool and duel drawing."""
    top_tier_fraction: float = 0.2  # Fraction of the ranked pool eligible for duels
    min_tier_size: int = 2  # Lower bound on the top tier size
    replenish_threshold: int = 10  # Pool size at or below which a refill is requested
    replenish_timeout: float = 15.0  # Seconds before an outstanding refill is abandoned


@dataclass
class CatalogConfig:
    """Configuration for the external activity catalog."""
    base_url: str = 'http://localhost:8001'
    game_start_path: str = '/activities/game/start'
    game_train_path: str = '/activities/game/train'
    embeddings_path: str = '/activities/embeddings'
    request_timeout: float = 10.0  # Seconds per HTTP request

    def get_url(self, path: str) -> str:
        """Join the base URL with an endpoint path."""
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


@dataclass
class DuelConfig:
    """Configuration for a duel session."""
    ranking: RankingConfig = None
    pool: PoolConfig = None
    catalog: CatalogConfig = None
    tags: TagSelectionConfig = None
    seed: Optional[int] = None  # Seed for duel drawing; None means OS entropy

    def __post_init__(self):
        """Initialize default configs if not provided."""
        if self.ranking is None:
            self.ranking = RankingConfig()
        if self.pool is None:
            self.pool = PoolConfig()
        if self.catalog is None:
            self.catalog = CatalogConfig()
        if self.tags is None:
            self.tags = TagSelectionConfig()
