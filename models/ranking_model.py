"""
Session-Local Linear Ranking Model for Activity Duels

Scores activities against the session context with a linear model seeded from
the server's base model, and refines it with one stochastic gradient step of
squared-error regression after every resolved duel.

The score collapses the activity embedding through a dot product with the
context vector before a single coefficient (weights[0][0]) is applied. Only
the shared leading length of the two vectors takes part in the dot product.
This reduction is kept literally so that rankings match the base model's
reference behaviour.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from config.config import RankingConfig
from utils import has_values, shared_dot

logger = logging.getLogger(__name__)


@dataclass
class ModelParameters:
    """Parameters of the session model: 1xD weights, length-1 bias."""
    weights: np.ndarray
    bias: np.ndarray
    classes: List[Any] = field(default_factory=list)
    is_fitted: bool = False

    @classmethod
    def from_base_weights(cls, base_weights: Optional[Any]) -> Optional['ModelParameters']:
        """
        Build an independent copy of the server-provided base model.

        Accepts either another ModelParameters instance or the catalog payload
        ``{'coef': [[...]], 'intercept': [...], 'classes': [...], 'is_fitted': bool}``.
        Returns None when no base model exists yet.
        """
        if base_weights is None:
            return None

        if isinstance(base_weights, ModelParameters):
            return cls(
                weights=np.array(base_weights.weights, dtype=np.float64, copy=True),
                bias=np.array(base_weights.bias, dtype=np.float64, copy=True),
                classes=copy.deepcopy(base_weights.classes),
                is_fitted=bool(base_weights.is_fitted)
            )

        coef = base_weights.get('coef')
        intercept = base_weights.get('intercept')
        classes = base_weights.get('classes')

        weights = np.array(coef if coef is not None else [[]], dtype=np.float64, copy=True)
        if weights.ndim == 1:
            weights = weights.reshape(1, -1)
        bias = np.array(intercept if intercept is not None else [0.0], dtype=np.float64, copy=True).reshape(-1)

        return cls(
            weights=weights,
            bias=bias,
            classes=copy.deepcopy(list(classes)) if classes is not None else [],
            is_fitted=bool(base_weights.get('is_fitted', False))
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise back to the catalog payload format."""
        return {
            'coef': self.weights.tolist(),
            'intercept': self.bias.tolist(),
            'classes': list(self.classes),
            'is_fitted': self.is_fitted
        }


def is_usable(params: Optional[ModelParameters]) -> bool:
    """True if params exist, are fitted and hold at least one weight and a bias."""
    return (
        params is not None
        and params.is_fitted
        and params.weights.size > 0
        and params.bias.size > 0
    )


def score(context: np.ndarray, embedding: Optional[np.ndarray],
          params: Optional[ModelParameters]) -> float:
    """
    Score one activity against the session context.

    score = dot(context, embedding) * weights[0][0] + bias[0]

    Returns exactly 0.0 when the embedding is missing or empty, or when the
    model is absent or unfitted.
    """
    if not has_values(embedding) or not is_usable(params):
        return 0.0
    return shared_dot(context, embedding) * float(params.weights[0][0]) + float(params.bias[0])


def update(context: np.ndarray, embedding: Optional[np.ndarray], reward: float,
           params: Optional[ModelParameters], learning_rate: float) -> Optional[float]:
    """
    Apply one gradient step towards ``reward`` in place.

    Args:
        context: Context vector used for scoring
        embedding: Embedding of the chosen activity
        reward: Target score (1.0 for a duel winner)
        params: Parameters to mutate
        learning_rate: Step size

    Returns:
        The error (reward - prediction) before the step, or None if skipped
    """
    if not has_values(embedding) or not is_usable(params):
        return None

    prediction = score(context, embedding, params)
    error = reward - prediction

    n = min(len(context), len(embedding), params.weights.shape[1])
    params.weights[0, :n] += learning_rate * error * np.asarray(context[:n], dtype=np.float64)
    params.bias[0] += learning_rate * error

    return error


class LinearRankingModel:
    """
    Session-owned wrapper around ModelParameters and a fixed learning rate.

    Each session holds its own instance; the parameters are a private copy of
    the base model and are discarded with the session.
    """

    def __init__(self, base_weights: Optional[Any] = None, config: RankingConfig = None):
        self.config = config if config is not None else RankingConfig()
        self.learning_rate = self.config.learning_rate
        self.params = ModelParameters.from_base_weights(base_weights)
        self.update_count = 0
        self.skipped_updates = 0

        if self.params is None:
            logger.info("Session model started without a base model; ranking keeps catalog order")
        elif not self.params.is_fitted:
            logger.info("Base model is not fitted yet; ranking keeps catalog order")
        elif self.params.weights.shape[1] != self.config.embedding_dim:
            logger.warning(
                f"Base model has {self.params.weights.shape[1]} weights, expected {self.config.embedding_dim}"
            )

    @property
    def is_ready(self) -> bool:
        return is_usable(self.params)

    def score(self, context: np.ndarray, embedding: Optional[np.ndarray]) -> float:
        return score(context, embedding, self.params)

    def update(self, context: np.ndarray, embedding: Optional[np.ndarray],
               reward: float = None) -> Optional[float]:
        """Train on one chosen activity; returns the pre-step error or None if skipped."""
        if reward is None:
            reward = self.config.reward

        error = update(context, embedding, reward, self.params, self.learning_rate)
        if error is None:
            self.skipped_updates += 1
        else:
            self.update_count += 1
            logger.debug(f"Session model step {self.update_count}: error={error:.4f}, bias={self.params.bias[0]:.4f}")
        return error

    def get_statistics(self) -> Dict[str, Any]:
        """Summary of the session model state."""
        stats = {
            'is_ready': self.is_ready,
            'learning_rate': self.learning_rate,
            'update_count': self.update_count,
            'skipped_updates': self.skipped_updates
        }
        if self.params is not None and self.params.weights.size > 0:
            stats['coefficient'] = float(self.params.weights[0][0])
            stats['bias'] = float(self.params.bias[0]) if self.params.bias.size else 0.0
            stats['weight_norm'] = float(np.linalg.norm(self.params.weights))
        return stats
