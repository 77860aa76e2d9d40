"""
Utility Functions for the Activity Duel Recommender

Contains helper functions for context encoding, tag validation and vector math.
"""

from typing import Dict, Iterable, List, Optional, Sequence
import numpy as np
from categories import (
    CATEGORY_MAPPINGS,
    CONTEXT_DIMENSION,
    EXCLUSIVE_CATEGORIES,
    get_category_of,
    get_tag_position,
    is_valid_tag,
)


def encode_context(active_tags: Iterable[str]) -> np.ndarray:
    """
    Encode a set of situational tags into the fixed-length context vector.

    Each known tag sets exactly one position to 1.0. Unknown tags are ignored,
    so the result is the same for any ordering or repetition of the input.

    Args:
        active_tags: Active tags (any iterable, may be empty)

    Returns:
        Context vector of length CONTEXT_DIMENSION

    Example:
        >>> np.flatnonzero(encode_context(['sunny', 'morning', 'chill']))
        array([ 0,  5, 13])
    """
    vector = np.zeros(CONTEXT_DIMENSION, dtype=np.float64)

    for tag in active_tags:
        position = get_tag_position(tag)
        if position is not None:
            vector[position] = 1.0

    return vector


def group_tags_by_category(active_tags: Iterable[str]) -> Dict[str, List[str]]:
    """
    Group tags by category, preserving input order and dropping unknown tags.

    Example:
        >>> group_tags_by_category(['happy', 'sunny', 'curious'])
        {'weather': ['sunny'], 'time': [], 'season': [], 'intensity': [], 'mood': ['happy', 'curious']}
    """
    grouped = {category_name: [] for category_name in CATEGORY_MAPPINGS}
    for tag in active_tags:
        category_name = get_category_of(tag)
        if category_name is not None and tag not in grouped[category_name]:
            grouped[category_name].append(tag)
    return grouped


def validate_tag_selection(active_tags: Sequence[str], min_tags: int = 3, max_tags: int = 8) -> List[str]:
    """
    Check a tag selection against the picker rules.

    Rules: every tag is known, at most one tag per exclusive category, and the
    number of distinct tags is within [min_tags, max_tags].

    Args:
        active_tags: Tags chosen by the user
        min_tags: Minimum number of distinct tags
        max_tags: Maximum number of distinct tags

    Returns:
        List of error messages (empty if the selection is valid)
    """
    errors = []

    unknown = [tag for tag in active_tags if not is_valid_tag(tag)]
    if unknown:
        errors.append(f"Unknown tags: {', '.join(unknown)}")

    grouped = group_tags_by_category(active_tags)
    for category_name in EXCLUSIVE_CATEGORIES:
        if len(grouped[category_name]) > 1:
            errors.append(f"Only one '{category_name}' tag allowed, got {len(grouped[category_name])}")

    total = sum(len(tags) for tags in grouped.values())
    if not (min_tags <= total <= max_tags):
        errors.append(f"Select between {min_tags} and {max_tags} tags, got {total}")

    return errors


def shared_dot(context: np.ndarray, embedding: np.ndarray) -> float:
    """
    Dot product over the shared leading length of two vectors.

    Example:
        >>> shared_dot(np.array([1.0, 0.0, 1.0]), np.array([0.5, 2.0]))
        0.5
    """
    n = min(len(context), len(embedding))
    if n == 0:
        return 0.0
    return float(np.dot(context[:n], embedding[:n]))


def has_values(vector: Optional[np.ndarray]) -> bool:
    """True for a vector holding at least one number."""
    return vector is not None and len(vector) > 0


def to_vector(values: Optional[Sequence[float]]) -> Optional[np.ndarray]:
    """Convert a sequence of numbers to a float vector; None and empty input give None."""
    if values is None or len(values) == 0:
        return None
    return np.array(values, dtype=np.float64)
