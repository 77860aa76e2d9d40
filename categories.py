"""
Situational Tag Vocabulary for the Activity Duel Recommender

Contains the standardised tag lists for each context category and the static
tag-to-position mapping used to build context vectors.
"""

from typing import Dict, List, Optional

# Weather tags (single-select)
WEATHER_TAGS = ['sunny', 'cloudy', 'raining', 'snowy', 'stormy']

# Time of day tags (single-select)
TIME_TAGS = ['morning', 'afternoon', 'evening', 'night']

# Season tags (single-select)
SEASON_TAGS = ['spring', 'summer', 'autumn', 'winter']

# Energy / intensity tags (single-select)
INTENSITY_TAGS = ['chill', 'tired', 'exciting', 'energetic', 'intense']

# Mood tags (multi-select)
MOOD_TAGS = [
    'stressed', 'motivated', 'adventurous', 'nostalgic', 'romantic',
    'playful', 'focused', 'distracted', 'inspired', 'friendly',
    'shy', 'curious', 'analytical', 'emotional', 'burnt_out',
    'artistic', 'practical', 'hungry', 'natural', 'urban',
    'anxious', 'overwhelmed', 'upset', 'happy', 'festive'
]

# Category order defines the contiguous blocks of the context vector
CATEGORY_MAPPINGS = {
    'weather': WEATHER_TAGS,
    'time': TIME_TAGS,
    'season': SEASON_TAGS,
    'intensity': INTENSITY_TAGS,
    'mood': MOOD_TAGS
}

# Categories that allow at most one active tag per session
EXCLUSIVE_CATEGORIES = ('weather', 'time', 'season', 'intensity')


def _build_tag_index(mappings: Dict[str, List[str]]) -> Dict[str, int]:
    """
    Build the static tag -> vector position bijection.

    Raises:
        ValueError: If a tag appears in more than one category or twice in one
    """
    tag_index = {}
    position = 0
    for category_name, tags in mappings.items():
        for tag in tags:
            if tag in tag_index:
                raise ValueError(
                    f"Tag '{tag}' in category '{category_name}' is already mapped to position {tag_index[tag]}"
                )
            tag_index[tag] = position
            position += 1
    return tag_index


TAG_INDEX = _build_tag_index(CATEGORY_MAPPINGS)

TAG_CATEGORY = {
    tag: category_name
    for category_name, tags in CATEGORY_MAPPINGS.items()
    for tag in tags
}

CONTEXT_DIMENSION = len(TAG_INDEX)


def get_category_of(tag: str) -> Optional[str]:
    """Return the category a tag belongs to, or None for unknown tags."""
    return TAG_CATEGORY.get(tag)


def get_tag_position(tag: str) -> Optional[int]:
    """Return the context vector position of a tag, or None for unknown tags."""
    return TAG_INDEX.get(tag)


def is_valid_tag(tag: str) -> bool:
    """Check whether a tag exists in the vocabulary."""
    return tag in TAG_INDEX
