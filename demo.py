"""
Demo script for the Activity Duel Recommender

This script plays a duel session against an in-memory catalog with a
simulated user who prefers a hidden "taste" direction in embedding space.
"""

import asyncio
from typing import Any, Dict, List

import numpy as np

from config.config import DuelConfig, PoolConfig
from models.candidate_pool import Activity
from services.catalog_client import StaticCatalog
from services.duel_controller import DuelController

ACTIVITY_NAMES = [
    "Picnic in the park", "Board game night", "Museum visit", "Trail run",
    "Cook a new recipe", "Bike ride", "Read in a cafe", "Pottery class",
    "Stargazing", "Karaoke", "Farmers market", "Yoga session",
    "Escape room", "Photography walk", "Movie marathon", "Rock climbing",
    "Journaling", "Visit a bookshop", "Baking", "Swimming",
    "Live music", "Gardening", "Sketching outdoors", "Volunteer shift",
    "Thrift shopping", "Kayaking", "Puzzle afternoon", "Dance class",
    "Try a new restaurant", "Meditation", "Beach walk", "Video game co-op"
]


def create_sample_activities(embedding_dim: int = 384, seed: int = 7) -> List[Activity]:
    """Create sample activities with small random embeddings."""
    generator = np.random.default_rng(seed)
    activities = []
    for activity_id, name in enumerate(ACTIVITY_NAMES, start=1):
        embedding = generator.normal(0.0, 0.05, size=embedding_dim)
        # Leave a few activities without embeddings to show neutral scoring
        if activity_id % 11 == 0:
            embedding = None
        activities.append(Activity(id=activity_id, name=name, embedding=embedding))
    return activities


def create_base_weights(embedding_dim: int = 384) -> Dict[str, Any]:
    """Base model payload in the catalog's format."""
    return {
        'coef': [[0.5] + [0.0] * (embedding_dim - 1)],
        'intercept': [0.1],
        'classes': [0, 1],
        'is_fitted': True
    }


def simulated_preference(activity: Activity, taste: np.ndarray) -> float:
    """How much the simulated user likes an activity."""
    if not activity.has_embedding:
        return 0.0
    return float(np.dot(activity.embedding, taste))


async def play_session(rounds: int = 25, seed: int = 3):
    """Play one session and print every duel."""
    print("=" * 60)
    print("ACTIVITY DUEL SESSION")
    print("=" * 60)

    activities = create_sample_activities()
    catalog = StaticCatalog(activities, batch_size=12, base_weights=create_base_weights())
    config = DuelConfig(pool=PoolConfig(replenish_threshold=10), seed=seed)
    taste = np.random.default_rng(seed).normal(0.0, 1.0, size=384)

    first_batch = await catalog.fetch_batch(['sunny', 'morning', 'chill', 'happy'])
    controller = DuelController(catalog, config, session_id=first_batch.session_id)
    controller.initialize(first_batch.base_weights, ['sunny', 'morning', 'chill', 'happy'], first_batch.activities)

    for round_number in range(1, rounds + 1):
        duel = controller.duel
        if not controller.can_duel:
            print(f"\nRound {round_number}: cannot duel ({len(controller.pool)} candidates), waiting for refill")
            await controller.wait_for_background()
            if not controller.can_duel:
                print("Catalog exhausted, ending session")
                break
            continue

        left_pref = simulated_preference(duel.left, taste)
        right_pref = simulated_preference(duel.right, taste)
        winner = 'left' if left_pref >= right_pref else 'right'
        print(f"\nRound {round_number}: {duel.left.name} vs {duel.right.name} → {duel.get(winner).name}")

        await controller.resolve_choice(winner)
        # Let refills land between rounds
        await asyncio.sleep(0)

    await controller.wait_for_background()

    stats = controller.get_statistics()
    print("\n--- Session Summary ---")
    print(f"Choices made: {stats['choice_count']}")
    print(f"Refills requested: {stats['replenish_count']}")
    print(f"Training events sent: {len(catalog.training_events)}")
    print(f"Pool size: {stats['pool']['size']}")
    print("Top ranked:")
    for entry in stats['pool']['top']:
        print(f"  {entry['name']} (score {entry['score']:.3f})")


def main():
    asyncio.run(play_session())


if __name__ == "__main__":
    main()
