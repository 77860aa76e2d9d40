"""
Tests for the candidate pool and duel drawing

Run with pytest, or directly: python test_candidate_pool.py
"""

import sys
import os
import random
from typing import List

import numpy as np

# Add the project root to the Python path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from config.config import PoolConfig
from models.candidate_pool import Activity, CandidatePool, DuelState, draw_duel, top_tier_size
from models.ranking_model import ModelParameters
from utils import encode_context

EMBEDDING_DIM = 384


class ScriptedRandom(random.Random):
    """Random source that returns a fixed sequence from randrange."""

    def __init__(self, values):
        super().__init__(0)
        self.values = list(values)
        self.calls = 0

    def randrange(self, *args, **kwargs):
        self.calls += 1
        return self.values.pop(0)


def make_activities(count: int, start: int = 1, scale: float = 0.05) -> List[Activity]:
    """Activities with small deterministic embeddings."""
    return [
        Activity(
            id=activity_id,
            name=f"Activity {activity_id}",
            embedding=np.random.default_rng(activity_id).normal(0.0, scale, size=EMBEDDING_DIM)
        )
        for activity_id in range(start, start + count)
    ]


def make_params(coefficient: float = 0.5, bias: float = 0.1) -> ModelParameters:
    return ModelParameters.from_base_weights({
        'coef': [[coefficient] + [0.0] * (EMBEDDING_DIM - 1)],
        'intercept': [bias],
        'classes': [0, 1],
        'is_fitted': True
    })


def test_top_tier_size():
    assert top_tier_size(0) == 0
    assert top_tier_size(1) == 1
    assert top_tier_size(2) == 2
    assert top_tier_size(12) == 2
    assert top_tier_size(15) == 3
    assert top_tier_size(30) == 6


def test_rank_keeps_catalog_order_without_model():
    pool = CandidatePool()
    activities = make_activities(8)
    pool.merge(activities)

    ranked = pool.rank(encode_context(['sunny', 'morning', 'chill']), None)

    assert [activity.id for activity in ranked] == [activity.id for activity in activities]
    assert all(value == 0.0 for value in pool.scores.values())


def test_rank_is_descending_and_stable():
    context = encode_context(['sunny', 'morning', 'chill'])
    embeddings = {
        1: [0.1, 0.0, 0.0],
        2: [0.5, 0.0, 0.0],
        3: [0.1, 0.0, 0.0],
        4: [0.9, 0.0, 0.0],
        5: [0.5, 0.0, 0.0],
    }
    pool = CandidatePool()
    pool.merge(Activity(id=i, name=str(i), embedding=np.array(values)) for i, values in embeddings.items())

    pool.rank(context, make_params(coefficient=1.0, bias=0.0))

    assert pool.ids() == [4, 2, 5, 1, 3]
    assert np.isclose(pool.scores[4], 0.9)


def test_missing_embedding_ranks_as_neutral():
    context = encode_context(['sunny', 'morning', 'chill'])
    embedded = Activity(id='a', name='A', embedding=np.array([0.2]))
    missing = Activity(id='b', name='B')
    pool = CandidatePool()
    pool.merge([embedded, missing])

    # Negative bias pushes the embedded activity below zero
    pool.rank(context, make_params(coefficient=1.0, bias=-0.5))

    assert pool.scores['b'] == 0.0
    assert pool.ids() == ['b', 'a']


def test_draw_duel_degenerate_pools():
    rng = random.Random(0)

    empty = draw_duel([], rng)
    assert empty.left is None and empty.right is None
    assert not empty.is_playable

    single = make_activities(1)
    one = draw_duel(single, rng)
    assert one.left is single[0]
    assert one.right is None
    assert not one.is_playable


def test_draw_duel_uses_top_tier_of_twelve():
    ranked = make_activities(12)
    for seed in range(50):
        duel = draw_duel(ranked, random.Random(seed))
        assert {duel.left.id, duel.right.id} == {1, 2}


def test_draw_duel_redraws_right_until_distinct():
    ranked = make_activities(30)
    rng = ScriptedRandom([4, 4, 4, 1])

    duel = draw_duel(ranked, rng)

    assert duel.left is ranked[4]
    assert duel.right is ranked[1]
    assert rng.calls == 4


def test_draw_duel_is_always_distinct():
    for size in (2, 3, 9, 12, 40):
        ranked = make_activities(size)
        rng = random.Random(size)
        for _ in range(100):
            duel = draw_duel(ranked, rng)
            assert duel.is_playable
            tier = top_tier_size(size)
            assert ranked.index(duel.left) < tier
            assert ranked.index(duel.right) < tier


def test_merge_skips_known_ids():
    pool = CandidatePool()
    first = make_activities(5)
    assert len(pool.merge(first)) == 5

    added = pool.merge(make_activities(4, start=4))

    assert [activity.id for activity in added] == [6, 7]
    assert len(pool) == 7
    assert pool.total_admitted == 7
    assert pool.get(4) is first[3]


def test_evict_removes_exactly_one():
    pool = CandidatePool()
    pool.merge(make_activities(6))

    removed = pool.evict(3)

    assert removed.id == 3
    assert len(pool) == 5
    assert 3 not in pool
    assert pool.ids() == [1, 2, 4, 5, 6]
    assert pool.eliminated_ids == [3]


def test_evict_absent_id_is_noop():
    pool = CandidatePool()
    pool.merge(make_activities(3))

    assert pool.evict(99) is None
    assert pool.ids() == [1, 2, 3]
    assert pool.eliminated_ids == []


def test_draw_opponent_excludes_winner():
    pool = CandidatePool(PoolConfig(), random.Random(1))
    activities = make_activities(12)
    pool.merge(activities)
    winner = activities[0]

    for _ in range(50):
        opponent = pool.draw_opponent(winner)
        assert opponent is not winner
        # Top tier of the 11 remaining is the two activities after the winner
        assert opponent.id in (2, 3)

    lonely = CandidatePool()
    lonely.merge([winner])
    assert lonely.draw_opponent(winner) is None


def test_duel_state_slots():
    left, right, other = make_activities(3)
    duel = DuelState(left=left, right=right)

    assert duel.get('left') is left
    assert duel.opposite('left') is right
    replaced = duel.with_slot('right', other)
    assert replaced.left is left and replaced.right is other
    assert duel.right is right
    assert not DuelState(left=left, right=left).is_playable

    try:
        duel.get('middle')
    except ValueError:
        pass
    else:
        raise AssertionError("Expected ValueError for an unknown position")


def test_activity_from_catalog_record():
    activity = Activity.from_dict({'id': 7, 'name': 'Kayaking', 'embedding': [0.1, 0.2], 'category': 'outdoor'})

    assert activity.has_embedding
    assert activity.embedding.dtype == np.float64
    assert activity.metadata == {'category': 'outdoor'}
    assert activity.to_dict() == {'id': 7, 'name': 'Kayaking', 'has_embedding': True, 'category': 'outdoor'}
    assert not Activity.from_dict({'id': 8}).has_embedding


def main():
    """Run all tests."""
    print("Candidate Pool - Test Suite")
    print("=" * 50)

    tests = [
        test_top_tier_size,
        test_rank_keeps_catalog_order_without_model,
        test_rank_is_descending_and_stable,
        test_missing_embedding_ranks_as_neutral,
        test_draw_duel_degenerate_pools,
        test_draw_duel_uses_top_tier_of_twelve,
        test_draw_duel_redraws_right_until_distinct,
        test_draw_duel_is_always_distinct,
        test_merge_skips_known_ids,
        test_evict_removes_exactly_one,
        test_evict_absent_id_is_noop,
        test_draw_opponent_excludes_winner,
        test_duel_state_slots,
        test_activity_from_catalog_record,
    ]

    failed = 0
    for test in tests:
        try:
            test()
            print(f"✓ {test.__name__}")
        except AssertionError as e:
            failed += 1
            print(f"✗ {test.__name__}: {e}")

    print("\n" + "=" * 50)
    print(f"{len(tests) - failed}/{len(tests)} tests passed")
    return failed == 0


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
