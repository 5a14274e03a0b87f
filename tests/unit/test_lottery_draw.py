"""Unit tests for the secure shuffle and prize split."""

from collections import Counter
from decimal import Decimal
from itertools import permutations

import pytest

from services.election_api.lottery import (
    RANDOM_SPACE,
    compute_prize_per_winner,
    secure_randbelow,
    secure_shuffle,
    select_random_winners,
)


def scripted_bytes(*values):
    """Random source returning the given 32-bit integers in order."""
    reads = [value.to_bytes(4, "big") for value in values]

    def _randbytes(size):
        assert size == 4
        return reads.pop(0)

    _randbytes.reads = reads
    return _randbytes


def zero_bytes(size):
    return bytes(size)


class TestSecureRandbelow:
    """Uniform index mapping."""

    def test_value_in_incomplete_bucket_is_redrawn(self):
        # 2**32 % 3 == 1, so the single top value must be rejected
        source = scripted_bytes(RANDOM_SPACE - 1, 5)
        assert secure_randbelow(3, source) == 2
        assert source.reads == []

    def test_power_of_two_range_never_rejects(self):
        source = scripted_bytes(RANDOM_SPACE - 1)
        assert secure_randbelow(4, source) == 3

    def test_range_of_one(self):
        assert secure_randbelow(1, scripted_bytes(123456)) == 0

    @pytest.mark.parametrize("n", [0, -1, RANDOM_SPACE + 1])
    def test_invalid_range(self, n):
        with pytest.raises(ValueError):
            secure_randbelow(n)

    def test_results_stay_in_range(self):
        for _ in range(500):
            assert 0 <= secure_randbelow(7) < 7


class TestSecureShuffle:
    """Fisher-Yates shuffle."""

    def test_shuffle_is_a_permutation(self):
        items = list(range(50))
        shuffled = secure_shuffle(items)
        assert sorted(shuffled) == items
        assert items == list(range(50))

    def test_swap_sequence_with_fixed_source(self):
        # Always drawing index 0 swaps the tail with the head at each step
        assert secure_shuffle([1, 2, 3, 4], zero_bytes) == [2, 3, 4, 1]

    def test_empty_and_single(self):
        assert secure_shuffle([]) == []
        assert secure_shuffle(["only"]) == ["only"]

    def test_all_permutations_reachable_and_balanced(self):
        trials = 6000
        counts = Counter(tuple(secure_shuffle("abc")) for _ in range(trials))
        assert set(counts) == set(permutations("abc"))
        for count in counts.values():
            assert 800 < count < 1200


class TestSelectRandomWinners:
    """Winner selection."""

    def test_picks_requested_number_of_distinct_participants(self):
        participants = list(range(1, 101))
        winners = select_random_winners(participants, 10)
        assert len(winners) == 10
        assert len(set(winners)) == 10
        assert set(winners) <= set(participants)

    def test_count_clamped_to_participants(self):
        winners = select_random_winners([11, 12, 13], 10)
        assert sorted(winners) == [11, 12, 13]

    def test_first_k_of_shuffle(self):
        assert select_random_winners([1, 2, 3, 4], 2, zero_bytes) == [2, 3]

    def test_no_participants_or_zero_count(self):
        assert select_random_winners([], 3) == []
        assert select_random_winners([1, 2], 0) == []


class TestPrizePerWinner:
    """Prize computation."""

    def test_pool_split_evenly(self):
        assert compute_prize_per_winner(Decimal("300"), None, 3) == Decimal("100.00")

    def test_pool_split_rounds_down_to_cent(self):
        prize = compute_prize_per_winner(Decimal("100"), None, 3)
        assert prize == Decimal("33.33")
        assert prize * 3 <= Decimal("100")

    def test_pool_wins_over_flat_amount(self):
        assert compute_prize_per_winner(Decimal("50"), Decimal("999"), 2) == Decimal("25.00")

    def test_flat_amount_without_pool(self):
        assert compute_prize_per_winner(None, Decimal("12.5"), 4) == Decimal("12.50")

    def test_zero_pool_falls_back_to_flat_amount(self):
        assert compute_prize_per_winner(Decimal("0"), Decimal("5"), 2) == Decimal("5.00")

    def test_nothing_configured(self):
        assert compute_prize_per_winner(None, None, 2) is None

    def test_no_winners(self):
        assert compute_prize_per_winner(Decimal("100"), None, 0) is None
