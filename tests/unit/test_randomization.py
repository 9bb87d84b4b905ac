"""
Unit tests for the sampling and randomization functions.

Tests ordering algorithms, argument checking and the shared random source.
"""

import random
from collections import Counter

import pytest

from core.execution import randomization
from core.execution.errors import InvalidArgumentError


# ==================== RANDOM SOURCE TESTS ====================

@pytest.mark.unit
def test_set_seed_makes_results_reproducible():
    """Same seed should give the same shuffle."""
    randomization.set_seed(42)
    first = randomization.shuffle(list(range(20)))
    randomization.set_seed(42)
    second = randomization.shuffle(list(range(20)))

    assert first == second


@pytest.mark.unit
def test_set_seed_without_value_returns_generated_seed():
    """set_seed() should report the seed it generated."""
    seed = randomization.set_seed()
    expected = randomization.shuffle(list(range(10)))

    randomization.set_seed(seed)
    assert randomization.shuffle(list(range(10))) == expected


@pytest.mark.unit
def test_set_random_source_replaces_source():
    """A custom source should be used by all sampling functions."""
    source = random.Random(7)
    randomization.set_random_source(source)

    assert randomization.get_random_source() is source


@pytest.mark.unit
def test_set_random_source_rejects_objects_without_random():
    with pytest.raises(InvalidArgumentError):
        randomization.set_random_source(object())


# ==================== SHUFFLE TESTS ====================

@pytest.mark.unit
def test_shuffle_is_permutation():
    """shuffle() should return the same multiset without touching the input."""
    items = [1, 2, 2, 3, 4, 5]
    original = list(items)

    shuffled = randomization.shuffle(items)

    assert sorted(shuffled) == sorted(items)
    assert items == original


@pytest.mark.unit
def test_shuffle_position_occupancy_uniform():
    """Each value should land in each position about equally often."""
    runs = 10000
    occupancy = Counter()
    for _ in range(runs):
        for position, value in enumerate(randomization.shuffle([0, 1, 2, 3, 4])):
            occupancy[(position, value)] += 1

    expected = runs / 5
    # standard deviation per cell is 40, allow five of them
    for position in range(5):
        for value in range(5):
            assert abs(occupancy[(position, value)] - expected) < 200


@pytest.mark.unit
def test_shuffle_empty():
    assert randomization.shuffle([]) == []


@pytest.mark.unit
@pytest.mark.parametrize("value", [5, "abc", None, {'a': 1}])
def test_shuffle_rejects_non_sequences(value):
    with pytest.raises(InvalidArgumentError):
        randomization.shuffle(value)


# ==================== SAMPLING TESTS ====================

@pytest.mark.unit
def test_sample_without_replacement_distinct_positions():
    """Every position should be drawn at most once."""
    sample = randomization.sample_without_replacement(list(range(10)), 6)

    assert len(sample) == 6
    assert len(set(sample)) == 6
    assert all(0 <= s < 10 for s in sample)


@pytest.mark.unit
def test_sample_without_replacement_full_size_is_permutation():
    sample = randomization.sample_without_replacement(['a', 'b', 'c'], 3)

    assert sorted(sample) == ['a', 'b', 'c']


@pytest.mark.unit
def test_sample_without_replacement_too_large():
    """Size larger than the sequence should raise."""
    with pytest.raises(InvalidArgumentError):
        randomization.sample_without_replacement([1, 2, 3], 4)


@pytest.mark.unit
def test_sample_without_replacement_negative_size():
    with pytest.raises(InvalidArgumentError):
        randomization.sample_without_replacement([1, 2, 3], -1)


@pytest.mark.unit
def test_sample_with_replacement_stays_in_range():
    sample = randomization.sample_with_replacement([0, 1, 2], 50)

    assert len(sample) == 50
    assert set(sample) <= {0, 1, 2}


@pytest.mark.unit
def test_sample_with_replacement_zero_weight_never_drawn():
    """Items with weight 0 should never be drawn."""
    sample = randomization.sample_with_replacement(['a', 'b', 'c'], 200, [1, 0, 3])

    assert 'b' not in sample
    assert set(sample) == {'a', 'c'}


@pytest.mark.unit
def test_sample_with_replacement_respects_weights():
    """A heavily weighted item should dominate the sample."""
    counts = Counter(randomization.sample_with_replacement(['rare', 'common'], 1000, [1, 9]))

    assert counts['common'] > counts['rare'] * 4


@pytest.mark.unit
def test_sample_with_replacement_weight_length_mismatch():
    with pytest.raises(InvalidArgumentError):
        randomization.sample_with_replacement([1, 2, 3], 5, [1, 2])


@pytest.mark.unit
def test_sample_with_replacement_invalid_weights():
    with pytest.raises(InvalidArgumentError):
        randomization.sample_with_replacement([1, 2], 5, [-1, 2])
    with pytest.raises(InvalidArgumentError):
        randomization.sample_with_replacement([1, 2], 5, [0, 0])


@pytest.mark.unit
def test_sample_with_replacement_empty_sequence():
    with pytest.raises(InvalidArgumentError):
        randomization.sample_with_replacement([], 3)


# ==================== REPEAT TESTS ====================

@pytest.mark.unit
def test_repeat_per_item_counts():
    """repeat([A, B], [2, 3]) should contain two A and three B."""
    result = randomization.repeat(['A', 'B'], [2, 3])

    assert Counter(result) == Counter({'A': 2, 'B': 3})


@pytest.mark.unit
def test_repeat_scalar_count_broadcasts():
    result = randomization.repeat([1, 2, 3], 2)

    assert Counter(result) == Counter({1: 2, 2: 2, 3: 2})


@pytest.mark.unit
def test_repeat_single_item():
    """A non-sequence item should be treated as a list of one."""
    assert randomization.repeat('x', 3) == ['x', 'x', 'x']


@pytest.mark.unit
def test_repeat_copies_mappings():
    """Repeated mappings must be independent copies."""
    result = randomization.repeat([{'word': 'cat'}], 2)

    result[0]['word'] = 'dog'

    assert result[1]['word'] == 'cat'


@pytest.mark.unit
def test_repeat_short_counts_broadcast_first(caplog):
    """Too few counts should broadcast the first count and warn."""
    result = randomization.repeat(['A', 'B', 'C'], [2, 5])

    assert Counter(result) == Counter({'A': 2, 'B': 2, 'C': 2})
    assert "unequal lengths" in caplog.text


@pytest.mark.unit
def test_repeat_long_counts_truncated(caplog):
    result = randomization.repeat(['A', 'B'], [1, 2, 3])

    assert Counter(result) == Counter({'A': 1, 'B': 2})
    assert "unequal lengths" in caplog.text


@pytest.mark.unit
def test_repeat_unpack():
    """unpack=True should return parallel lists."""
    result = randomization.repeat([{'a': 1, 'b': 'x'}, {'a': 2, 'b': 'y'}], 1, unpack=True)

    assert sorted(result.keys()) == ['a', 'b']
    assert sorted(result['a']) == [1, 2]
    # Rows stay aligned
    pairs = set(zip(result['a'], result['b']))
    assert pairs == {(1, 'x'), (2, 'y')}


# ==================== ALTERNATE GROUPS TESTS ====================

@pytest.mark.unit
def test_shuffle_alternate_groups_interleaves():
    groups = [['a1', 'a2', 'a3'], ['b1', 'b2', 'b3']]

    result = randomization.shuffle_alternate_groups(groups)

    assert len(result) == 6
    assert all(item.startswith('a') for item in result[0::2])
    assert all(item.startswith('b') for item in result[1::2])


@pytest.mark.unit
def test_shuffle_alternate_groups_truncates_to_shortest():
    groups = [[1, 2, 3, 4], [10, 20]]

    result = randomization.shuffle_alternate_groups(groups)

    assert len(result) == 4


@pytest.mark.unit
def test_shuffle_alternate_groups_random_group_order_keeps_pattern():
    """With randomized group order the same group order is used every round."""
    groups = [['a1', 'a2'], ['b1', 'b2']]

    result = randomization.shuffle_alternate_groups(groups, randomize_group_order=True)

    assert result[0][0] == result[2][0]
    assert result[1][0] == result[3][0]
    assert result[0][0] != result[1][0]


@pytest.mark.unit
def test_shuffle_alternate_groups_single_group(caplog):
    result = randomization.shuffle_alternate_groups([[1, 2, 3]])

    assert sorted(result) == [1, 2, 3]
    assert "only one group" in caplog.text


@pytest.mark.unit
def test_shuffle_alternate_groups_empty():
    assert randomization.shuffle_alternate_groups([]) == []


# ==================== NO-REPEAT SHUFFLE TESTS ====================

def _has_adjacent_repeat(items, equal=lambda a, b: a == b):
    return any(equal(a, b) for a, b in zip(items, items[1:]))


@pytest.mark.unit
def test_shuffle_no_repeats_no_adjacent_equal():
    items = ['a'] * 4 + ['b'] * 4 + ['c'] * 2

    for _ in range(25):
        result = randomization.shuffle_no_repeats(items)
        assert sorted(result) == sorted(items)
        assert not _has_adjacent_repeat(result)


@pytest.mark.unit
def test_shuffle_no_repeats_tight_case():
    """Majority item exactly at the limit must land on every other slot."""
    items = ['x', 'x', 'x', 'y', 'z']

    result = randomization.shuffle_no_repeats(items)

    assert result[0] == 'x' and result[2] == 'x' and result[4] == 'x'


@pytest.mark.unit
def test_shuffle_no_repeats_custom_equality():
    items = [{'cond': 'a', 'n': 1}, {'cond': 'a', 'n': 2}, {'cond': 'b', 'n': 3}, {'cond': 'b', 'n': 4}]
    same = lambda p, q: p['cond'] == q['cond']  # noqa: E731

    result = randomization.shuffle_no_repeats(items, same)

    assert sorted(r['n'] for r in result) == [1, 2, 3, 4]
    assert not _has_adjacent_repeat(result, same)


@pytest.mark.unit
def test_shuffle_no_repeats_impossible():
    """No valid arrangement exists for three equal items out of four."""
    with pytest.raises(InvalidArgumentError):
        randomization.shuffle_no_repeats(['a', 'a', 'a', 'b'])


@pytest.mark.unit
def test_shuffle_no_repeats_rejects_non_callable_equality():
    with pytest.raises(InvalidArgumentError):
        randomization.shuffle_no_repeats([1, 2], equality_fn='nope')


# ==================== FACTORIAL TESTS ====================

@pytest.mark.unit
def test_factorial_all_cells():
    design = randomization.factorial({'color': ['red', 'blue'], 'size': [1, 2, 3]})

    cells = {(d['color'], d['size']) for d in design}
    assert len(design) == 6
    assert cells == {(c, s) for c in ('red', 'blue') for s in (1, 2, 3)}


@pytest.mark.unit
def test_factorial_repetitions():
    design = randomization.factorial({'a': [1, 2]}, repetitions=3)

    assert Counter(d['a'] for d in design) == Counter({1: 3, 2: 3})


@pytest.mark.unit
def test_factorial_unpack():
    design = randomization.factorial({'a': [1, 2], 'b': ['x']}, unpack=True)

    assert sorted(design['a']) == [1, 2]
    assert design['b'] == ['x', 'x']


@pytest.mark.unit
def test_factorial_rejects_non_mapping():
    with pytest.raises(InvalidArgumentError):
        randomization.factorial([1, 2])


# ==================== DISTRIBUTION TESTS ====================

@pytest.mark.unit
def test_random_int_inclusive_bounds():
    values = {randomization.random_int(1, 3) for _ in range(300)}

    assert values == {1, 2, 3}


@pytest.mark.unit
def test_random_int_invalid_bounds():
    with pytest.raises(InvalidArgumentError):
        randomization.random_int(5, 1)


@pytest.mark.unit
def test_sample_bernoulli_extremes():
    assert all(randomization.sample_bernoulli(1.0) == 1 for _ in range(50))
    assert all(randomization.sample_bernoulli(0.0) == 0 for _ in range(50))


@pytest.mark.unit
def test_sample_normal_mean():
    values = [randomization.sample_normal(100, 10) for _ in range(2000)]

    assert abs(sum(values) / len(values) - 100) < 2


@pytest.mark.unit
def test_sample_exponential_positive():
    assert all(randomization.sample_exponential(2.0) > 0 for _ in range(200))


@pytest.mark.unit
def test_sample_ex_gaussian_positive():
    values = [randomization.sample_ex_gaussian(0, 50, 0.1, positive=True) for _ in range(200)]

    assert all(v > 0 for v in values)


@pytest.mark.unit
def test_random_id_format():
    identifier = randomization.random_id(12)

    assert len(identifier) == 12
    assert identifier.isalnum()
    assert identifier == identifier.lower()
