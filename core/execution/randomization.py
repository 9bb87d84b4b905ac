"""
Sampling and randomization functions for trialflow.

Every function here is stateless apart from the shared random source, which
can be reseeded (set_seed) or replaced (set_random_source) so that a whole
experiment session is reproducible.

The random source only needs a ``random()`` method returning floats in
[0, 1), so ``random.Random`` instances and seeded stand-ins both work.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from collections.abc import Mapping
from collections.abc import Sequence as SequenceABC
import copy
import logging
import math
import random

from .errors import InvalidArgumentError

logger = logging.getLogger(__name__)

_random_source = random.Random()

_ID_CHARS = "0123456789abcdefghjklmnopqrstuvwxyz"


def set_seed(seed: Optional[Union[int, str]] = None) -> Union[int, str]:
    """
    Reseed the shared random source.

    Args:
        seed: Seed value (None = generate one)

    Returns:
        The seed that was applied, so it can be stored with the data
    """
    global _random_source
    if seed is None:
        seed = random.SystemRandom().randrange(2 ** 32)
    _random_source = random.Random(seed)
    logger.debug(f"Random source reseeded (seed: {seed})")
    return seed


def set_random_source(source) -> None:
    """
    Replace the shared random source.

    Args:
        source: Object with a ``random()`` method (e.g. random.Random(42))
    """
    global _random_source
    if not callable(getattr(source, 'random', None)):
        raise InvalidArgumentError("Random source must provide a random() method")
    _random_source = source


def get_random_source():
    """Return the random source all sampling functions draw from."""
    return _random_source


def _uniform() -> float:
    return _random_source.random()


def _random_below(n: int) -> int:
    return int(math.floor(_uniform() * n))


def _require_sequence(seq, function_name: str) -> None:
    if isinstance(seq, (str, bytes)) or not isinstance(seq, SequenceABC):
        raise InvalidArgumentError(f"First argument to {function_name}() must be a sequence")


def shuffle(seq: Sequence[Any]) -> List[Any]:
    """
    Return a uniformly shuffled copy of ``seq`` (Fisher-Yates).

    Args:
        seq: Items to shuffle (not modified)

    Returns:
        New list with the same items in random order
    """
    _require_sequence(seq, 'shuffle')

    items = list(seq)
    m = len(items)
    while m:
        i = _random_below(m)
        m -= 1
        items[m], items[i] = items[i], items[m]
    return items


def sample_without_replacement(seq: Sequence[Any], size: int) -> List[Any]:
    """
    Draw ``size`` distinct positions of ``seq``.

    Raises:
        InvalidArgumentError: If size is negative or larger than the sequence
    """
    _require_sequence(seq, 'sample_without_replacement')

    if size > len(seq):
        raise InvalidArgumentError(
            "Cannot take a sample larger than the size of the set of items to sample."
        )
    if size < 0:
        raise InvalidArgumentError("Sample size must not be negative")
    return shuffle(seq)[:size]


def sample_with_replacement(seq: Sequence[Any], size: int,
                            weights: Optional[Sequence[float]] = None) -> List[Any]:
    """
    Draw ``size`` independent samples from ``seq``.

    Args:
        seq: Items to sample from
        size: Number of draws
        weights: Optional relative weights, one per item (normalized to sum 1)

    Returns:
        List of sampled items
    """
    _require_sequence(seq, 'sample_with_replacement')

    if len(seq) == 0:
        raise InvalidArgumentError("Cannot sample from an empty sequence")

    if weights is not None:
        if len(weights) != len(seq):
            raise InvalidArgumentError(
                "The length of the weights array must equal the length of the array to be sampled from."
            )
        if any(w < 0 for w in weights):
            raise InvalidArgumentError("Sampling weights must not be negative")
        weight_sum = float(sum(weights))
        if weight_sum <= 0:
            raise InvalidArgumentError("Sampling weights must sum to a positive value")
        normalized = [w / weight_sum for w in weights]
    else:
        normalized = [1.0 / len(seq)] * len(seq)

    cumulative = []
    running = 0.0
    for w in normalized:
        running += w
        cumulative.append(running)

    sample = []
    last = len(seq) - 1
    for _ in range(size):
        rnd = _uniform()
        index = 0
        # float rounding can leave cumulative[-1] a hair below 1.0
        while index < last and rnd >= cumulative[index]:
            index += 1
        sample.append(seq[index])
    return sample


def _unpack(records: List[Mapping]) -> Dict[str, List[Any]]:
    """Turn a list of uniform mappings into a mapping of parallel lists."""
    out: Dict[str, List[Any]] = {}
    for record in records:
        for key, value in record.items():
            out.setdefault(key, []).append(value)
    return out


def repeat(seq: Any, counts: Union[int, Sequence[int]], unpack: bool = False):
    """
    Repeat each item a number of times and shuffle the result.

    ``counts`` is either one count applied to every item or one count per
    item. Mismatched lengths are tolerated: a short counts list broadcasts its
    first entry, a long one is truncated (a warning is logged either way).

    Args:
        seq: Items to repeat (a single non-sequence item is allowed)
        counts: Repetition count(s)
        unpack: Return a mapping of parallel lists instead of a list of mappings

    Returns:
        Shuffled list of repeated items (or the unpacked mapping)
    """
    seq_is_list = isinstance(seq, (list, tuple))
    counts_is_list = isinstance(counts, (list, tuple))

    if not seq_is_list:
        if counts_is_list:
            logger.warning(
                "Unclear parameters given to repeat(). Multiple set sizes specified, "
                "but only one item exists to sample. Proceeding using the first set size."
            )
            counts = [counts[0]]
        else:
            counts = [counts]
        seq = [seq]
    elif not counts_is_list:
        counts = [counts] * len(seq)
    elif len(seq) != len(counts):
        logger.warning(
            "Unclear parameters given to repeat(). Items and repetitions are unequal lengths. "
            "Behavior may not be as expected."
        )
        if len(counts) < len(seq):
            counts = [counts[0]] * len(seq)
        else:
            counts = list(counts[:len(seq)])

    all_samples = []
    for item, count in zip(seq, counts):
        for _ in range(count):
            if item is None or isinstance(item, (str, bytes, int, float, bool)):
                all_samples.append(item)
            else:
                all_samples.append(copy.deepcopy(item))

    out = shuffle(all_samples)
    if unpack:
        return _unpack(out)
    return out


def shuffle_alternate_groups(groups: Sequence[Sequence[Any]],
                             randomize_group_order: bool = False) -> List[Any]:
    """
    Interleave independently shuffled groups.

    Output takes one item from each group in turn (A, B, A, B, ...) and stops
    at the length of the shortest group.

    Args:
        groups: Sequence of groups
        randomize_group_order: Shuffle which group comes first in each round
    """
    _require_sequence(groups, 'shuffle_alternate_groups')

    if len(groups) == 0:
        return []
    if len(groups) == 1:
        logger.warning(
            "shuffle_alternate_groups() was called with only one group. Defaulting to simple shuffle."
        )
        return shuffle(groups[0])

    group_order = list(range(len(groups)))
    if randomize_group_order:
        group_order = shuffle(group_order)

    shuffled_groups = [shuffle(group) for group in groups]
    min_length = min(len(group) for group in groups)

    out = []
    for i in range(min_length):
        for group_index in group_order:
            out.append(shuffled_groups[group_index][i])
    return out


def _arrangeable(counts: List[int], last: Optional[int]) -> bool:
    """
    Can items with these class counts be laid out with no two neighbours of
    the same class, given that the previous item belonged to class ``last``?
    """
    total = sum(counts)
    for i, count in enumerate(counts):
        free_slots = total - count + (0 if i == last else 1)
        if count > free_slots:
            return False
    return True


def shuffle_no_repeats(seq: Sequence[Any],
                       equality_fn: Optional[Callable[[Any, Any], bool]] = None) -> List[Any]:
    """
    Shuffle so that no two adjacent items are equal.

    Items are grouped into classes with ``equality_fn`` (default ``==``). At
    each position a class is drawn (weighted by how many of its items remain)
    among the classes that differ from the previous one and still leave an
    arrangeable remainder, so the construction always succeeds when any valid
    arrangement exists.

    Raises:
        InvalidArgumentError: If no arrangement without adjacent repeats exists
    """
    _require_sequence(seq, 'shuffle_no_repeats')
    if equality_fn is not None and not callable(equality_fn):
        raise InvalidArgumentError("Second argument to shuffle_no_repeats() must be a function")
    if equality_fn is None:
        equality_fn = lambda a, b: a == b  # noqa: E731

    representatives: List[Any] = []
    members: List[List[Any]] = []
    for item in seq:
        for class_index, representative in enumerate(representatives):
            if equality_fn(representative, item):
                members[class_index].append(item)
                break
        else:
            representatives.append(item)
            members.append([item])

    counts = [len(m) for m in members]
    if not _arrangeable(counts, None):
        raise InvalidArgumentError(
            f"No ordering without adjacent repeats exists ({max(counts)} equal items out of {len(seq)})"
        )

    pools = [shuffle(m) for m in members]
    out = []
    last = None
    for _ in range(len(seq)):
        candidates = []
        for class_index, count in enumerate(counts):
            if count == 0 or class_index == last:
                continue
            counts[class_index] -= 1
            if _arrangeable(counts, class_index):
                candidates.append(class_index)
            counts[class_index] += 1

        total = sum(counts[c] for c in candidates)
        pick = _uniform() * total
        chosen = candidates[-1]
        for c in candidates:
            if pick < counts[c]:
                chosen = c
                break
            pick -= counts[c]

        out.append(pools[chosen].pop())
        counts[chosen] -= 1
        last = chosen
    return out


def factorial(factor_levels: Mapping, repetitions: Union[int, Sequence[int]] = 1,
              unpack: bool = False):
    """
    Build a full factorial design and repeat it.

    Args:
        factor_levels: Mapping of factor name -> list of levels
        repetitions: Repetitions per cell (see repeat())
        unpack: Return a mapping of parallel lists

    Example:
        >>> factorial({'color': ['red', 'blue'], 'size': [1, 2]}, repetitions=2)
        # 8 shuffled cells such as {'color': 'blue', 'size': 1}
    """
    if not isinstance(factor_levels, Mapping):
        raise InvalidArgumentError("First argument to factorial() must be a mapping of factor levels")

    design: List[Dict[str, Any]] = [{}]
    for factor_name, levels in factor_levels.items():
        design = [dict(cell, **{factor_name: level}) for cell in design for level in levels]
    return repeat(design, repetitions, unpack)


def random_int(lower: int, upper: int) -> int:
    """Random integer from ``lower`` to ``upper``, both inclusive."""
    if upper < lower:
        raise InvalidArgumentError("Upper boundary must be greater than or equal to lower boundary")
    return lower + _random_below(upper - lower + 1)


def sample_bernoulli(p: float) -> int:
    """1 with probability ``p``, else 0."""
    return 1 if _uniform() < p else 0


def sample_normal(mean: float, standard_deviation: float) -> float:
    # Box-Muller; u must be strictly positive for the log
    u = 0.0
    while u == 0.0:
        u = _uniform()
    v = _uniform()
    z = math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)
    return z * standard_deviation + mean


def sample_exponential(rate: float) -> float:
    u = 0.0
    while u == 0.0:
        u = _uniform()
    return -math.log(u) / rate


def sample_ex_gaussian(mean: float, standard_deviation: float, rate: float,
                       positive: bool = False) -> float:
    """
    Sample from an ex-Gaussian distribution (normal + exponential), the usual
    shape of response-time distributions.

    Args:
        positive: Redraw until the sample is > 0
    """
    s = sample_normal(mean, standard_deviation) + sample_exponential(rate)
    if positive:
        while s <= 0:
            s = sample_normal(mean, standard_deviation) + sample_exponential(rate)
    return s


def random_id(length: int = 32) -> str:
    """Random lowercase alphanumeric identifier (e.g. for anonymous subject ids)."""
    return ''.join(_ID_CHARS[_random_below(len(_ID_CHARS))] for _ in range(length))
