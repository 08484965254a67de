"""Bloom filter over binary digests.

A Bloom filter answers "possibly seen" or "definitely not seen". It never gives a
false negative, and its false-positive rate approaches the configured rate as the
number of distinct items approaches the configured capacity. Going past the
capacity only raises the false-positive rate.

The k bit positions of an item are derived from two base hashes by
Dillinger-Manolios double hashing::

    index_i = |primary + i * secondary| mod m,    0 <= i < k

Both base hashes are the two 64-bit halves of MurmurHash3 (x64, 128-bit).
"""
import logging
import math
import numbers

import mmh3

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_LOW_64 = (1 << 64) - 1


def default_false_positive_rate(capacity: int) -> float:
    """Return 1/capacity, capped at 0.5 so that a capacity of 1 stays valid."""
    return min(1.0 / capacity, 0.5)


def check_parameters(capacity: int, false_positive_rate: float | None) -> tuple[int, float]:
    """Validate filter parameters, filling in the default rate.

    Raises:
        ConfigurationError: capacity < 1 or rate outside (0, 1)
    """
    if isinstance(capacity, bool) or not isinstance(capacity, numbers.Integral):
        raise ConfigurationError(f"capacity must be an integer, got {capacity!r}")
    if capacity < 1:
        raise ConfigurationError(f"capacity must be > 0, got {capacity}")

    if false_positive_rate is None:
        false_positive_rate = default_false_positive_rate(capacity)
    if isinstance(false_positive_rate, bool) or not isinstance(false_positive_rate, numbers.Real):
        raise ConfigurationError(f"false_positive_rate must be a number, got {false_positive_rate!r}")
    if not 0 < false_positive_rate < 1:
        raise ConfigurationError(
            f"false_positive_rate must be between 0 and 1, exclusive, got {false_positive_rate}")

    return int(capacity), float(false_positive_rate)


def optimal_bit_count(capacity: int, false_positive_rate: float) -> int:
    """m = ceil(n * ln(p) / ln(1 / 2^ln2)), never less than 1."""
    m = math.ceil(capacity * math.log(false_positive_rate) / math.log(1.0 / 2 ** math.log(2.0)))
    return max(m, 1)


def optimal_hash_count(capacity: int, bit_count: int) -> int:
    """k = round(ln2 * m / n), never less than 1."""
    return max(round(math.log(2.0) * bit_count / capacity), 1)


class BloomFilter:
    """Fixed-size, append-only set membership filter for ``bytes`` items.

    Example:
        seen = BloomFilter(2_000_000)
        if digest in seen:
            ...
        else:
            seen.add(digest)
    """

    def __init__(self, capacity: int, false_positive_rate: float | None = None):
        """Size the filter for an expected number of items.

        Args:
            capacity: Anticipated number of distinct items. More can be added, but
                the false-positive rate then exceeds the configured one.
            false_positive_rate: Acceptable false-positive rate in (0, 1). Defaults
                to 1/capacity.

        Raises:
            ConfigurationError: capacity < 1 or rate outside (0, 1)
        """
        self._capacity, self._false_positive_rate = check_parameters(capacity, false_positive_rate)
        self._bit_count = optimal_bit_count(self._capacity, self._false_positive_rate)
        self._hash_count = optimal_hash_count(self._capacity, self._bit_count)
        self._bits = bytearray((self._bit_count + 7) // 8)

        logger.debug(
            f"Bloom filter sized for {self._capacity} items at rate {self._false_positive_rate}: "
            f"m={self._bit_count} bits, k={self._hash_count}")

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def false_positive_rate(self) -> float:
        return self._false_positive_rate

    @property
    def bit_count(self) -> int:
        return self._bit_count

    @property
    def hash_count(self) -> int:
        return self._hash_count

    @property
    def size_in_bytes(self) -> int:
        return len(self._bits)

    def add(self, item: bytes) -> None:
        """Add an item. Items cannot be removed."""
        for index in self._indices(item):
            self._bits[index >> 3] |= 1 << (index & 7)

    def contains(self, item: bytes) -> bool:
        """Return False if the item was definitely never added, True if it possibly was."""
        for index in self._indices(item):
            if not self._bits[index >> 3] & (1 << (index & 7)):
                return False
        return True

    def __contains__(self, item: bytes) -> bool:
        return self.contains(item)

    @property
    def truthiness(self) -> float:
        """Ratio of set bits, e.g. 1 set bit in a 10 bit filter gives 0.1."""
        return int.from_bytes(self._bits).bit_count() / self._bit_count

    def _indices(self, item: bytes):
        value = mmh3.hash128(item, signed=False)
        primary = value & _LOW_64
        secondary = value >> 64
        for i in range(self._hash_count):
            yield abs(primary + i * secondary) % self._bit_count
