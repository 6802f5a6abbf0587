"""Counting and index enumeration helpers for wager generation.

Everything works on 0-based positions into a rank-sorted field, so callers
map indices back to horses themselves.

Usage:
    from combinatorics import IndexCombinations, combination_count
    for trio in IndexCombinations(8, 3):
        ...
    assert len(IndexCombinations(8, 3)) == combination_count(8, 3)
"""
from __future__ import annotations

import itertools
from typing import Iterator, Sequence, Tuple


def factorial(n: int) -> int:
    """n! for n >= 0 (0! == 1)."""
    if n < 0:
        raise ValueError(f"factorial undefined for negative n: {n}")
    result = 1
    for i in range(2, n + 1):
        result *= i
    return result


def permutation_count(n: int, r: int) -> int:
    """Number of ordered selections of r items from n, P(n, r)."""
    if r < 0 or n < 0 or r > n:
        return 0
    result = 1
    for i in range(n - r + 1, n + 1):
        result *= i
    return result


def combination_count(n: int, r: int) -> int:
    """Number of unordered selections of r items from n, C(n, r)."""
    if r < 0 or n < 0 or r > n:
        return 0
    r = min(r, n - r)
    result = 1
    for i in range(1, r + 1):
        result = result * (n - r + i) // i
    return result


class IndexCombinations:
    """Restartable sequence of k-subsets of range(n), lexicographic order."""

    def __init__(self, n: int, k: int):
        self.n = max(n, 0)
        self.k = k

    def __iter__(self) -> Iterator[Tuple[int, ...]]:
        if self.k < 0 or self.k > self.n:
            return iter(())
        return itertools.combinations(range(self.n), self.k)

    def __len__(self) -> int:
        return combination_count(self.n, self.k)


class IndexPermutations:
    """Restartable sequence of ordered k-selections of range(n).

    Produced combination by combination, so all orderings of {0, 1} come
    before any ordering that involves index 2.
    """

    def __init__(self, n: int, k: int):
        self.n = max(n, 0)
        self.k = k

    def __iter__(self) -> Iterator[Tuple[int, ...]]:
        for combo in IndexCombinations(self.n, self.k):
            yield from itertools.permutations(combo)

    def __len__(self) -> int:
        return permutation_count(self.n, self.k)


def orderings(indices: Sequence[int], positions: int) -> Iterator[Tuple[int, ...]]:
    """Every ordered pick of *positions* items out of *indices*.

    Used for boxes: a 3-horse exacta box covers orderings(box, 2).
    """
    if positions < 0 or positions > len(indices):
        return iter(())
    return itertools.permutations(tuple(indices), positions)
