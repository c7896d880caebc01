"""
Fractional Rank Keys
====================

Lexicographically sortable sibling position keys over the base-36
alphabet 0-9a-z. Keys compare as plain strings.

GUARANTEES:
- rank_between(a, b) sorts strictly between a and b for a < b
- rank_before(a) < a and rank_after(a) > a
- No exceptions: callers supply non-empty keys from the alphabet
"""

from __future__ import annotations
from typing import Iterable, List, Optional

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(ALPHABET)

ZERO = ALPHABET[0]
MIDDLE = ALPHABET[BASE // 2]             # 'i'
HIGH = ALPHABET[int(BASE * 0.75)]        # 'r'

DEFAULT_LOWER = ALPHABET[1]
DEFAULT_UPPER = ALPHABET[-1] * 2


def _digit(char: str) -> int:
    value = ALPHABET.find(char)
    return value if value >= 0 else 0


def _halve(digits: List[int]) -> List[int]:
    """Divide a base-36 digit list by two, extending by one digit on remainder."""
    half: List[int] = []
    remainder = 0
    for digit in digits:
        current = remainder * BASE + digit
        half.append(current // 2)
        remainder = current % 2
    if remainder:
        half.append(BASE // 2)
    return half


def _encode(digits: Iterable[int]) -> str:
    return "".join(ALPHABET[d] for d in digits)


def initial_rank() -> str:
    """Midpoint of the key space, leaving room on both sides."""
    return "n"


def rank_between(a: str, b: str) -> str:
    """
    Key strictly between a and b (precondition: a < b).

    Pads both keys to equal length, adds them digit-wise and halves
    the sum. Falls back to a + middle digit when there is no room.
    """
    width = max(len(a), len(b))
    da = [_digit(c) for c in a.ljust(width, ZERO)]
    db = [_digit(c) for c in b.ljust(width, ZERO)]

    total: List[int] = []
    carry = 0
    for x, y in zip(reversed(da), reversed(db)):
        s = x + y + carry
        total.append(s % BASE)
        carry = s // BASE
    if carry:
        total.append(carry)
    total.reverse()

    halved = _halve(total)
    # A carry digit halves to a leading zero
    if carry:
        halved = halved[1:]
    result = _encode(halved)

    if result <= a or result >= b:
        return a + MIDDLE
    return result


def rank_before(a: str) -> str:
    """Key strictly before a: halve a as a fraction."""
    result = _encode(_halve([_digit(c) for c in a]))
    if not result or result >= a:
        return ZERO + a
    return result


def rank_after(a: str) -> str:
    """
    Key strictly after a.

    O(1) but unbounded: chained calls grow the key by one digit each.
    Prefer rank_between when the upper neighbour is known.
    """
    return a + HIGH


def generate_ranks(
    count: int,
    before: Optional[str] = None,
    after: Optional[str] = None,
) -> List[str]:
    """count ascending keys between the optional bounds."""
    ranks: List[str] = []
    lower = before if before is not None else DEFAULT_LOWER
    upper = after if after is not None else DEFAULT_UPPER
    for _ in range(count):
        lower = rank_between(lower, upper)
        ranks.append(lower)
    return ranks


def average_key_length(keys: Iterable[str]) -> float:
    """Mean key length; 0.0 for an empty collection."""
    lengths = [len(k) for k in keys]
    if not lengths:
        return 0.0
    return sum(lengths) / len(lengths)


def spaced_ranks(count: int) -> List[str]:
    """
    count ascending fixed-width keys spread evenly over the key space.

    Used to re-space siblings whose keys have grown long; unlike
    generate_ranks the keys do not converge on the upper bound.
    """
    if count <= 0:
        return []
    width = 1
    while BASE ** width < (count + 1) * BASE:
        width += 1
    step = BASE ** width // (count + 1)
    ranks: List[str] = []
    for i in range(1, count + 1):
        value = i * step
        digits = []
        for _ in range(width):
            digits.append(value % BASE)
            value //= BASE
        ranks.append(_encode(reversed(digits)))
    return ranks
