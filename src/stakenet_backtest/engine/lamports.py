"""Checked lamport arithmetic.

Balances are unsigned 64-bit amounts on chain. Python ints never wrap, so
every operation here checks the result against the u64 range and raises
instead of clamping.
"""

from ..errors import LamportArithmeticError

U64_MAX = 2**64 - 1
MAX_BPS = 10_000
LAMPORTS_PER_SOL = 1_000_000_000


def check_u64(value: int, what: str = "value") -> int:
    """Return value unchanged if it fits in a u64, else raise."""
    if value < 0 or value > U64_MAX:
        raise LamportArithmeticError(f"{what} out of u64 range: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    return check_u64(a + b, "sum")


def checked_sub(a: int, b: int) -> int:
    return check_u64(a - b, "difference")


def checked_mul(a: int, b: int) -> int:
    return check_u64(a * b, "product")


def bps_of(total: int, bps: int) -> int:
    """floor(total * bps / 10000), with the intermediate product checked as u128."""
    if bps < 0 or bps > MAX_BPS:
        raise LamportArithmeticError(f"bps out of range: {bps}")
    product = total * bps
    if product < 0 or product > 2**128 - 1:
        raise LamportArithmeticError(f"cap product out of range: {product}")
    return check_u64(product // MAX_BPS, "cap")


def to_sol(lamports: int) -> float:
    """Lamports as SOL, for log messages."""
    return lamports / LAMPORTS_PER_SOL
