"""
Reserve Math - integer basis-point calculations.

All ratios are expressed in basis points (10000 = 100%) and computed with
integer arithmetic so repeated cycles never drift:
- Unit normalization (raw token integers -> whole units)
- Solvency ratio (actual backing vs claimed liability)
- Utilization (borrowed vs deposited)
- Backing-gap proxy for liquid staking tokens
"""

BPS = 10_000


def to_units(raw_amount: int, decimals: int) -> int:
    """
    Convert a raw on-chain integer to whole units.

    Args:
        raw_amount: Raw integer as returned by the contract
        decimals: Token decimals

    Returns:
        Whole units, floored
    """
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return int(raw_amount) // (10 ** decimals)


def solvency_bps(actual: int, claimed: int) -> int:
    """
    Calculate solvency ratio in basis points.

    An empty pool (claimed == 0) has nothing to back and is defined fully
    healthy rather than a division error.

    Args:
        actual: Assets actually accounted for
        claimed: Liability owed to depositors

    Returns:
        floor(actual * 10000 / claimed), or 10000 when claimed is 0
    """
    if claimed <= 0:
        return BPS
    return (actual * BPS) // claimed


def utilization_bps(borrowed: int, claimed: int) -> int:
    """Borrowed share of deposits in basis points (0 for an empty pool)."""
    if claimed <= 0:
        return 0
    return (borrowed * BPS) // claimed


def backing_gap_bps(solvency: int) -> int:
    """
    Utilization proxy for protocols without a borrow concept.

    Returns how far below full backing the protocol sits; over-backed
    protocols read 0.
    """
    if solvency < BPS:
        return BPS - solvency
    return 0


def share_bps(part: int, total: int) -> int:
    """Share of ``part`` in ``total`` in basis points (0 if total is 0)."""
    if total <= 0:
        return 0
    return (part * BPS) // total


def format_bps(value: int) -> str:
    """Render basis points as a percentage string, e.g. 9512 -> '95.12%'."""
    return f"{value / 100:.2f}%"
