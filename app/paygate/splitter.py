# app/paygate/splitter.py
"""
Revenue split between the creator and the platform.

Integer-only arithmetic: the platform fee is floor(total * bps / 10000) and
the creator receives the remainder, so the two parts always add back up to
the total regardless of magnitude.
"""
from typing import Tuple

from app.paygate.errors import InvalidFeeRate

BPS_DENOMINATOR = 10_000
DEFAULT_PLATFORM_FEE_BPS = 2000  # 20%


def validate_fee_rate(platform_fee_bps: int) -> int:
    """Return the fee rate unchanged, or raise InvalidFeeRate."""
    if isinstance(platform_fee_bps, bool) or not isinstance(platform_fee_bps, int):
        raise InvalidFeeRate(f"Platform fee must be an integer number of basis points, got {platform_fee_bps!r}")
    if not 0 <= platform_fee_bps <= BPS_DENOMINATOR:
        raise InvalidFeeRate(
            f"Platform fee {platform_fee_bps} bps outside [0, {BPS_DENOMINATOR}]",
            details={"platform_fee_bps": platform_fee_bps},
        )
    return platform_fee_bps


def split(total_atomic: int, platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS) -> Tuple[int, int]:
    """
    Split a payment into (creator_amount, platform_fee).

    Args:
        total_atomic: Total paid, in token atomic units (non-negative)
        platform_fee_bps: Platform fee in basis points, 0-10000

    Returns:
        Tuple of (creator_amount, platform_fee)

    Raises:
        InvalidFeeRate: If the fee rate is outside [0, 10000]
        ValueError: If the total is negative or not an integer
    """
    validate_fee_rate(platform_fee_bps)
    if isinstance(total_atomic, bool) or not isinstance(total_atomic, int) or total_atomic < 0:
        raise ValueError(f"Total must be a non-negative integer, got {total_atomic!r}")

    platform_fee = total_atomic * platform_fee_bps // BPS_DENOMINATOR
    creator_amount = total_atomic - platform_fee
    return creator_amount, platform_fee
