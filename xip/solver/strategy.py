"""
Solver strategy - the pure arithmetic behind bidding and delivery.

All amounts are integers in the token's smallest unit. Configured fractions
are turned into basis points once, so no float ever touches an amount.
"""

from typing import Callable, List, Optional, Tuple

from xip.core.config import SolverConfig
from xip.solver.state import ManifestFound, ManifestLookup, SolverBidState

BPS = 10_000


def to_bps(fraction: float) -> int:
    """0.02 -> 200"""
    if not 0 <= fraction < 1:
        raise ValueError(f"Fraction must be in [0, 1), got {fraction}")
    return int(round(fraction * BPS))


# =============================================================================
# Profitability
# =============================================================================


def bid_ceiling(balance: int, config: SolverConfig) -> int:
    """Most the engine may commit: balance minus buffer, capped by max_bid_amount."""
    spendable = balance * (BPS - to_bps(config.balance_buffer)) // BPS
    return min(spendable, config.max_bid_amount)


def compute_target_bid(
    source_amount: int,
    reward: int,
    balance: int,
    config: SolverConfig,
    expected_destination_amount: int = 0,
) -> Optional[int]:
    """
    Opening bid for an intent, or None to sit the auction out.

    target = (source_amount + reward) minus the profit margin. The intent is
    skipped when the target exceeds bid_ceiling(balance), or when it is below
    expected_destination_amount (the ledger would reject such a bid).
    """
    min_profitable = source_amount + reward
    target = min_profitable - min_profitable * to_bps(config.min_profit_margin) // BPS

    if target <= 0 or target > bid_ceiling(balance, config) or target < expected_destination_amount:
        return None
    return target


def next_bid(state: SolverBidState, highest_bid: int, config: SolverConfig) -> Optional[int]:
    """
    Bid to place this tick given the current highest bid.

    Returns None when the next minimal outbid exceeds the ceiling.
    """
    if state.current_bid == 0:
        candidate = max(state.target_bid, highest_bid + config.bid_increment) if highest_bid else state.target_bid
    else:
        candidate = highest_bid + config.bid_increment

    candidate = max(candidate, state.expected_destination_amount)
    if candidate > state.ceiling:
        return None
    return candidate


# =============================================================================
# Delivery
# =============================================================================


def rescale_amounts(amounts: List[int], expected: int) -> List[int]:
    """
    Scale amounts down so they sum to exactly expected.

    Each amount is floored proportionally (minimum 1) and the rounding
    remainder goes to the last recipient. Totals at or below expected are
    returned unchanged.
    """
    total = sum(amounts)
    if total <= expected:
        return list(amounts)
    if expected < len(amounts):
        raise ValueError(f"Cannot split {expected} across {len(amounts)} recipients")

    scaled = [max(amount * expected // total, 1) for amount in amounts]
    scaled[-1] = expected - sum(scaled[:-1])

    # Minimum-1 clamping can push the head past expected; borrow from the largest
    while scaled[-1] < 1:
        donor = max(range(len(scaled) - 1), key=lambda i: scaled[i])
        scaled[donor] -= 1
        scaled[-1] += 1
    return scaled


def plan_delivery(
    lookup: ManifestLookup,
    expected: int,
    fallback_address: Callable[[], str],
) -> Tuple[List[str], List[int]]:
    """
    Recipients and amounts for the destination solve call.

    Missing manifest: the full expected amount goes to one fresh address.
    """
    if isinstance(lookup, ManifestFound):
        return list(lookup.recipients), rescale_amounts(lookup.amounts, expected)
    return [fallback_address()], [expected]
