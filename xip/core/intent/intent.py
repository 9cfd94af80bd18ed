"""
Intent Layer - cross-chain exchange offers and their bids.

An intent asks: "take sourceAmount + reward of my source token on this chain,
and deliver expectedDestinationAmount of the destination token on the other
chain". Solvers bid in an ascending auction for the right to fill it.

Intent identifiers
------------------
Ids are composite: the origin chain id lives in the bits above 128 and the
per-ledger counter in the low 128 bits. The same numeric counter can be
reused on every chain without two intents ever sharing an id, and the
destination ledger records deliveries under the very same id.
"""

import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

from xip.crypto import ZERO_ADDRESS


# =============================================================================
# Constants
# =============================================================================

LOCAL_ID_BITS = 128
LOCAL_ID_MASK = (1 << LOCAL_ID_BITS) - 1


# =============================================================================
# Enums
# =============================================================================


class IntentState(IntEnum):
    """Lifecycle state of an intent on its origin ledger."""
    CREATED = 0       # Auction open (or ended with no finalized winner)
    FINALIZED = 1     # Winner fixed, awaiting deposit
    DEPOSITED = 2     # Winner's bid escrowed, awaiting settlement
    COMPLETED = 3     # Settled to the solver (terminal)
    CANCELLED = 4     # Refunded to the user (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in (IntentState.COMPLETED, IntentState.CANCELLED)


# =============================================================================
# Identifiers
# =============================================================================


def compose_intent_id(chain_id: int, local_id: int) -> int:
    """Embed the origin chain id above the local counter."""
    if chain_id < 0 or local_id < 0:
        raise ValueError("chain_id and local_id must be non-negative")
    if local_id > LOCAL_ID_MASK:
        raise ValueError("local_id exceeds 128 bits")
    return (chain_id << LOCAL_ID_BITS) | local_id


def extract_local_id(intent_id: int) -> int:
    """Per-ledger counter part of an intent id."""
    return intent_id & LOCAL_ID_MASK


def extract_chain_id(intent_id: int) -> int:
    """Origin chain id embedded in an intent id."""
    return intent_id >> LOCAL_ID_BITS


# =============================================================================
# Bid
# =============================================================================


@dataclass
class Bid:
    """The single retained (highest) bid of an intent."""
    intent_id: int
    solver: str
    amount: int
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "intentId": str(self.intent_id),
            "solver": self.solver,
            "amount": str(self.amount),
            "timestamp": self.timestamp,
        }


# =============================================================================
# Intent
# =============================================================================


@dataclass
class Intent:
    """
    A cross-chain exchange offer as recorded by its origin ledger.

    Attributes:
        intent_id: Composite id (origin chain id << 128 | local counter)
        user: Payer and collateral owner
        source_token: Asset escrowed on the origin ledger
        destination_token: Asset delivered on the destination ledger
        source_amount: Escrowed amount paid to the solver on success
        expected_destination_amount: What the solver must deliver
        reward: Extra origin-chain amount paid to the solver
        auction_end_time: Auction open while now < auction_end_time
        state: Lifecycle state
        highest_bid: Current highest bid (None before the first bid)
        winning_solver: Set at finalization
        winning_bid: Set at finalization
    """
    intent_id: int
    user: str
    source_token: str
    destination_token: str
    source_amount: int
    expected_destination_amount: int
    reward: int
    auction_end_time: int
    state: IntentState = IntentState.CREATED
    highest_bid: Optional[Bid] = None
    winning_solver: str = ZERO_ADDRESS
    winning_bid: int = 0
    created_at: int = field(default_factory=lambda: int(time.time()))
    finalized_at: Optional[int] = None

    @property
    def local_id(self) -> int:
        return extract_local_id(self.intent_id)

    @property
    def escrow_amount(self) -> int:
        """What the user locks at creation."""
        return self.source_amount + self.reward

    @property
    def settlement_payout(self) -> int:
        """What the winning solver receives at settlement."""
        return self.source_amount + self.reward + self.winning_bid

    @property
    def deposited(self) -> bool:
        return self.state in (IntentState.DEPOSITED, IntentState.COMPLETED)

    @property
    def completed(self) -> bool:
        return self.state == IntentState.COMPLETED

    def auction_open(self, now: int) -> bool:
        return self.state == IntentState.CREATED and now < self.auction_end_time

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict (amounts as decimal strings)."""
        return {
            "intentId": str(self.intent_id),
            "localId": str(self.local_id),
            "user": self.user,
            "sourceToken": self.source_token,
            "destinationToken": self.destination_token,
            "sourceAmount": str(self.source_amount),
            "expectedDestinationAmount": str(self.expected_destination_amount),
            "reward": str(self.reward),
            "auctionEndTime": self.auction_end_time,
            "state": self.state.name,
            "deposited": self.deposited,
            "completed": self.completed,
            "winningSolver": self.winning_solver,
            "winningBid": str(self.winning_bid),
            "highestBid": self.highest_bid.to_dict() if self.highest_bid else None,
        }

    def __repr__(self) -> str:
        return (
            f"Intent(id={self.local_id}@{extract_chain_id(self.intent_id)}, "
            f"state={self.state.name}, amount={self.source_amount})"
        )
