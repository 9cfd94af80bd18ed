"""
Solver state - per-intent bid tracking and the engine's inbox messages.

Everything here is owned by a single SolverEngine instance; nothing is
module-global.
"""

import asyncio
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Union

from xip.core.intent.intent import extract_local_id


# =============================================================================
# Bid state
# =============================================================================


class BidPhase(IntEnum):
    BIDDING = 0       # Auction running, bidding loop active
    WON = 1           # Highest bidder at auction end
    SETTLING = 2      # Finalize/deposit/deliver/settle sequence running
    DONE = 3          # Settlement confirmed
    ABANDONED = 4     # Lost, unaffordable, or failed


@dataclass
class SolverBidState:
    """
    What the engine knows about one intent it is competing for.

    target_bid is the opening bid; ceiling is the most the engine can put up
    (balance minus buffer, capped by max_bid_amount).
    """
    intent_id: int
    origin_chain_id: int
    destination_chain_id: int
    user: str
    source_token: str
    destination_token: str
    source_amount: int
    expected_destination_amount: int
    reward: int
    end_time: int
    target_bid: int
    ceiling: int
    current_bid: int = 0
    is_winning: bool = False
    phase: BidPhase = BidPhase.BIDDING
    settle_attempts: int = 0
    task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    @property
    def local_id(self) -> int:
        return extract_local_id(self.intent_id)

    def to_dict(self) -> dict:
        return {
            "intentId": str(self.intent_id),
            "localId": self.local_id,
            "originChainId": self.origin_chain_id,
            "destinationChainId": self.destination_chain_id,
            "sourceAmount": str(self.source_amount),
            "expectedDestinationAmount": str(self.expected_destination_amount),
            "reward": str(self.reward),
            "endTime": self.end_time,
            "targetBid": str(self.target_bid),
            "ceiling": str(self.ceiling),
            "currentBid": str(self.current_bid),
            "isWinning": self.is_winning,
            "phase": self.phase.name,
            "settleAttempts": self.settle_attempts,
        }


# =============================================================================
# Manifest lookup result
# =============================================================================


@dataclass
class ManifestFound:
    recipients: List[str]
    amounts: List[int]

    @property
    def total(self) -> int:
        return sum(self.amounts)


@dataclass
class ManifestMissing:
    reason: str = "not found"


ManifestLookup = Union[ManifestFound, ManifestMissing]


# =============================================================================
# Inbox messages
# =============================================================================


@dataclass
class IntentDiscovered:
    """An IntentCreated log seen on the origin chain."""
    chain_id: int
    intent_id: int
    user: str
    source_token: str
    destination_token: str
    source_amount: int
    expected_destination_amount: int
    reward: int
    end_time: int


@dataclass
class AuctionWon:
    """An IntentWon log seen on the origin chain."""
    chain_id: int
    intent_id: int
    solver: str
    amount: int


@dataclass
class IntentFinished:
    """A per-intent task is done with the intent, for whatever reason."""
    intent_id: int
    phase: BidPhase
    detail: str = ""


EngineMessage = Union[IntentDiscovered, AuctionWon, IntentFinished]
