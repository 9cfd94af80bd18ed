"""
XIP Solver Module.

Discovers intents, bids for them, delivers on the destination chain and
asks the relayer to release the origin escrow.
"""

from xip.solver.state import BidPhase, SolverBidState, ManifestFound, ManifestMissing
from xip.solver.strategy import compute_target_bid, next_bid, rescale_amounts, plan_delivery
from xip.solver.relayer_client import RelayerClient
from xip.solver.engine import SolverEngine

__all__ = [
    "BidPhase",
    "SolverBidState",
    "ManifestFound",
    "ManifestMissing",
    "compute_target_bid",
    "next_bid",
    "rescale_amounts",
    "plan_delivery",
    "RelayerClient",
    "SolverEngine",
]
