"""
XIP Relayer Module.

Verifies destination-chain deliveries (optionally through a zk proof
service) and settles the matching intents on their origin chains.
"""

from xip.relayer.proof import HttpProofVerifier, MockProofVerifier, ProofPoller, JobStatus
from xip.relayer.service import SettlementService, SettleRequest, SettlementReceipt, VerifyResult

__all__ = [
    "HttpProofVerifier",
    "MockProofVerifier",
    "ProofPoller",
    "JobStatus",
    "SettlementService",
    "SettleRequest",
    "SettlementReceipt",
    "VerifyResult",
]
