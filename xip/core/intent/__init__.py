"""Intent model and the bridge ledger"""
from xip.core.intent.intent import (
    Intent,
    IntentState,
    Bid,
    compose_intent_id,
    extract_local_id,
    extract_chain_id,
    LOCAL_ID_BITS,
)
from xip.core.intent.ledger import IntentLedger, WRITE_METHODS, VIEW_METHODS

__all__ = [
    "Intent",
    "IntentState",
    "Bid",
    "compose_intent_id",
    "extract_local_id",
    "extract_chain_id",
    "LOCAL_ID_BITS",
    "IntentLedger",
    "WRITE_METHODS",
    "VIEW_METHODS",
]
