"""
Exception hierarchy for XIP.

All exceptions inherit from XIPError. The five top-level kinds decide how a
failure is handled:

- InvalidParameters: malformed input, rejected immediately, never retried
- StateConflict: the ledger is not in the state the call requires; the
  caller re-reads ledger state instead of retrying blindly
- NotAuthorized: wrong caller for the operation, fatal for the call
- ExternalServiceFailure: RPC or remote service trouble; polling components
  retry on their next tick, request/response callers see the cause
- VerificationTimeout: proof polling exhausted, needs manual intervention
"""

from typing import Optional


class XIPError(Exception):
    """Base exception for all XIP errors."""

    kind = "XIPError"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        body = {"error": self.name, "kind": self.kind, "message": self.message}
        body.update(self.details)
        return body


# =============================================================================
# Kinds
# =============================================================================


class InvalidParameters(XIPError):
    """Malformed addresses, mismatched arrays, unsupported chain id."""
    kind = "InvalidParameters"


class StateConflict(XIPError):
    """Operation not allowed in the current ledger state."""
    kind = "StateConflict"


class NotAuthorized(XIPError):
    """Caller is not allowed to perform the operation."""
    kind = "NotAuthorized"


class ExternalServiceFailure(XIPError):
    """RPC timeout, proof service unreachable, relayer down."""
    kind = "ExternalServiceFailure"


class VerificationTimeout(XIPError):
    """Proof status polling exhausted without a terminal status."""
    kind = "VerificationTimeout"


class NotFound(XIPError):
    """Requested record does not exist."""
    kind = "NotFound"


# =============================================================================
# Ledger rejections
# =============================================================================


class IntentNotFound(NotFound):
    pass


class BidTooLow(StateConflict):
    pass


class AuctionEnded(StateConflict):
    pass


class AuctionNotEnded(StateConflict):
    pass


class NoBids(StateConflict):
    pass


class InvalidState(StateConflict):
    pass


class NotDeposited(StateConflict):
    pass


class AlreadyCompleted(StateConflict):
    pass


class AlreadySolved(StateConflict):
    pass


class CancelNotAllowed(StateConflict):
    pass


class InsufficientFunds(StateConflict):
    pass


class NotAuthorizedRelayer(NotAuthorized):
    pass


class NotWinningSolver(NotAuthorized):
    pass


class NotOwner(NotAuthorized):
    pass


# =============================================================================
# Chain / transaction errors
# =============================================================================


class InvalidSignature(NotAuthorized):
    pass


class NonceMismatch(StateConflict):
    """Submitted nonce does not equal the sender's transaction count."""

    def __init__(self, message: str = "", expected: Optional[int] = None, **details):
        super().__init__(message, expected=expected, **details)
        self.expected = expected


class TransactionReverted(StateConflict):
    """A mined transaction reverted; carries the ledger's revert reason."""

    def __init__(
        self, message: str = "", reason: str = "", tx_hash: str = "", error_name: str = "", **details
    ):
        super().__init__(
            message or f"Transaction reverted: {reason}",
            reason=reason, tx_hash=tx_hash, error_name=error_name, **details
        )
        self.reason = reason
        self.tx_hash = tx_hash
        self.error_name = error_name


# =============================================================================
# Settlement errors
# =============================================================================


class NotSolved(StateConflict):
    """Destination delivery has not been recorded on-chain."""
    pass


class SolverMismatch(NotAuthorized):
    pass


class SettlementRejected(StateConflict):
    """Local gates passed but the origin ledger rejected settlement."""
    pass


class ProofRejected(StateConflict):
    """Proof service reported a terminal Failed status."""
    pass


# Revert reasons raised by the ledger, by exception class name. Used to
# turn a receipt's revert string back into a typed error.
LEDGER_ERRORS = {
    cls.__name__: cls
    for cls in (
        IntentNotFound,
        BidTooLow,
        AuctionEnded,
        AuctionNotEnded,
        NoBids,
        InvalidState,
        NotDeposited,
        AlreadyCompleted,
        AlreadySolved,
        CancelNotAllowed,
        InsufficientFunds,
        NotAuthorizedRelayer,
        NotWinningSolver,
        NotOwner,
        InvalidParameters,
    )
}
