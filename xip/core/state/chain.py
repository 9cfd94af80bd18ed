"""
Local Chain - an in-process ledger host for one bridged network.

Provides what an Intent Ledger client expects from a chain:
- Signed transactions with strict per-sender nonces
- One block per transaction, timestamps from an injectable clock
- Receipts (status 1 = success, 0 = reverted with a reason)
- Event logs queryable by block range

A reverted transaction leaves ledger and token state untouched but still
consumes the sender's nonce and is mined into a block.
"""

import inspect
import json
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from xip.core.errors import (
    InvalidParameters,
    InvalidSignature,
    NonceMismatch,
    NotFound,
    XIPError,
)
from xip.core.intent.ledger import VIEW_METHODS, WRITE_METHODS, IntentLedger
from xip.core.state.token import TokenLedger
from xip.crypto import (
    bytes_to_hex,
    hex_to_bytes,
    keccak256,
    random_address,
    recover_address,
    same_address,
    sign,
    to_checksum_address,
)
from xip.utils.logger import get_logger

logger = get_logger("chain")

# Token contract methods reachable by transaction
TOKEN_METHODS = ("approve", "transfer")


# =============================================================================
# Clock
# =============================================================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


# =============================================================================
# Transactions
# =============================================================================


def encode_transaction(tx: Dict[str, Any]) -> bytes:
    """Canonical JSON encoding of the signed fields."""
    body = {k: tx[k] for k in ("to", "method", "args", "nonce", "sender", "chainId")}
    return json.dumps(body, sort_keys=True, separators=(",", ":")).encode()


def signing_hash(tx: Dict[str, Any]) -> bytes:
    return keccak256(encode_transaction(tx))


def sign_transaction(tx: Dict[str, Any], private_key: bytes) -> Dict[str, Any]:
    """Return a copy of tx carrying a hex signature."""
    signed = dict(tx)
    signed["signature"] = bytes_to_hex(sign(signing_hash(tx), private_key))
    return signed


def transaction_hash(signed_tx: Dict[str, Any]) -> str:
    return bytes_to_hex(keccak256(encode_transaction(signed_tx) + hex_to_bytes(signed_tx["signature"])))


# =============================================================================
# Blocks, Logs, Receipts
# =============================================================================


@dataclass
class LogEntry:
    """An event emitted by the ledger, stamped with its position."""
    event: str
    args: Dict[str, Any]
    address: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass
class Receipt:
    """Outcome of a mined transaction."""
    tx_hash: str
    status: int                     # 1 success, 0 reverted
    block_number: int
    sender: str
    method: str
    result: Any = None
    revert_reason: str = ""
    error_name: str = ""            # ledger exception class on revert
    logs: List[LogEntry] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == 1


@dataclass
class Block:
    number: int
    timestamp: int
    tx_hashes: List[str] = field(default_factory=list)


# =============================================================================
# Local Chain
# =============================================================================


class LocalChain:
    """
    A single chain hosting one IntentLedger and its tokens.

    Attributes:
        chain_id: Network identifier
        tokens: ERC20-style balances for every token
        ledger: The bridge contract
        blocks: Mined blocks, genesis first
    """

    def __init__(
        self,
        chain_id: int,
        owner: str,
        clock: Callable[[], float] = time.time,
        bridge_address: Optional[str] = None,
        cancel_grace_period: int = 3600,
        deposit_grace_period: int = 3600,
    ):
        self.chain_id = chain_id
        self.clock = clock
        self.tokens = TokenLedger()
        self.ledger = IntentLedger(
            chain_id=chain_id,
            tokens=self.tokens,
            clock=clock,
            address=bridge_address or random_address(),
            owner=owner,
            cancel_grace_period=cancel_grace_period,
            deposit_grace_period=deposit_grace_period,
        )

        self.blocks: List[Block] = [Block(number=0, timestamp=int(clock()))]
        self.logs: List[LogEntry] = []
        self.receipts: Dict[str, Receipt] = {}
        self.nonces: Dict[str, int] = defaultdict(int)

        logger.info(f"Chain {chain_id} started, bridge at {self.ledger.address}")

    @property
    def bridge_address(self) -> str:
        return self.ledger.address

    @property
    def block_number(self) -> int:
        return self.blocks[-1].number

    def timestamp(self) -> int:
        return int(self.clock())

    def get_transaction_count(self, address: str) -> int:
        return self.nonces[address.lower()]

    # =========================================================================
    # Transaction Processing
    # =========================================================================

    def submit_transaction(self, signed_tx: Dict[str, Any]) -> str:
        """
        Validate, execute and mine a signed transaction.

        Raises:
            InvalidSignature: signature does not recover to tx["sender"]
            NonceMismatch: nonce != sender's transaction count
            InvalidParameters: unknown method, wrong arguments or wrong chain

        Returns:
            Transaction hash (look up the receipt for the outcome)
        """
        if signed_tx.get("chainId") != self.chain_id:
            raise InvalidParameters(f"Transaction for chain {signed_tx.get('chainId')}, this is {self.chain_id}")

        try:
            signer = recover_address(signing_hash(signed_tx), hex_to_bytes(signed_tx["signature"]))
        except (KeyError, ValueError) as e:
            raise InvalidSignature(f"Malformed transaction signature: {e}")
        if signer is None or not same_address(signer, signed_tx["sender"]):
            raise InvalidSignature("Signature does not match sender")

        expected = self.get_transaction_count(signer)
        if signed_tx["nonce"] != expected:
            raise NonceMismatch(
                f"Nonce {signed_tx['nonce']} does not match expected {expected}",
                expected=expected,
            )

        to = signed_tx["to"]
        method = signed_tx["method"]
        args = list(signed_tx.get("args", []))
        if same_address(to, self.ledger.address):
            if method not in WRITE_METHODS:
                raise InvalidParameters(f"Unknown ledger method: {method}")
            target = getattr(self.ledger, WRITE_METHODS[method])
        elif method in TOKEN_METHODS:
            target = self._token_call(to, method)
        else:
            raise InvalidParameters(f"Unknown method {method} on {to}")

        # Malformed calls are refused like any other inadmissible tx: no nonce, no block
        try:
            inspect.signature(target).bind(signer, *args)
        except TypeError as e:
            raise InvalidParameters(f"Bad arguments for {method}: {e}")

        tx_hash = transaction_hash(signed_tx)
        self.nonces[signer.lower()] = expected + 1
        block = Block(number=self.block_number + 1, timestamp=self.timestamp(), tx_hashes=[tx_hash])

        token_state = self.tokens.snapshot()
        ledger_state = self.ledger.snapshot()
        try:
            result = target(signer, *args)
        except XIPError as e:
            self.tokens.restore(token_state)
            self.ledger.restore(ledger_state)
            receipt = Receipt(
                tx_hash=tx_hash,
                status=0,
                block_number=block.number,
                sender=signer,
                method=method,
                revert_reason=e.message,
                error_name=e.name,
            )
            logger.debug(f"Tx {tx_hash[:10]} {method} reverted: {e.name}: {e.message}")
        else:
            logs = []
            for event, event_args in self.ledger.drain_events():
                entry = LogEntry(
                    event=event,
                    args=event_args,
                    address=self.ledger.address,
                    block_number=block.number,
                    tx_hash=tx_hash,
                    log_index=len(self.logs),
                )
                self.logs.append(entry)
                logs.append(entry)
            receipt = Receipt(
                tx_hash=tx_hash,
                status=1,
                block_number=block.number,
                sender=signer,
                method=method,
                result=result,
                logs=logs,
            )

        self.blocks.append(block)
        self.receipts[tx_hash] = receipt
        return tx_hash

    def _token_call(self, token: str, method: str) -> Callable:
        if method == "approve":
            return lambda sender, spender, amount: self.tokens.approve(token, sender, spender, amount)
        return lambda sender, to, amount: self.tokens.transfer(token, sender, to, amount)

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        return self.receipts.get(tx_hash)

    # =========================================================================
    # Reads
    # =========================================================================

    def call(self, method: str, *args) -> Any:
        """Execute a ledger view."""
        if method not in VIEW_METHODS:
            raise InvalidParameters(f"Unknown view method: {method}")
        return getattr(self.ledger, VIEW_METHODS[method])(*args)

    def get_logs(self, from_block: int, to_block: int, event: Optional[str] = None) -> List[LogEntry]:
        """Events mined in [from_block, to_block], in block order."""
        if from_block > to_block:
            return []
        return [
            log for log in self.logs
            if from_block <= log.block_number <= to_block and (event is None or log.event == event)
        ]

    def get_block(self, number: int) -> Block:
        if number < 0 or number > self.block_number:
            raise NotFound(f"Block {number} not found")
        return self.blocks[number]

    # =========================================================================
    # Genesis helpers
    # =========================================================================

    def mint(self, token: str, to: str, amount: int) -> None:
        """Faucet; not a transaction."""
        self.tokens.mint(token, to, amount)

    def add_relayer(self, relayer: str) -> None:
        """Authorize a relayer directly (deployment-time setup)."""
        self.ledger.add_relayer(self.ledger.owner, relayer)
        self.ledger.drain_events()

    def balance_of(self, token: str, holder: str) -> int:
        return self.tokens.balance_of(token, holder)

    def stats(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "block_number": self.block_number,
            "bridge_address": to_checksum_address(self.ledger.address),
            "logs": len(self.logs),
            **{f"ledger_{k}": v for k, v in self.ledger.stats().items() if k != "chain_id"},
        }
