"""
Ledger Client - the async surface through which off-chain components talk
to a bridged chain.

LedgerClient is the protocol; any JSON-RPC backed implementation only has to
provide these coroutines. LocalLedgerClient drives an in-process LocalChain.

Nonces: each client keeps its own counter, initialised from the chain's
transaction count on first use and resynchronised after a NonceMismatch.
Submissions are serialised per client by an asyncio.Lock, so two tasks
sharing a client never race for the same nonce.
"""

import asyncio
from typing import Any, List, Optional, Protocol, runtime_checkable

from xip.core.errors import ExternalServiceFailure, NonceMismatch, TransactionReverted
from xip.core.state.chain import LocalChain, LogEntry, Receipt, sign_transaction
from xip.crypto import KeyPair
from xip.utils.logger import get_logger

logger = get_logger("client")


@runtime_checkable
class LedgerClient(Protocol):
    """Operations the solver and relayer need from one chain."""

    address: str
    chain_id: int
    bridge_address: str

    async def get_block_number(self) -> int:
        ...

    async def get_logs(self, from_block: int, to_block: int, event: Optional[str] = None) -> List[LogEntry]:
        ...

    async def call(self, method: str, *args) -> Any:
        ...

    async def send_transaction(self, method: str, *args, to: Optional[str] = None, nonce: Optional[int] = None) -> str:
        ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 60.0) -> Receipt:
        ...

    async def transact(self, method: str, *args, to: Optional[str] = None, timeout: float = 60.0) -> Receipt:
        ...

    async def get_transaction_count(self, address: str) -> int:
        ...

    async def get_token_balance(self, token: str, address: str) -> int:
        ...

    async def approve_token(self, token: str, spender: str, amount: int) -> Receipt:
        ...

    async def get_timestamp(self) -> int:
        ...


class LocalLedgerClient:
    """
    LedgerClient bound to a LocalChain and one signing identity.

    Args:
        chain: Chain to talk to
        keypair: Identity that signs every transaction
        receipt_poll_interval: Sleep between receipt lookups
    """

    def __init__(self, chain: LocalChain, keypair: KeyPair, receipt_poll_interval: float = 0.05):
        self.chain = chain
        self.keypair = keypair
        self.address = keypair.address
        self.chain_id = chain.chain_id
        self.bridge_address = chain.bridge_address
        self.receipt_poll_interval = receipt_poll_interval

        self._nonce: Optional[int] = None
        self._lock = asyncio.Lock()

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_block_number(self) -> int:
        return self.chain.block_number

    async def get_logs(self, from_block: int, to_block: int, event: Optional[str] = None) -> List[LogEntry]:
        return self.chain.get_logs(from_block, to_block, event)

    async def call(self, method: str, *args) -> Any:
        return self.chain.call(method, *args)

    async def get_transaction_count(self, address: str) -> int:
        return self.chain.get_transaction_count(address)

    async def get_token_balance(self, token: str, address: str) -> int:
        return self.chain.balance_of(token, address)

    async def get_timestamp(self) -> int:
        return self.chain.timestamp()

    # =========================================================================
    # Writes
    # =========================================================================

    async def send_transaction(
        self,
        method: str,
        *args,
        to: Optional[str] = None,
        nonce: Optional[int] = None,
    ) -> str:
        """
        Sign and submit a transaction.

        Args:
            method: Ledger ABI method name (or token method when `to` is a token)
            *args: Method arguments, after the implicit sender
            to: Target contract, defaults to the bridge
            nonce: Explicit nonce, defaults to the local counter

        Returns:
            Transaction hash
        """
        async with self._lock:
            if nonce is None:
                if self._nonce is None:
                    self._nonce = await self.get_transaction_count(self.address)
                nonce = self._nonce

            tx = {
                "to": to or self.bridge_address,
                "method": method,
                "args": list(args),
                "nonce": nonce,
                "sender": self.address,
                "chainId": self.chain_id,
            }
            signed = sign_transaction(tx, self.keypair.private_key)

            try:
                tx_hash = self.chain.submit_transaction(signed)
            except NonceMismatch as e:
                logger.warning(f"Nonce {nonce} rejected on chain {self.chain_id}, resyncing to {e.expected}")
                self._nonce = e.expected
                raise

            self._nonce = nonce + 1
            logger.debug(f"Sent {method} on chain {self.chain_id}: {tx_hash[:10]} (nonce {nonce})")
            return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 60.0) -> Receipt:
        """
        Wait until the transaction is mined.

        Raises:
            TransactionReverted: receipt status is 0
            ExternalServiceFailure: not mined within timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            receipt = self.chain.get_receipt(tx_hash)
            if receipt is not None:
                break
            if loop.time() >= deadline:
                raise ExternalServiceFailure(f"Transaction {tx_hash} not mined after {timeout}s")
            await asyncio.sleep(self.receipt_poll_interval)

        if not receipt.success:
            raise TransactionReverted(
                reason=receipt.revert_reason,
                tx_hash=tx_hash,
                error_name=receipt.error_name,
            )
        return receipt

    async def transact(self, method: str, *args, to: Optional[str] = None, timeout: float = 60.0) -> Receipt:
        """Send a transaction and wait for its successful receipt."""
        tx_hash = await self.send_transaction(method, *args, to=to)
        return await self.wait_for_receipt(tx_hash, timeout)

    async def approve_token(self, token: str, spender: str, amount: int) -> Receipt:
        return await self.transact("approve", spender, amount, to=token)
