"""
Settlement Service - verify destination delivery, then release origin escrow.

One pipeline serves both settle entry points:

    chain check -> proof gate -> verification gate -> authorization gate
    -> state gate -> submit and wait

The proof gate only runs when proof enforcement is on for the request and
the destination chain is in RelayerConfig.proof_required_chains. Every gate
re-reads ledger state at call time; the origin ledger still has the last
word, and its rejection surfaces as SettlementRejected.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from xip.chain.client import LedgerClient
from xip.core.config import NetworkConfig, RelayerConfig
from xip.core.errors import (
    AlreadyCompleted,
    ExternalServiceFailure,
    InvalidParameters,
    NotAuthorizedRelayer,
    NotDeposited,
    NotSolved,
    SettlementRejected,
    SolverMismatch,
    TransactionReverted,
)
from xip.crypto import same_address
from xip.relayer.proof import JobStatus, ProofPoller, ProofVerifier, validate_proof_data
from xip.utils.logger import get_logger

logger = get_logger("relayer")


@dataclass
class SettleRequest:
    intent_id: int
    chain2_intent_id: int
    origin_chain_id: int
    destination_chain_id: int
    solver_address: str


@dataclass
class VerifyResult:
    chain2_intent_id: int
    chain_id: int
    network: str
    is_solved: bool

    def to_dict(self) -> dict:
        return {
            "success": True,
            "chain2IntentId": str(self.chain2_intent_id),
            "chainId": self.chain_id,
            "network": self.network,
            "isSolved": self.is_solved,
            "message": "Intent is solved on chain2" if self.is_solved else "Intent is not solved on chain2",
        }


@dataclass
class SettlementReceipt:
    transaction_hash: str
    block_number: int
    network: str
    origin_chain_id: int
    destination_chain_id: int
    intent_id: int
    chain2_intent_id: int
    solver_address: str
    proof: Optional[JobStatus] = None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "network": self.network,
            "originChainId": self.origin_chain_id,
            "destinationChainId": self.destination_chain_id,
            "intentId": str(self.intent_id),
            "chain2IntentId": str(self.chain2_intent_id),
            "solverAddress": self.solver_address,
            "proofVerification": self.proof.to_dict() if self.proof else None,
        }


class SettlementService:
    """
    Relayer business logic, independent of the HTTP layer.

    Args:
        clients: chain id -> ledger client signing as this relayer
        verifier: Proof service, needed only when some destination requires proofs
        config: Relayer policy
        networks: Network metadata for responses and health output
    """

    def __init__(
        self,
        clients: Dict[int, LedgerClient],
        verifier: Optional[ProofVerifier],
        config: RelayerConfig,
        networks: Optional[List[NetworkConfig]] = None,
    ):
        self.clients = clients
        self.verifier = verifier
        self.config = config
        self.networks = {n.chain_id: n for n in (networks or [])}

    # =========================================================================
    # Helpers
    # =========================================================================

    def _client(self, chain_id: int) -> LedgerClient:
        client = self.clients.get(chain_id)
        if client is None:
            raise InvalidParameters(
                f"Unsupported chainId {chain_id}",
                supported=sorted(self.clients),
            )
        return client

    def network_name(self, chain_id: int) -> str:
        network = self.networks.get(chain_id)
        return network.key if network else str(chain_id)

    async def _read(self, client: LedgerClient, method: str, *args) -> Any:
        try:
            return await client.call(method, *args)
        except (OSError, asyncio.TimeoutError) as e:
            raise ExternalServiceFailure(f"{method} on chain {client.chain_id} failed: {e}")

    def health(self) -> dict:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "networks": {
                self.network_name(chain_id): {
                    "chainId": chain_id,
                    "bridgeAddress": client.bridge_address,
                    "requiresProof": self.config.requires_proof(chain_id),
                }
                for chain_id, client in self.clients.items()
            },
        }

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify(self, chain2_intent_id: int, chain_id: int) -> VerifyResult:
        """Whether the destination ledger recorded the delivery."""
        client = self._client(chain_id)
        solved = await self._read(client, "isIntentSolvedOnChain2", chain2_intent_id)
        logger.info(f"Intent {chain2_intent_id} solved on chain {chain_id}: {solved}")
        return VerifyResult(
            chain2_intent_id=chain2_intent_id,
            chain_id=chain_id,
            network=self.network_name(chain_id),
            is_solved=bool(solved),
        )

    # =========================================================================
    # Proofs
    # =========================================================================

    def _verifier(self) -> ProofVerifier:
        if self.verifier is None:
            raise ExternalServiceFailure("No proof verification service configured")
        return self.verifier

    async def submit_proof(self, proof_data: Dict[str, Any]) -> str:
        validate_proof_data(proof_data)
        return await self._verifier().submit_proof(proof_data)

    async def proof_status(self, job_id: str) -> JobStatus:
        return await self._verifier().get_job_status(job_id)

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle(
        self,
        request: SettleRequest,
        proof_data: Optional[Dict[str, Any]] = None,
        enforce_proof: Optional[bool] = None,
    ) -> SettlementReceipt:
        """
        Run the settlement pipeline for one intent.

        Args:
            request: Which intent, where it was delivered, and by whom
            proof_data: Proof for destinations that require one
            enforce_proof: Apply the proof policy; defaults to config.strict_proof

        Raises:
            InvalidParameters: unsupported chain, missing proof data
            ProofRejected / VerificationTimeout: proof gate failed
            NotSolved: destination has no record of delivery
            NotAuthorizedRelayer: this relayer cannot settle on the origin
            AlreadyCompleted / NotDeposited / SolverMismatch: origin state
            SettlementRejected: the origin ledger reverted the settlement
        """
        # Chain check
        origin = self._client(request.origin_chain_id)
        destination = self._client(request.destination_chain_id)
        if request.origin_chain_id == request.destination_chain_id:
            raise InvalidParameters("originChainId and destinationChainId must differ")

        logger.info(
            f"Settle request: intent={request.intent_id} chain2Intent={request.chain2_intent_id} "
            f"{self.network_name(request.origin_chain_id)} <- {self.network_name(request.destination_chain_id)}"
        )

        # Proof gate
        proof = None
        if enforce_proof is None:
            enforce_proof = self.config.strict_proof
        if enforce_proof and self.config.requires_proof(request.destination_chain_id):
            if proof_data is None:
                raise InvalidParameters(
                    f"proofData required for destination chain {request.destination_chain_id}"
                )
            poller = ProofPoller(
                self._verifier(),
                interval=self.config.proof_poll_interval,
                max_attempts=self.config.proof_max_attempts,
            )
            proof = await poller.verify(proof_data)

        # Verification gate
        solved = await self._read(destination, "isIntentSolvedOnChain2", request.chain2_intent_id)
        if not solved:
            raise NotSolved(
                "Intent not solved on chain2",
                chain2IntentId=str(request.chain2_intent_id),
                chainId=request.destination_chain_id,
            )

        # Authorization gate
        if not await self._read(origin, "authorizedRelayers", origin.address):
            raise NotAuthorizedRelayer(
                "Relayer not authorized on this network",
                network=self.network_name(request.origin_chain_id),
                relayerAddress=origin.address,
            )

        # State gate
        intent = await self._read(origin, "getIntentDetails", request.intent_id)
        if intent.completed:
            raise AlreadyCompleted("Intent already completed", intentId=str(request.intent_id))
        if not same_address(intent.winning_solver, request.solver_address):
            raise SolverMismatch(
                "Solver address mismatch",
                expected=intent.winning_solver,
                provided=request.solver_address,
            )
        if not intent.deposited:
            raise NotDeposited("Solver has not deposited yet", intentId=str(request.intent_id))

        # Submit and wait
        try:
            tx_hash = await origin.send_transaction(
                "settleIntentWithChain2Verification",
                request.intent_id,
                request.chain2_intent_id,
            )
            receipt = await origin.wait_for_receipt(tx_hash, timeout=self.config.tx_timeout)
        except TransactionReverted as e:
            raise SettlementRejected(
                f"Settlement rejected by ledger: {e.reason}",
                reason=e.reason,
                error_name=e.error_name,
                transactionHash=e.tx_hash,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ExternalServiceFailure(f"Settlement submission failed: {e}")

        logger.info(f"Intent {request.intent_id} settled in block {receipt.block_number}: {tx_hash[:10]}")
        return SettlementReceipt(
            transaction_hash=tx_hash,
            block_number=receipt.block_number,
            network=self.network_name(request.origin_chain_id),
            origin_chain_id=request.origin_chain_id,
            destination_chain_id=request.destination_chain_id,
            intent_id=request.intent_id,
            chain2_intent_id=request.chain2_intent_id,
            solver_address=request.solver_address,
            proof=proof,
        )

    async def settle_with_proof(
        self, request: SettleRequest, proof_data: Optional[Dict[str, Any]] = None
    ) -> SettlementReceipt:
        return await self.settle(request, proof_data=proof_data, enforce_proof=True)
