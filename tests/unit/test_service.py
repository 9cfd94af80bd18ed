"""
Unit tests for the relayer settlement pipeline.

Tests cover:
1. Happy path settlement and payout
2. Verification, authorization and state gates
3. Proof policy per destination chain
"""

import pytest

from xip.core.errors import (
    AlreadyCompleted,
    InvalidParameters,
    NotAuthorizedRelayer,
    NotDeposited,
    NotSolved,
    ProofRejected,
    SolverMismatch,
    VerificationTimeout,
)
from xip.core.intent.intent import IntentState
from xip.crypto import generate_keypair, random_address
from xip.relayer.proof import FINALIZED, MockProofVerifier
from xip.relayer.service import SettlementService


PROOF = {"proof": "0xfeed"}


class TestSettle:
    """Tests for /settle semantics."""

    @pytest.mark.asyncio
    async def test_settles_and_pays_solver(self, flow, service):
        intent_id = await flow.settleable_intent(bid=98)
        solver = flow.devnet.solver.address
        before = flow.source_balance(solver)

        receipt = await service.settle(flow.settle_request(intent_id))

        assert receipt.transaction_hash.startswith("0x")
        assert receipt.network == "horizen"
        assert receipt.proof is None
        assert flow.source_balance(solver) == before + 203
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.COMPLETED

        body = receipt.to_dict()
        assert body["success"] is True
        assert body["intentId"] == str(intent_id)
        assert body["blockNumber"] == flow.origin.block_number

    @pytest.mark.asyncio
    async def test_not_solved(self, flow, service):
        intent_id = await flow.create_intent()
        await flow.bid(intent_id, 98)
        await flow.finalize(intent_id)
        await flow.deposit(intent_id)
        with pytest.raises(NotSolved):
            await service.settle(flow.settle_request(intent_id))

    @pytest.mark.asyncio
    async def test_unauthorized_relayer(self, flow, verifier, relayer_config):
        intent_id = await flow.settleable_intent()
        stranger = SettlementService(flow.devnet.clients_for(generate_keypair()), verifier, relayer_config)
        with pytest.raises(NotAuthorizedRelayer):
            await stranger.settle(flow.settle_request(intent_id))

    @pytest.mark.asyncio
    async def test_already_completed(self, flow, service):
        intent_id = await flow.settleable_intent()
        await service.settle(flow.settle_request(intent_id))
        with pytest.raises(AlreadyCompleted):
            await service.settle(flow.settle_request(intent_id))

    @pytest.mark.asyncio
    async def test_solver_mismatch(self, flow, service):
        intent_id = await flow.settleable_intent()
        with pytest.raises(SolverMismatch):
            await service.settle(flow.settle_request(intent_id, solver_address=random_address()))

    @pytest.mark.asyncio
    async def test_solver_address_case_insensitive(self, flow, service):
        intent_id = await flow.settleable_intent()
        request = flow.settle_request(intent_id, solver_address=flow.devnet.solver.address.lower())
        receipt = await service.settle(request)
        assert receipt.transaction_hash

    @pytest.mark.asyncio
    async def test_not_deposited(self, flow, service):
        intent_id = await flow.create_intent()
        await flow.bid(intent_id, 98)
        await flow.finalize(intent_id)
        await flow.deliver(intent_id)
        with pytest.raises(NotDeposited):
            await service.settle(flow.settle_request(intent_id))

    @pytest.mark.asyncio
    async def test_unsupported_chain(self, flow, service):
        request = flow.settle_request(1)
        request.origin_chain_id = 1
        with pytest.raises(InvalidParameters):
            await service.settle(request)

    @pytest.mark.asyncio
    async def test_same_chain(self, flow, service):
        request = flow.settle_request(1)
        request.destination_chain_id = request.origin_chain_id
        with pytest.raises(InvalidParameters):
            await service.settle(request)


class TestProofPolicy:
    """Tests for proof-gated settlement."""

    @pytest.mark.asyncio
    async def test_settle_with_proof_requires_proof_data(self, flow, service):
        intent_id = await flow.settleable_intent()
        with pytest.raises(InvalidParameters):
            await service.settle_with_proof(flow.settle_request(intent_id))

    @pytest.mark.asyncio
    async def test_settle_with_finalized_proof(self, flow, service):
        intent_id = await flow.settleable_intent()
        receipt = await service.settle_with_proof(flow.settle_request(intent_id), PROOF)
        assert receipt.proof.status == FINALIZED
        assert receipt.to_dict()["proofVerification"]["status"] == FINALIZED

    @pytest.mark.asyncio
    async def test_failed_proof_blocks_settlement(self, flow, relayer_config):
        intent_id = await flow.settleable_intent()
        service = SettlementService(flow.relayer, MockProofVerifier(["Submitted", "Failed"]), relayer_config)
        with pytest.raises(ProofRejected):
            await service.settle_with_proof(flow.settle_request(intent_id), PROOF)
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.DEPOSITED

    @pytest.mark.asyncio
    async def test_proof_timeout(self, flow, relayer_config):
        intent_id = await flow.settleable_intent()
        service = SettlementService(flow.relayer, MockProofVerifier(["Submitted"]), relayer_config)
        with pytest.raises(VerificationTimeout):
            await service.settle_with_proof(flow.settle_request(intent_id), PROOF)

    @pytest.mark.asyncio
    async def test_plain_settle_skips_proof_by_default(self, flow, service):
        intent_id = await flow.settleable_intent()
        receipt = await service.settle(flow.settle_request(intent_id))
        assert receipt.proof is None

    @pytest.mark.asyncio
    async def test_strict_mode_gates_plain_settle(self, flow, verifier, relayer_config):
        relayer_config.strict_proof = True
        service = SettlementService(flow.relayer, verifier, relayer_config)
        intent_id = await flow.settleable_intent()
        with pytest.raises(InvalidParameters):
            await service.settle(flow.settle_request(intent_id))
        receipt = await service.settle(flow.settle_request(intent_id), proof_data=PROOF)
        assert receipt.proof.status == FINALIZED

    @pytest.mark.asyncio
    async def test_destination_without_policy_needs_no_proof(self, flow, verifier, relayer_config):
        relayer_config.proof_required_chains = set()
        service = SettlementService(flow.relayer, verifier, relayer_config)
        intent_id = await flow.settleable_intent()
        receipt = await service.settle_with_proof(flow.settle_request(intent_id))
        assert receipt.proof is None


class TestVerifyAndHealth:

    @pytest.mark.asyncio
    async def test_verify(self, flow, service):
        intent_id = await flow.create_intent()
        result = await service.verify(intent_id, flow.destination_id)
        assert not result.is_solved
        await flow.deliver(intent_id)
        result = await service.verify(intent_id, flow.destination_id)
        assert result.is_solved
        assert result.network == "base"

    @pytest.mark.asyncio
    async def test_verify_unsupported_chain(self, service):
        with pytest.raises(InvalidParameters):
            await service.verify(1, 999)

    def test_health(self, flow, service):
        health = service.health()
        assert health["status"] == "healthy"
        assert health["networks"]["base"]["requiresProof"] is True
        assert health["networks"]["horizen"]["requiresProof"] is False

    @pytest.mark.asyncio
    async def test_proof_passthrough(self, service):
        job_id = await service.submit_proof(PROOF)
        status = await service.proof_status(job_id)
        assert status.job_id == job_id
