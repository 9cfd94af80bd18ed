"""
Shared fixtures: a two-chain development network on a manual clock, and a
driver that walks intents through the bridge lifecycle.
"""

import pytest

from xip.core.config import RelayerConfig
from xip.core.intent.intent import IntentState
from xip.core.state.chain import ManualClock
from xip.core.storage.storage_manager import RecipientStore
from xip.crypto import random_address
from xip.devnet import create_devnet
from xip.relayer.proof import MockProofVerifier
from xip.relayer.service import SettleRequest, SettlementService


SOURCE_AMOUNT = 100
EXPECTED_AMOUNT = 95
REWARD = 5
AUCTION_DURATION = 60


class BridgeFlow:
    """Drives intents through the ledger as user, solver and relayer."""

    def __init__(self, devnet, clock):
        self.devnet = devnet
        self.clock = clock
        self.origin = devnet.origin
        self.destination = devnet.destination
        self.user = devnet.clients_for(devnet.user, receipt_poll_interval=0.001)
        self.solver = devnet.clients_for(devnet.solver, receipt_poll_interval=0.001)
        self.relayer = devnet.clients_for(devnet.relayer, receipt_poll_interval=0.001)

    @property
    def origin_id(self) -> int:
        return self.origin.chain_id

    @property
    def destination_id(self) -> int:
        return self.destination.chain_id

    def source_balance(self, address: str) -> int:
        return self.origin.balance_of(self.devnet.source_token, address)

    def destination_balance(self, address: str) -> int:
        return self.destination.balance_of(self.devnet.destination_token, address)

    async def create_intent(
        self,
        source_amount: int = SOURCE_AMOUNT,
        expected: int = EXPECTED_AMOUNT,
        reward: int = REWARD,
        duration: int = AUCTION_DURATION,
    ) -> int:
        user = self.user[self.origin_id]
        await user.approve_token(self.devnet.source_token, self.origin.bridge_address, source_amount + reward)
        receipt = await user.transact(
            "createIntent",
            self.devnet.source_token,
            self.devnet.destination_token,
            source_amount,
            expected,
            reward,
            duration,
        )
        return receipt.result

    async def bid(self, intent_id: int, amount: int):
        return await self.solver[self.origin_id].transact("placeBid", intent_id, amount)

    async def finalize(self, intent_id: int) -> None:
        intent = self.origin.call("getIntentDetails", intent_id)
        if self.clock() < intent.auction_end_time:
            self.clock.advance(intent.auction_end_time - self.clock() + 1)
        await self.solver[self.origin_id].transact("finalizeAuction", intent_id)

    async def deposit(self, intent_id: int) -> None:
        solver = self.solver[self.origin_id]
        intent = self.origin.call("getIntentDetails", intent_id)
        await solver.approve_token(self.devnet.source_token, self.origin.bridge_address, intent.winning_bid)
        await solver.transact("depositAndPickup", intent_id)

    async def deliver(self, intent_id: int, recipients=None, amounts=None) -> list:
        solver = self.solver[self.destination_id]
        recipients = recipients or [random_address()]
        amounts = amounts or [EXPECTED_AMOUNT]
        total = sum(amounts)
        await solver.approve_token(self.devnet.destination_token, self.destination.bridge_address, total)
        await solver.transact(
            "solveIntentOnChain2",
            intent_id,
            self.devnet.user.address,
            self.devnet.destination_token,
            total,
            recipients,
            amounts,
        )
        return recipients

    async def settleable_intent(self, bid: int = 98) -> int:
        """An intent that is won, deposited and delivered."""
        intent_id = await self.create_intent()
        await self.bid(intent_id, bid)
        await self.finalize(intent_id)
        await self.deposit(intent_id)
        await self.deliver(intent_id)
        assert self.origin.call("getIntentDetails", intent_id).state == IntentState.DEPOSITED
        return intent_id

    def settle_request(self, intent_id: int, solver_address: str = None) -> SettleRequest:
        return SettleRequest(
            intent_id=intent_id,
            chain2_intent_id=intent_id,
            origin_chain_id=self.origin_id,
            destination_chain_id=self.destination_id,
            solver_address=solver_address or self.devnet.solver.address,
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    """Chain clock that only moves when a test advances it."""
    return ManualClock()


@pytest.fixture
def devnet(clock):
    """Funded two-chain network with small token balances."""
    return create_devnet(clock=clock, user_funds=1_000, solver_funds=1_000)


@pytest.fixture
def flow(devnet, clock):
    return BridgeFlow(devnet, clock)


@pytest.fixture
def relayer_config(tmp_path):
    return RelayerConfig(proof_poll_interval=0, proof_max_attempts=5, tx_timeout=5, data_dir=tmp_path)


@pytest.fixture
def verifier():
    return MockProofVerifier()


@pytest.fixture
def service(flow, verifier, relayer_config):
    return SettlementService(
        flow.relayer,
        verifier,
        relayer_config,
        networks=list(flow.devnet.networks.values()),
    )


@pytest.fixture
def store(tmp_path):
    recipient_store = RecipientStore(tmp_path)
    yield recipient_store
    recipient_store.close()
