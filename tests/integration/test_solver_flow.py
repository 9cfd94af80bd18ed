"""
Integration tests for the autonomous solver.

The engine runs its real discovery, bidding and settlement tasks against the
development network and talks to an in-process relayer over HTTP. The chain
clock is manual: tests move it past the auction end once the solver's bid is
on the ledger.
"""

import asyncio

import httpx
import pytest

from xip.core.config import SolverConfig
from xip.core.errors import ExternalServiceFailure
from xip.core.intent.intent import IntentState
from xip.crypto import random_address
from xip.relayer.app import create_app
from xip.solver.engine import SolverEngine
from xip.solver.relayer_client import RelayerClient
from xip.solver.state import BidPhase


async def wait_for(predicate, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def solver_config():
    return SolverConfig(
        bid_increment=1,
        max_bid_amount=10_000,
        poll_interval=0.01,
        bid_interval=0.01,
        settle_delay=0,
        completion_poll_interval=0.01,
        completion_timeout=5,
        tx_timeout=5,
    )


@pytest.fixture
def fresh_addresses():
    return []


@pytest.fixture
def make_engine(flow, service, store, solver_config, fresh_addresses):
    """Engine wired to an in-process relayer; returns (engine, http)."""

    def fallback():
        address = random_address()
        fresh_addresses.append(address)
        return address

    def _make():
        app = create_app(service, store)
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://relayer")
        engine = SolverEngine(
            flow.solver,
            RelayerClient("http://relayer", http=http),
            solver_config,
            fallback_address=fallback,
        )
        return engine, http

    return _make


def solver_has_bid(flow, intent_id):
    def check():
        _, bidder = flow.origin.call("getHighestBid", intent_id)
        return bidder == flow.devnet.solver.address
    return check


class TestSolverEngine:

    @pytest.mark.asyncio
    async def test_wins_delivers_and_gets_paid(self, flow, store, make_engine):
        engine, http = make_engine()
        solver = flow.devnet.solver.address
        recipients = [random_address(), random_address()]

        await engine.start()
        try:
            intent_id = await flow.create_intent()
            store.put(intent_id, recipients, [60, 35], flow.destination_id)

            await wait_for(solver_has_bid(flow, intent_id))
            assert flow.origin.call("getHighestBid", intent_id)[0] == 103

            flow.clock.advance(61)
            await wait_for(lambda: intent_id in engine.finished)
        finally:
            await engine.stop()
            await http.aclose()

        assert engine.finished[intent_id] == BidPhase.DONE
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.COMPLETED
        assert [flow.destination_balance(r) for r in recipients] == [60, 35]
        # 1000 - 103 deposited + (100 + 5 + 103) paid out
        assert flow.source_balance(solver) == 1_105
        assert flow.destination_balance(solver) == 1_000 - 95

    @pytest.mark.asyncio
    async def test_without_manifest_pays_one_fresh_address(self, flow, make_engine, fresh_addresses):
        engine, http = make_engine()

        await engine.start()
        try:
            intent_id = await flow.create_intent()
            await wait_for(solver_has_bid(flow, intent_id))
            flow.clock.advance(61)
            await wait_for(lambda: intent_id in engine.finished)
        finally:
            await engine.stop()
            await http.aclose()

        assert engine.finished[intent_id] == BidPhase.DONE
        assert len(fresh_addresses) == 1
        assert flow.destination_balance(fresh_addresses[0]) == 95

    @pytest.mark.asyncio
    async def test_oversized_manifest_is_rescaled(self, flow, store, make_engine):
        engine, http = make_engine()
        recipients = [random_address(), random_address(), random_address()]

        await engine.start()
        try:
            intent_id = await flow.create_intent()
            store.put(intent_id, recipients, [40, 40, 40], flow.destination_id)
            await wait_for(solver_has_bid(flow, intent_id))
            flow.clock.advance(61)
            await wait_for(lambda: intent_id in engine.finished)
        finally:
            await engine.stop()
            await http.aclose()

        assert engine.finished[intent_id] == BidPhase.DONE
        assert [flow.destination_balance(r) for r in recipients] == [31, 31, 33]

    @pytest.mark.asyncio
    async def test_gives_up_when_outbid_beyond_budget(self, flow, make_engine, solver_config):
        solver_config.max_bid_amount = 150
        engine, http = make_engine()
        rival = flow.relayer[flow.origin_id]
        flow.origin.mint(flow.devnet.source_token, rival.address, 1_000)

        await engine.start()
        try:
            intent_id = await flow.create_intent()
            await wait_for(solver_has_bid(flow, intent_id))
            await rival.transact("placeBid", intent_id, 200)
            await wait_for(lambda: intent_id in engine.finished)
        finally:
            await engine.stop()
            await http.aclose()

        assert engine.finished[intent_id] == BidPhase.ABANDONED
        assert flow.origin.call("getHighestBid", intent_id) == (200, rival.address)
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.CREATED

    @pytest.mark.asyncio
    async def test_unprofitable_intent_is_skipped(self, flow, make_engine):
        engine, http = make_engine()

        await engine.start()
        try:
            intent_id = await flow.create_intent(source_amount=100, expected=104, reward=5)
            await wait_for(lambda: intent_id in engine.finished)
        finally:
            await engine.stop()
            await http.aclose()

        assert engine.finished[intent_id] == BidPhase.ABANDONED
        assert flow.origin.call("getHighestBid", intent_id)[0] == 0


class TestSettlementRecovery:
    """A won intent is carried to completion across failures and restarts."""

    @pytest.mark.asyncio
    async def test_relayer_failure_after_delivery_is_retried(self, flow, store, make_engine):
        engine, http = make_engine()
        solver = flow.devnet.solver.address
        recipient = random_address()

        settle = engine.relayer.settle
        calls = []

        async def settle_failing_once(*args):
            calls.append(args)
            if len(calls) == 1:
                raise ExternalServiceFailure("Relayer unreachable: connection reset")
            return await settle(*args)

        engine.relayer.settle = settle_failing_once

        await engine.start()
        try:
            intent_id = await flow.create_intent()
            store.put(intent_id, [recipient], [95], flow.destination_id)
            await wait_for(solver_has_bid(flow, intent_id))
            flow.clock.advance(61)
            await wait_for(lambda: intent_id in engine.finished)
        finally:
            await engine.stop()
            await http.aclose()

        assert engine.finished[intent_id] == BidPhase.DONE
        assert len(calls) == 2
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.COMPLETED
        # Delivered once, paid once
        assert flow.destination_balance(recipient) == 95
        assert flow.destination_balance(solver) == 1_000 - 95
        assert flow.source_balance(solver) == 1_105

    @pytest.mark.asyncio
    async def test_won_intent_resumed_from_won_log_after_restart(self, flow, make_engine, solver_config, fresh_addresses):
        solver = flow.devnet.solver.address
        first, http = make_engine()
        await first.start()
        try:
            intent_id = await flow.create_intent()
            await wait_for(solver_has_bid(flow, intent_id))
        finally:
            await first.stop()
            await http.aclose()

        # The auction closes while no solver runs; anyone may finalize it
        flow.clock.advance(61)
        solver_config.start_block = flow.origin.block_number + 1
        await flow.relayer[flow.origin_id].transact("finalizeAuction", intent_id)
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.FINALIZED

        second, http = make_engine()
        await second.start()
        try:
            await wait_for(lambda: intent_id in second.finished)
        finally:
            await second.stop()
            await http.aclose()

        assert second.finished[intent_id] == BidPhase.DONE
        assert flow.origin.call("getIntentDetails", intent_id).state == IntentState.COMPLETED
        assert flow.destination_balance(fresh_addresses[0]) == 95
        assert flow.source_balance(solver) == 1_105
