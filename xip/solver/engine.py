"""
Solver Engine - autonomous bidder, depositor and deliverer.

Task layout (all on one event loop):

    discovery[chain]  --IntentDiscovered/AuctionWon-->  inbox
    per-intent task   --IntentFinished------------------>  inbox
    coordinator       <-- inbox; sole owner of active_intents

Discovery polls each chain's event log in bounded block ranges and advances
last_processed_block only after a range was read. Each intent the engine
competes for gets one cancellable task that bids until the auction ends and,
if it won, runs finalize -> deposit -> deliver -> settle -> confirm.

Chain time (LedgerClient.get_timestamp), not the host clock, decides when an
auction is over.
Transient ledger or relayer errors cost the current tick only, also after the
solver has deposited: settlement retries from ledger state until the intent
completes or a state conflict ends it.
"""

import asyncio
from typing import Callable, Dict, List, Optional

from xip.chain.client import LedgerClient
from xip.core.config import SolverConfig
from xip.core.errors import (
    AuctionEnded,
    ExternalServiceFailure,
    InsufficientFunds,
    InvalidState,
    NotWinningSolver,
    TransactionReverted,
    XIPError,
)
from xip.core.intent.intent import IntentState
from xip.crypto import random_address, same_address
from xip.solver.relayer_client import RelayerClient
from xip.solver.state import (
    AuctionWon,
    BidPhase,
    EngineMessage,
    IntentDiscovered,
    IntentFinished,
    ManifestMissing,
    SolverBidState,
)
from xip.solver.strategy import bid_ceiling, compute_target_bid, next_bid, plan_delivery
from xip.utils.logger import get_logger

logger = get_logger("solver")

# Errors that cost one tick, not the intent
TRANSIENT_ERRORS = (ExternalServiceFailure, OSError, asyncio.TimeoutError)


class SolverEngine:
    """
    Competes for intents on every configured chain.

    Args:
        clients: chain id -> ledger client signing as this solver
        relayer: Relayer API client (manifests and settlement)
        config: Bidding economics and timing
        fallback_address: Source of the one-off recipient used when an
            intent has no manifest
    """

    def __init__(
        self,
        clients: Dict[int, LedgerClient],
        relayer: RelayerClient,
        config: Optional[SolverConfig] = None,
        fallback_address: Callable[[], str] = random_address,
    ):
        self.clients = clients
        self.relayer = relayer
        self.config = config or SolverConfig()
        self.fallback_address = fallback_address

        self.active_intents: Dict[int, SolverBidState] = {}
        self.finished: Dict[int, BidPhase] = {}
        self.last_processed_block: Dict[int, int] = {}

        self.inbox: "asyncio.Queue[EngineMessage]" = asyncio.Queue()
        self.running = False
        self._loops: List[asyncio.Task] = []

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Initialise block cursors and spawn discovery and coordinator tasks."""
        if self.running:
            return
        self.running = True

        for chain_id, client in self.clients.items():
            if chain_id not in self.last_processed_block:
                if self.config.start_block is not None:
                    self.last_processed_block[chain_id] = self.config.start_block - 1
                else:
                    self.last_processed_block[chain_id] = await client.get_block_number()
            self._loops.append(asyncio.create_task(self._discovery_loop(chain_id)))

        self._loops.append(asyncio.create_task(self._coordinator_loop()))
        logger.info(
            f"Solver started on chains {sorted(self.clients)} "
            f"from blocks {self.last_processed_block}"
        )

    async def stop(self) -> None:
        """Cancel every task and wait for them to unwind."""
        self.running = False
        tasks = list(self._loops)
        tasks += [s.task for s in self.active_intents.values() if s.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        logger.info("Solver stopped")

    def status(self) -> dict:
        return {
            "running": self.running,
            "addresses": {chain_id: client.address for chain_id, client in self.clients.items()},
            "lastProcessedBlocks": dict(self.last_processed_block),
            "activeIntents": [s.to_dict() for s in self.active_intents.values()],
            "finishedIntents": {str(k): v.name for k, v in self.finished.items()},
            "config": {
                "minProfitMargin": self.config.min_profit_margin,
                "maxBidAmount": str(self.config.max_bid_amount),
                "bidIncrement": str(self.config.bid_increment),
                "balanceBuffer": self.config.balance_buffer,
            },
        }

    def destination_for(self, origin_chain_id: int) -> Optional[int]:
        """Configured route, else the single other chain."""
        if origin_chain_id in self.config.routes:
            return self.config.routes[origin_chain_id]
        others = [c for c in self.clients if c != origin_chain_id]
        return others[0] if len(others) == 1 else None

    # =========================================================================
    # Discovery
    # =========================================================================

    async def poll_once(self, chain_id: int) -> int:
        """
        Read the next bounded block range of one chain.

        Returns:
            Number of blocks consumed (0 when caught up or on error)
        """
        client = self.clients[chain_id]
        try:
            head = await client.get_block_number()
            from_block = self.last_processed_block[chain_id] + 1
            if from_block > head:
                return 0
            to_block = min(from_block + self.config.block_range - 1, head)

            created = await client.get_logs(from_block, to_block, "IntentCreated")
            won = await client.get_logs(from_block, to_block, "IntentWon")
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Discovery on chain {chain_id} failed, retrying next tick: {e}")
            return 0

        for log in created:
            args = log.args
            await self.inbox.put(IntentDiscovered(
                chain_id=chain_id,
                intent_id=args["intentId"],
                user=args["user"],
                source_token=args["sourceToken"],
                destination_token=args["destinationToken"],
                source_amount=args["sourceAmount"],
                expected_destination_amount=args["expectedDestinationAmount"],
                reward=args["reward"],
                end_time=args["endTime"],
            ))
        for log in won:
            if same_address(log.args["solver"], client.address):
                await self.inbox.put(AuctionWon(
                    chain_id=chain_id,
                    intent_id=log.args["intentId"],
                    solver=log.args["solver"],
                    amount=log.args["amount"],
                ))

        self.last_processed_block[chain_id] = to_block
        if created or won:
            logger.debug(f"Chain {chain_id} blocks {from_block}-{to_block}: {len(created)} created, {len(won)} won")
        return to_block - from_block + 1

    async def _discovery_loop(self, chain_id: int) -> None:
        while self.running:
            consumed = await self.poll_once(chain_id)
            # Keep reading while behind the head
            if consumed < self.config.block_range:
                await asyncio.sleep(self.config.poll_interval)

    # =========================================================================
    # Coordinator
    # =========================================================================

    async def _coordinator_loop(self) -> None:
        while True:
            message = await self.inbox.get()
            try:
                await self.handle(message)
            except TRANSIENT_ERRORS as e:
                # Discovery has already moved past this log; hand it back later
                logger.warning(f"Deferring {type(message).__name__} for intent {message.intent_id}: {e}")
                asyncio.get_running_loop().call_later(
                    self.config.poll_interval, self.inbox.put_nowait, message
                )
            except XIPError as e:
                logger.error(f"Failed to handle {type(message).__name__}: {e.message}")

    async def handle(self, message: EngineMessage) -> None:
        if isinstance(message, IntentDiscovered):
            await self._on_discovered(message)
        elif isinstance(message, AuctionWon):
            await self._on_won(message)
        elif isinstance(message, IntentFinished):
            self._on_finished(message)

    async def _on_discovered(self, msg: IntentDiscovered) -> None:
        if msg.intent_id in self.active_intents or msg.intent_id in self.finished:
            return

        destination = self.destination_for(msg.chain_id)
        if destination is None or destination not in self.clients:
            logger.debug(f"No route from chain {msg.chain_id}, skipping intent {msg.intent_id}")
            return

        origin = self.clients[msg.chain_id]
        balance = await origin.get_token_balance(msg.source_token, origin.address)
        target = compute_target_bid(
            msg.source_amount, msg.reward, balance, self.config, msg.expected_destination_amount
        )
        if target is None:
            logger.info(f"Intent {msg.intent_id} not profitable within budget, skipping")
            self.finished[msg.intent_id] = BidPhase.ABANDONED
            return

        state = SolverBidState(
            intent_id=msg.intent_id,
            origin_chain_id=msg.chain_id,
            destination_chain_id=destination,
            user=msg.user,
            source_token=msg.source_token,
            destination_token=msg.destination_token,
            source_amount=msg.source_amount,
            expected_destination_amount=msg.expected_destination_amount,
            reward=msg.reward,
            end_time=msg.end_time,
            target_bid=target,
            ceiling=bid_ceiling(balance, self.config),
        )
        self.active_intents[msg.intent_id] = state
        state.task = asyncio.create_task(self._run_intent(state))
        logger.info(f"Competing for intent {state.local_id} on chain {msg.chain_id}: target bid {target}")

    async def _on_won(self, msg: AuctionWon) -> None:
        state = self.active_intents.get(msg.intent_id)
        if state is not None:
            state.is_winning = True
            return
        if msg.intent_id in self.finished:
            return

        # Won an auction this process was not tracking (e.g. after a restart)
        destination = self.destination_for(msg.chain_id)
        if destination is None or destination not in self.clients:
            return
        intent = await self.clients[msg.chain_id].call("getIntentDetails", msg.intent_id)
        state = SolverBidState(
            intent_id=msg.intent_id,
            origin_chain_id=msg.chain_id,
            destination_chain_id=destination,
            user=intent.user,
            source_token=intent.source_token,
            destination_token=intent.destination_token,
            source_amount=intent.source_amount,
            expected_destination_amount=intent.expected_destination_amount,
            reward=intent.reward,
            end_time=intent.auction_end_time,
            target_bid=msg.amount,
            ceiling=msg.amount,
            current_bid=msg.amount,
            is_winning=True,
            phase=BidPhase.WON,
        )
        self.active_intents[msg.intent_id] = state
        state.task = asyncio.create_task(self._run_intent(state))
        logger.info(f"Resuming settlement of won intent {state.local_id}")

    def _on_finished(self, msg: IntentFinished) -> None:
        state = self.active_intents.pop(msg.intent_id, None)
        self.finished[msg.intent_id] = msg.phase
        if state is not None and state.task is not None and not state.task.done():
            state.task.cancel()
        logger.info(f"Intent {msg.intent_id} finished: {msg.phase.name} {msg.detail}".rstrip())

    # =========================================================================
    # Per-intent task
    # =========================================================================

    async def _run_intent(self, state: SolverBidState) -> None:
        phase, detail = BidPhase.ABANDONED, ""
        try:
            if state.phase == BidPhase.BIDDING:
                won = await self._bid_until_end(state)
                if not won:
                    detail = "auction lost or abandoned"
                    return
                state.phase = BidPhase.WON
            await self._settle(state)
            phase = BidPhase.DONE
        except XIPError as e:
            logger.error(f"Intent {state.local_id} failed: {e.name}: {e.message}")
            detail = e.message
        finally:
            state.phase = phase
            self.inbox.put_nowait(IntentFinished(state.intent_id, phase, detail))

    async def _bid_until_end(self, state: SolverBidState) -> bool:
        """Bid every tick until the auction ends. Returns whether we won."""
        origin = self.clients[state.origin_chain_id]

        while True:
            try:
                if await origin.get_timestamp() >= state.end_time:
                    _, bidder = await origin.call("getHighestBid", state.intent_id)
                    break
                await self._bid_tick(state)
            except AuctionEnded:
                logger.debug(f"Auction for intent {state.local_id} closed before our bid landed")
            except TransactionReverted as e:
                logger.warning(f"Bid on intent {state.local_id} reverted: {e.reason}")
            except TRANSIENT_ERRORS as e:
                logger.warning(f"Bid tick for intent {state.local_id} failed: {e}")
            if state.phase == BidPhase.ABANDONED:
                return False
            await asyncio.sleep(self.config.bid_interval)

        state.is_winning = same_address(bidder, origin.address)
        logger.info(f"Auction for intent {state.local_id} ended, won: {state.is_winning}")
        return state.is_winning

    async def _bid_tick(self, state: SolverBidState) -> None:
        origin = self.clients[state.origin_chain_id]
        highest, bidder = await origin.call("getHighestBid", state.intent_id)
        if same_address(bidder, origin.address):
            state.is_winning = True
            return
        state.is_winning = False

        bid = next_bid(state, highest, self.config)
        balance = await origin.get_token_balance(state.source_token, origin.address)
        if bid is None or bid > bid_ceiling(balance, self.config):
            logger.info(f"Outbid on intent {state.local_id} beyond budget (highest {highest}), giving up")
            state.phase = BidPhase.ABANDONED
            return

        receipt = await origin.transact("placeBid", state.intent_id, bid, timeout=self.config.tx_timeout)
        state.current_bid = bid
        state.is_winning = True
        logger.info(f"Bid {bid} on intent {state.local_id} (block {receipt.block_number})")

    # =========================================================================
    # Settlement sequence
    # =========================================================================

    async def _settle(self, state: SolverBidState) -> None:
        """
        Drive a won intent to COMPLETED.

        Each attempt rebuilds its next step from ledger state, so a failed
        deposit, delivery or relayer call is simply picked up again one
        poll_interval later. State conflicts and authorization failures end
        the intent.
        """
        state.phase = BidPhase.SETTLING
        while True:
            state.settle_attempts += 1
            try:
                if await self._settle_step(state):
                    return
            except TRANSIENT_ERRORS as e:
                logger.warning(
                    f"Settlement of intent {state.local_id} interrupted "
                    f"(attempt {state.settle_attempts}), retrying: {e}"
                )
            await asyncio.sleep(self.config.poll_interval)

    async def _settle_step(self, state: SolverBidState) -> bool:
        """One pass of finalize -> deposit -> deliver -> settle. Returns True once completed."""
        origin = self.clients[state.origin_chain_id]
        destination = self.clients[state.destination_chain_id]
        timeout = self.config.tx_timeout

        # Finalize is permissionless and idempotent
        intent = await origin.call("getIntentDetails", state.intent_id)
        if intent.state == IntentState.CREATED:
            await origin.transact("finalizeAuction", state.intent_id, timeout=timeout)
            intent = await origin.call("getIntentDetails", state.intent_id)

        if intent.state == IntentState.COMPLETED:
            logger.info(f"Intent {state.local_id} settled")
            return True
        if intent.state == IntentState.CANCELLED:
            raise InvalidState(f"Intent {state.local_id} was cancelled")

        if intent.state == IntentState.FINALIZED:
            if not same_address(intent.winning_solver, origin.address):
                raise NotWinningSolver(f"Intent {state.local_id} was won by {intent.winning_solver}")
            await origin.approve_token(state.source_token, origin.bridge_address, intent.winning_bid)
            await origin.transact("depositAndPickup", state.intent_id, timeout=timeout)
            logger.info(f"Deposited {intent.winning_bid} for intent {state.local_id}")
        state.current_bid = intent.winning_bid

        if not await destination.call("isIntentSolvedOnChain2", state.intent_id):
            await self._deliver(state)
            # Let destination state propagate before asking the relayer
            await asyncio.sleep(self.config.settle_delay)

        await self.relayer.settle(
            state.intent_id,
            state.intent_id,
            state.origin_chain_id,
            state.destination_chain_id,
            origin.address,
        )
        await self._await_completion(state)
        return True

    async def _deliver(self, state: SolverBidState) -> None:
        destination = self.clients[state.destination_chain_id]

        lookup = await self.relayer.get_manifest(state.intent_id)
        if isinstance(lookup, ManifestMissing):
            logger.warning(
                f"No manifest for intent {state.local_id} ({lookup.reason}), "
                f"delivering to a single fresh address"
            )
        recipients, amounts = plan_delivery(lookup, state.expected_destination_amount, self.fallback_address)
        total = sum(amounts)

        await destination.approve_token(state.destination_token, destination.bridge_address, total)
        balance = await destination.get_token_balance(state.destination_token, destination.address)
        if balance < total:
            raise InsufficientFunds(
                f"Need {total} of {state.destination_token} on chain {state.destination_chain_id}, have {balance}"
            )
        await destination.transact(
            "solveIntentOnChain2",
            state.intent_id,
            state.user,
            state.destination_token,
            total,
            recipients,
            amounts,
            timeout=self.config.tx_timeout,
        )
        logger.info(f"Delivered {total} to {len(recipients)} recipients for intent {state.local_id}")

    async def _await_completion(self, state: SolverBidState) -> None:
        """
        Poll the origin ledger until the intent reads COMPLETED.

        Raises:
            ExternalServiceFailure: not completed within completion_timeout
        """
        origin = self.clients[state.origin_chain_id]
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.completion_timeout

        while True:
            intent = await origin.call("getIntentDetails", state.intent_id)
            if intent.state == IntentState.COMPLETED:
                payout = state.source_amount + state.reward + state.current_bid
                logger.info(f"Intent {state.local_id} completed: paid out {payout}")
                return
            if loop.time() >= deadline:
                raise ExternalServiceFailure(
                    f"Intent {state.local_id} not completed within {self.config.completion_timeout}s"
                )
            await asyncio.sleep(self.config.completion_poll_interval)
