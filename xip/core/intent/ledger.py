"""
Intent Ledger - the bridge contract state machine.

One IntentLedger lives on every bridged chain and plays both roles:

Origin role (user's chain):
    Created --placeBid--> Created
    Created --finalizeAuction--> Finalized          (anyone, after end, >= 1 bid)
    Created --cancelIntent--> Cancelled             (user, after end + grace)
    Finalized --depositAndPickup--> Deposited       (winning solver only)
    Finalized --cancelIntent--> Cancelled           (anyone, after deposit grace)
    Deposited --settleIntentWithChain2Verification--> Completed (relayer only)

Destination role (solver delivers):
    solveIntentOnChain2 pays the recipients once and sets solved[intentId].

Every write either fully applies or raises a typed XIPError without
mutating anything. Successful writes append (event, args) pairs to
pending_events; the hosting chain stamps them with block data.
"""

import copy
from typing import Callable, Dict, List, Set, Tuple

from xip.core.errors import (
    AlreadyCompleted,
    AlreadySolved,
    AuctionEnded,
    AuctionNotEnded,
    BidTooLow,
    CancelNotAllowed,
    IntentNotFound,
    InvalidParameters,
    InvalidState,
    NoBids,
    NotAuthorized,
    NotAuthorizedRelayer,
    NotDeposited,
    NotOwner,
    NotWinningSolver,
)
from xip.core.intent.intent import (
    Bid,
    Intent,
    IntentState,
    compose_intent_id,
    extract_local_id,
)
from xip.core.state.token import TokenLedger
from xip.crypto import ZERO_ADDRESS, same_address, to_checksum_address
from xip.utils.logger import get_logger
from xip.utils.validation import validate_address, validate_amount, validate_recipients

logger = get_logger("ledger")


DEFAULT_CANCEL_GRACE_PERIOD = 3600
DEFAULT_DEPOSIT_GRACE_PERIOD = 3600

# ABI name -> python method, for transactions and read calls
WRITE_METHODS = {
    "createIntent": "create_intent",
    "placeBid": "place_bid",
    "finalizeAuction": "finalize_auction",
    "depositAndPickup": "deposit_and_pickup",
    "settleIntentWithChain2Verification": "settle_intent_with_chain2_verification",
    "solveIntentOnChain2": "solve_intent_on_chain2",
    "cancelIntent": "cancel_intent",
    "addRelayer": "add_relayer",
    "removeRelayer": "remove_relayer",
}

VIEW_METHODS = {
    "getIntentDetails": "get_intent_details",
    "getHighestBid": "get_highest_bid",
    "isIntentSolvedOnChain2": "is_intent_solved_on_chain2",
    "getLatestIntentId": "get_latest_intent_id",
    "getActiveIntents": "get_active_intents",
    "authorizedRelayers": "is_authorized_relayer",
    "getLocalIntentId": "get_local_intent_id",
    "escrowedAmount": "escrowed_amount",
}


class IntentLedger:
    """
    Escrow, auction and settlement for cross-chain intents.

    Attributes:
        chain_id: Chain this ledger is deployed on
        address: Contract address; holds every escrowed token
        owner: May add or remove relayers
        intents: Composite intent id -> Intent
        solved: Destination-side delivery flags, keyed by composite id
        escrowed: Composite intent id -> tokens currently held for it
    """

    def __init__(
        self,
        chain_id: int,
        tokens: TokenLedger,
        clock: Callable[[], float],
        address: str,
        owner: str,
        cancel_grace_period: int = DEFAULT_CANCEL_GRACE_PERIOD,
        deposit_grace_period: int = DEFAULT_DEPOSIT_GRACE_PERIOD,
    ):
        self.chain_id = chain_id
        self.tokens = tokens
        self.clock = clock
        self.address = to_checksum_address(address)
        self.owner = to_checksum_address(owner)
        self.cancel_grace_period = cancel_grace_period
        self.deposit_grace_period = deposit_grace_period

        self.intents: Dict[int, Intent] = {}
        self.solved: Dict[int, bool] = {}
        self.escrowed: Dict[int, int] = {}
        self.relayers: Set[str] = set()
        self.next_local_id = 0
        self.latest_intent_id = 0

        self.pending_events: List[Tuple[str, dict]] = []

    def now(self) -> int:
        return int(self.clock())

    def _emit(self, event: str, **args) -> None:
        self.pending_events.append((event, args))

    def _get(self, intent_id: int) -> Intent:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise IntentNotFound(f"Intent {intent_id} not found", intent_id=str(intent_id))
        return intent

    # =========================================================================
    # Origin: creation and auction
    # =========================================================================

    def create_intent(
        self,
        sender: str,
        source_token: str,
        destination_token: str,
        source_amount: int,
        expected_destination_amount: int,
        reward: int,
        auction_duration: int,
    ) -> int:
        """
        Escrow source_amount + reward and open an auction.

        Returns:
            Composite intent id
        """
        for value, name in ((source_token, "source_token"), (destination_token, "destination_token")):
            valid, err = validate_address(value, name)
            if not valid:
                raise InvalidParameters(err)
        for value, name in (
            (source_amount, "source_amount"),
            (expected_destination_amount, "expected_destination_amount"),
            (auction_duration, "auction_duration"),
        ):
            valid, err = validate_amount(value, name)
            if not valid:
                raise InvalidParameters(err)
        valid, err = validate_amount(reward, "reward", allow_zero=True)
        if not valid:
            raise InvalidParameters(err)

        escrow = source_amount + reward
        self.tokens.require_funds(source_token, sender, self.address, escrow)

        local_id = self.next_local_id + 1
        intent_id = compose_intent_id(self.chain_id, local_id)
        now = self.now()

        self.tokens.transfer_from(source_token, self.address, sender, self.address, escrow)
        self.next_local_id = local_id
        self.latest_intent_id = intent_id
        self.escrowed[intent_id] = escrow
        self.intents[intent_id] = Intent(
            intent_id=intent_id,
            user=to_checksum_address(sender),
            source_token=to_checksum_address(source_token),
            destination_token=to_checksum_address(destination_token),
            source_amount=source_amount,
            expected_destination_amount=expected_destination_amount,
            reward=reward,
            auction_end_time=now + auction_duration,
            created_at=now,
        )

        self._emit(
            "IntentCreated",
            intentId=intent_id,
            user=to_checksum_address(sender),
            sourceToken=to_checksum_address(source_token),
            destinationToken=to_checksum_address(destination_token),
            sourceAmount=source_amount,
            expectedDestinationAmount=expected_destination_amount,
            reward=reward,
            endTime=now + auction_duration,
        )
        logger.info(f"Intent {local_id} created on chain {self.chain_id}: escrow={escrow}")
        return intent_id

    def place_bid(self, sender: str, intent_id: int, amount: int) -> None:
        """Replace the highest bid. Bids move no funds."""
        intent = self._get(intent_id)
        if intent.state != IntentState.CREATED:
            raise InvalidState(f"Intent {intent.local_id} is {intent.state.name}")

        now = self.now()
        if now >= intent.auction_end_time:
            raise AuctionEnded(f"Auction for intent {intent.local_id} has ended")

        if amount < intent.expected_destination_amount:
            raise BidTooLow(
                f"Bid too low: {amount} < expected {intent.expected_destination_amount}"
            )
        if intent.highest_bid is not None and amount <= intent.highest_bid.amount:
            raise BidTooLow(f"Bid too low: {amount} <= highest {intent.highest_bid.amount}")

        solver = to_checksum_address(sender)
        intent.highest_bid = Bid(intent_id=intent_id, solver=solver, amount=amount, timestamp=now)
        self._emit("BidPlaced", intentId=intent_id, solver=solver, amount=amount, timestamp=now)
        logger.debug(f"Bid on intent {intent.local_id}: {amount} by {solver[:10]}")

    def finalize_auction(self, sender: str, intent_id: int) -> str:
        """
        Fix the winner once the auction has ended. Permissionless.

        Returns:
            Winning solver address (also when already finalized)
        """
        intent = self._get(intent_id)
        if intent.state == IntentState.FINALIZED:
            return intent.winning_solver
        if intent.state != IntentState.CREATED:
            raise InvalidState(f"Intent {intent.local_id} is {intent.state.name}")

        now = self.now()
        if now < intent.auction_end_time:
            raise AuctionNotEnded(f"Auction for intent {intent.local_id} is still running")
        if intent.highest_bid is None:
            raise NoBids(f"Intent {intent.local_id} received no bids")

        intent.state = IntentState.FINALIZED
        intent.winning_solver = intent.highest_bid.solver
        intent.winning_bid = intent.highest_bid.amount
        intent.finalized_at = now

        self._emit("IntentWon", intentId=intent_id, solver=intent.winning_solver, amount=intent.winning_bid)
        logger.info(f"Intent {intent.local_id} won by {intent.winning_solver[:10]} at {intent.winning_bid}")
        return intent.winning_solver

    def deposit_and_pickup(self, sender: str, intent_id: int) -> None:
        """Winning solver escrows its bid."""
        intent = self._get(intent_id)
        if intent.state != IntentState.FINALIZED:
            raise InvalidState(f"Intent {intent.local_id} is {intent.state.name}, expected FINALIZED")
        if not same_address(sender, intent.winning_solver):
            raise NotWinningSolver(f"{sender} is not the winning solver of intent {intent.local_id}")

        self.tokens.require_funds(intent.source_token, sender, self.address, intent.winning_bid)
        self.tokens.transfer_from(
            intent.source_token, self.address, sender, self.address, intent.winning_bid
        )
        self.escrowed[intent_id] += intent.winning_bid
        intent.state = IntentState.DEPOSITED

        self._emit("SolverDeposited", intentId=intent_id, solver=intent.winning_solver, amount=intent.winning_bid)
        logger.info(f"Solver deposited {intent.winning_bid} for intent {intent.local_id}")

    # =========================================================================
    # Origin: settlement and cancellation
    # =========================================================================

    def settle_intent_with_chain2_verification(
        self, sender: str, intent_id: int, chain2_intent_id: int
    ) -> int:
        """
        Release the full escrow to the winning solver. Relayers only.

        Returns:
            Payout amount
        """
        if not self.is_authorized_relayer(sender):
            raise NotAuthorizedRelayer(f"Not authorized relayer: {sender}")

        intent = self._get(intent_id)
        if intent.state == IntentState.COMPLETED:
            raise AlreadyCompleted(f"Intent {intent.local_id} already completed")
        if intent.state != IntentState.DEPOSITED:
            raise NotDeposited(f"Intent {intent.local_id} is {intent.state.name}, solver has not deposited")

        payout = self.escrowed[intent_id]
        self.tokens.transfer(intent.source_token, self.address, intent.winning_solver, payout)
        self.escrowed[intent_id] = 0
        intent.state = IntentState.COMPLETED

        self._emit(
            "IntentSettled",
            intentId=intent_id,
            solver=intent.winning_solver,
            amount=payout,
            chain2IntentId=chain2_intent_id,
        )
        self._emit("IntentCompleted", intentId=intent_id)
        logger.info(f"Intent {intent.local_id} settled: paid {payout} to {intent.winning_solver[:10]}")
        return payout

    def cancel_intent(self, sender: str, intent_id: int) -> int:
        """
        Refund the user's escrow.

        Allowed for the user once the auction ended more than
        cancel_grace_period ago without a finalized winner, and for anyone
        once a finalized winner failed to deposit within
        deposit_grace_period.

        Returns:
            Refunded amount
        """
        intent = self._get(intent_id)
        now = self.now()

        if intent.state == IntentState.CREATED:
            if not same_address(sender, intent.user):
                raise NotAuthorized(f"Only the user may cancel intent {intent.local_id}")
            if now < intent.auction_end_time + self.cancel_grace_period:
                raise CancelNotAllowed(
                    f"Intent {intent.local_id} cannot be cancelled before "
                    f"{intent.auction_end_time + self.cancel_grace_period}"
                )
        elif intent.state == IntentState.FINALIZED:
            if now < intent.finalized_at + self.deposit_grace_period:
                raise CancelNotAllowed(f"Winner of intent {intent.local_id} may still deposit")
        else:
            raise CancelNotAllowed(f"Intent {intent.local_id} is {intent.state.name}")

        refund = self.escrowed[intent_id]
        self.tokens.transfer(intent.source_token, self.address, intent.user, refund)
        self.escrowed[intent_id] = 0
        intent.state = IntentState.CANCELLED

        self._emit("IntentCancelled", intentId=intent_id, user=intent.user, amount=refund)
        logger.info(f"Intent {intent.local_id} cancelled, refunded {refund}")
        return refund

    # =========================================================================
    # Destination: delivery
    # =========================================================================

    def solve_intent_on_chain2(
        self,
        sender: str,
        intent_id: int,
        user: str,
        token: str,
        amount: int,
        recipients: List[str],
        amounts: List[int],
    ) -> None:
        """
        Deliver amount of token to the recipients, once per intent id.

        All-or-nothing: funds are checked for the whole amount before the
        first transfer.
        """
        if self.solved.get(intent_id):
            raise AlreadySolved(f"Intent {intent_id} already solved on this chain")

        valid, err = validate_recipients(recipients, amounts)
        if not valid:
            raise InvalidParameters(err)
        amounts = [int(a) for a in amounts]
        valid, err = validate_address(token, "token")
        if not valid:
            raise InvalidParameters(err)
        if sum(amounts) != amount:
            raise InvalidParameters(f"Amounts sum {sum(amounts)} != amount {amount}")

        self.tokens.require_funds(token, sender, self.address, amount)
        for recipient, value in zip(recipients, amounts):
            self.tokens.transfer_from(token, self.address, sender, recipient, value)
        self.solved[intent_id] = True

        self._emit(
            "IntentSolvedOnChain2",
            intentId=intent_id,
            solver=to_checksum_address(sender),
            user=to_checksum_address(user),
            token=to_checksum_address(token),
            amount=amount,
        )
        logger.info(f"Intent {intent_id} solved on chain {self.chain_id}: {len(recipients)} recipients")

    # =========================================================================
    # Administration
    # =========================================================================

    def add_relayer(self, sender: str, relayer: str) -> None:
        if not same_address(sender, self.owner):
            raise NotOwner("Only the owner may manage relayers")
        self.relayers.add(relayer.lower())
        self._emit("RelayerAdded", relayer=to_checksum_address(relayer))

    def remove_relayer(self, sender: str, relayer: str) -> None:
        if not same_address(sender, self.owner):
            raise NotOwner("Only the owner may manage relayers")
        self.relayers.discard(relayer.lower())
        self._emit("RelayerRemoved", relayer=to_checksum_address(relayer))

    # =========================================================================
    # Views
    # =========================================================================

    def get_intent_details(self, intent_id: int) -> Intent:
        return copy.copy(self._get(intent_id))

    def get_highest_bid(self, intent_id: int) -> Tuple[int, str]:
        bid = self._get(intent_id).highest_bid
        if bid is None:
            return 0, ZERO_ADDRESS
        return bid.amount, bid.solver

    def is_intent_solved_on_chain2(self, intent_id: int) -> bool:
        return self.solved.get(intent_id, False)

    def get_latest_intent_id(self) -> int:
        return self.latest_intent_id

    def get_active_intents(self) -> List[int]:
        now = self.now()
        return [iid for iid, intent in self.intents.items() if intent.auction_open(now)]

    def is_authorized_relayer(self, address: str) -> bool:
        return address.lower() in self.relayers

    def get_local_intent_id(self, intent_id: int) -> int:
        return extract_local_id(intent_id)

    def escrowed_amount(self, intent_id: int) -> int:
        return self.escrowed.get(intent_id, 0)

    # =========================================================================
    # Rollback
    # =========================================================================

    def snapshot(self) -> dict:
        return {
            "intents": copy.deepcopy(self.intents),
            "solved": dict(self.solved),
            "escrowed": dict(self.escrowed),
            "relayers": set(self.relayers),
            "next_local_id": self.next_local_id,
            "latest_intent_id": self.latest_intent_id,
        }

    def restore(self, snapshot: dict) -> None:
        self.intents = snapshot["intents"]
        self.solved = snapshot["solved"]
        self.escrowed = snapshot["escrowed"]
        self.relayers = snapshot["relayers"]
        self.next_local_id = snapshot["next_local_id"]
        self.latest_intent_id = snapshot["latest_intent_id"]
        self.pending_events.clear()

    def drain_events(self) -> List[Tuple[str, dict]]:
        events, self.pending_events = self.pending_events, []
        return events

    def stats(self) -> dict:
        states: Dict[str, int] = {}
        for intent in self.intents.values():
            states[intent.state.name] = states.get(intent.state.name, 0) + 1
        return {
            "chain_id": self.chain_id,
            "intents": len(self.intents),
            "states": states,
            "solved": sum(1 for v in self.solved.values() if v),
            "relayers": len(self.relayers),
        }
