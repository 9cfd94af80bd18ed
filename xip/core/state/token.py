"""
Token Ledger - ERC20-style balances and allowances for every token on a chain.

Addresses are compared case-insensitively; all keys are stored lowercase.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Tuple

from xip.core.errors import InsufficientFunds, InvalidParameters
from xip.utils.logger import get_logger

logger = get_logger("token")


def _key(address: str) -> str:
    return address.lower()


@dataclass
class TokenSnapshot:
    """Copy of token state, used to roll back a reverted transaction."""
    balances: Dict[str, Dict[str, int]]
    allowances: Dict[Tuple[str, str, str], int]
    total_supply: Dict[str, int]


class TokenLedger:
    """
    Balances and allowances for any number of tokens.

    Attributes:
        balances: token -> holder -> amount
        allowances: (token, owner, spender) -> amount
        total_supply: token -> minted amount
    """

    def __init__(self):
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.allowances: Dict[Tuple[str, str, str], int] = defaultdict(int)
        self.total_supply: Dict[str, int] = defaultdict(int)

    # =========================================================================
    # Views
    # =========================================================================

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances[_key(token)][_key(holder)]

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances[(_key(token), _key(owner), _key(spender))]

    # =========================================================================
    # Mutations
    # =========================================================================

    def mint(self, token: str, to: str, amount: int) -> None:
        """Create new tokens (faucet / genesis allocation)."""
        if amount <= 0:
            raise InvalidParameters(f"Mint amount must be positive, got {amount}")
        self.balances[_key(token)][_key(to)] += amount
        self.total_supply[_key(token)] += amount
        logger.debug(f"Minted {amount} of {token[:10]} to {to[:10]}")

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        """Set (not add to) the spender's allowance."""
        if amount < 0:
            raise InvalidParameters(f"Allowance must be non-negative, got {amount}")
        self.allowances[(_key(token), _key(owner), _key(spender))] = amount

    def transfer(self, token: str, sender: str, to: str, amount: int) -> None:
        """Move tokens from sender to recipient."""
        balance = self.balance_of(token, sender)
        if balance < amount:
            raise InsufficientFunds(
                f"Insufficient balance: have {balance}, need {amount}",
                token=token,
            )
        self.balances[_key(token)][_key(sender)] -= amount
        self.balances[_key(token)][_key(to)] += amount

    def transfer_from(self, token: str, spender: str, owner: str, to: str, amount: int) -> None:
        """Move tokens on behalf of owner, consuming spender's allowance."""
        allowed = self.allowance(token, owner, spender)
        if allowed < amount:
            raise InsufficientFunds(
                f"Insufficient allowance: have {allowed}, need {amount}",
                token=token,
            )
        self.transfer(token, owner, to, amount)
        self.allowances[(_key(token), _key(owner), _key(spender))] = allowed - amount

    def require_funds(self, token: str, owner: str, spender: str, amount: int) -> None:
        """Raise unless a transfer_from of amount would succeed."""
        allowed = self.allowance(token, owner, spender)
        if allowed < amount:
            raise InsufficientFunds(f"Insufficient allowance: have {allowed}, need {amount}", token=token)
        balance = self.balance_of(token, owner)
        if balance < amount:
            raise InsufficientFunds(f"Insufficient balance: have {balance}, need {amount}", token=token)

    # =========================================================================
    # Rollback
    # =========================================================================

    def snapshot(self) -> TokenSnapshot:
        return TokenSnapshot(
            balances={t: dict(holders) for t, holders in self.balances.items()},
            allowances=dict(self.allowances),
            total_supply=dict(self.total_supply),
        )

    def restore(self, snapshot: TokenSnapshot) -> None:
        self.balances = defaultdict(lambda: defaultdict(int))
        for token, holders in snapshot.balances.items():
            self.balances[token].update(holders)
        self.allowances = defaultdict(int, snapshot.allowances)
        self.total_supply = defaultdict(int, snapshot.total_supply)
