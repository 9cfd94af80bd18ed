"""Token balances and the local chain hosting the bridge ledger"""
from xip.core.state.token import TokenLedger, TokenSnapshot

__all__ = ["TokenLedger", "TokenSnapshot"]
