"""
Checks for values arriving from outside the process: HTTP bodies, CLI
arguments, store writes and ledger calls.

Every check returns (is_valid, error_message) and never raises, so callers
decide which exception to turn a failure into (InvalidParameters on the
ledger, a 400 on the relayer, a click error on the CLI).
"""

import re
from typing import Any, Optional, Tuple

from xip.crypto import is_valid_address, is_zero_address

# =============================================================================
# Bounds
# =============================================================================

UINT256_MAX = 2**256 - 1
MAX_AMOUNT = UINT256_MAX
MAX_CHAIN_ID = 2**64 - 1

# A manifest longer than this is refused rather than paid out in one tx
MAX_ARRAY_LENGTH = 256
MAX_STRING_LENGTH = 1024
MAX_INTENT_ID_LENGTH = len(str(UINT256_MAX))

_DIGITS = re.compile(r"^[0-9]+$")

Check = Tuple[bool, str]


def _type_name(value: Any) -> str:
    return type(value).__name__


# =============================================================================
# Scalars
# =============================================================================


def validate_integer(value: Any, name: str, min_val: int = 0, max_val: int = UINT256_MAX) -> Check:
    """Plain int in [min_val, max_val]; bools are refused."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {_type_name(value)}"
    if not min_val <= value <= max_val:
        return False, f"{name} must be in [{min_val}, {max_val}], got {value}"
    return True, ""


def parse_amount(value: Any, name: str = "amount") -> Tuple[Optional[int], str]:
    """
    Read a token amount given as int or decimal string.

    JSON bodies carry amounts as strings since they outgrow 2**53.

    Returns:
        (amount, error_message), amount being None on failure
    """
    if isinstance(value, str):
        if not _DIGITS.match(value):
            return None, f"{name} must be a decimal integer string"
        value = int(value)
    ok, err = validate_integer(value, name)
    return (value, "") if ok else (None, err)


def validate_amount(amount: Any, name: str = "amount", allow_zero: bool = False) -> Check:
    return validate_integer(amount, name, 0 if allow_zero else 1)


def validate_chain_id(chain_id: Any) -> Check:
    return validate_integer(chain_id, "chain_id", 1, MAX_CHAIN_ID)


def validate_string(value: Any, name: str, max_length: int = MAX_STRING_LENGTH, pattern: Optional[str] = None) -> Check:
    if not isinstance(value, str):
        return False, f"{name} must be str, got {_type_name(value)}"
    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"
    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"
    return True, ""


def validate_intent_id(intent_id: Any) -> Check:
    """
    Intent ids are uint256, so the composite form (chain_id << 128 | local)
    fits. The decimal string form is accepted as well.
    """
    if isinstance(intent_id, str):
        return validate_string(intent_id, "intent_id", MAX_INTENT_ID_LENGTH, _DIGITS.pattern)
    return validate_integer(intent_id, "intent_id")


def validate_address(address: Any, name: str = "address", allow_zero: bool = False) -> Check:
    """0x-prefixed 20-byte address; mixed case must carry a valid EIP-55 checksum."""
    if not isinstance(address, str):
        return False, f"{name} must be str, got {_type_name(address)}"
    if not is_valid_address(address):
        return False, f"{name} is not a valid address: {address}"
    if is_zero_address(address) and not allow_zero:
        return False, f"{name} must not be the zero address"
    return True, ""


# =============================================================================
# Recipient Manifests
# =============================================================================


def validate_array(data: Any, name: str, max_length: int = MAX_ARRAY_LENGTH, min_length: int = 0) -> Check:
    if not isinstance(data, (list, tuple)):
        return False, f"{name} must be list/tuple, got {_type_name(data)}"
    if len(data) > max_length:
        return False, f"{name} exceeds max length {max_length}, got {len(data)}"
    if len(data) < min_length:
        return False, f"{name} must have at least {min_length} entries"
    return True, ""


def validate_recipients(recipients: Any, amounts: Any) -> Check:
    """
    Check a payout manifest: parallel, non-empty lists of addresses and
    positive amounts (ints or decimal strings).
    """
    for data, name in ((recipients, "recipients"), (amounts, "amounts")):
        ok, err = validate_array(data, name, min_length=1)
        if not ok:
            return False, err

    if len(recipients) != len(amounts):
        return False, f"recipients and amounts length mismatch: {len(recipients)} != {len(amounts)}"

    for i, (address, amount) in enumerate(zip(recipients, amounts)):
        ok, err = validate_address(address, f"recipients[{i}]")
        if not ok:
            return False, err
        parsed, err = parse_amount(amount, f"amounts[{i}]")
        if parsed is None:
            return False, err
        if parsed == 0:
            return False, f"amounts[{i}] must be positive"

    return True, ""


__all__ = [
    "MAX_AMOUNT",
    "MAX_ARRAY_LENGTH",
    "parse_amount",
    "validate_address",
    "validate_amount",
    "validate_array",
    "validate_chain_id",
    "validate_integer",
    "validate_intent_id",
    "validate_recipients",
    "validate_string",
]
