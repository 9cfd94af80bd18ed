"""
Identities and signatures for the bridge ledgers.

Both ledgers behave like EVM chains: an account is a secp256k1 key, its
address is the last 20 bytes of keccak256(public_key) written with an EIP-55
checksum, and every transaction carries a recoverable signature from which
the ledger derives the sender.
"""

import re
import secrets
from dataclasses import dataclass
from typing import Optional

from Crypto.Hash import keccak
from py_ecc.secp256k1 import secp256k1


# =============================================================================
# Constants
# =============================================================================

# Group order n of secp256k1
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ZERO_ADDRESS = "0x" + "00" * 20

# 20 bytes, written as exactly 40 hex digits
_ADDRESS_BODY = re.compile(r"[0-9a-fA-F]{40}")


# =============================================================================
# Hashing
# =============================================================================


def keccak256(data: bytes) -> bytes:
    """Legacy Keccak-256 (pre-NIST padding), as used for addresses and tx hashes."""
    return keccak.new(digest_bits=256, data=data).digest()


# =============================================================================
# Addresses
# =============================================================================


def to_checksum_address(address: str) -> str:
    """
    Apply the EIP-55 mixed-case checksum to a hex address.

    Raises:
        ValueError: if the input is not 20 hex-encoded bytes
    """
    raw = address[2:] if address.startswith(("0x", "0X")) else address
    if not _ADDRESS_BODY.fullmatch(raw):
        raise ValueError(f"Address must be 40 hex digits: {address!r}")
    raw = raw.lower()
    digest = keccak256(raw.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if int(digest[i], 16) >= 8 else c
        for i, c in enumerate(raw)
    )


def is_valid_address(address: str) -> bool:
    """
    Check if string is a valid address.

    All-lowercase and all-uppercase addresses are accepted as-is;
    mixed-case addresses must carry a correct EIP-55 checksum.
    """
    if not isinstance(address, str) or not address.startswith("0x"):
        return False
    body = address[2:]
    if not _ADDRESS_BODY.fullmatch(body):
        return False
    if body == body.lower() or body == body.upper():
        return True
    return to_checksum_address(address) == address


def is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address comparison."""
    if not a or not b:
        return False
    return a.lower() == b.lower()


def address_from_public_key(public_key: bytes) -> str:
    """
    Derive a checksummed address from a 64-byte public key.

    address = keccak256(public_key)[-20:]
    """
    if len(public_key) != 64:
        raise ValueError("Public key must be 64 bytes")
    return to_checksum_address(keccak256(public_key)[-20:].hex())


# =============================================================================
# Keys
# =============================================================================


def _int32(value: int) -> bytes:
    return value.to_bytes(32, byteorder="big")


def _point_bytes(point) -> bytes:
    """Serialize an (x, y) curve point as 64 bytes, without the 0x04 tag."""
    return _int32(point[0]) + _int32(point[1])


@dataclass
class KeyPair:
    """
    A secp256k1 identity: the signer of ledger transactions.

    Attributes:
        private_key: 32-byte scalar in [1, order-1]
        public_key: x || y of the matching point (64 bytes)
    """
    private_key: bytes
    public_key: bytes

    @property
    def address(self) -> str:
        return address_from_public_key(self.public_key)

    @property
    def private_key_hex(self) -> str:
        return self.private_key.hex()


def private_key_to_public_key(private_key: bytes) -> bytes:
    """
    Multiply the generator by a 32-byte private key.

    Raises:
        ValueError: if the key is not 32 bytes
    """
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")
    return _point_bytes(secp256k1.privtopub(private_key))


def _keypair(private_key: bytes) -> KeyPair:
    return KeyPair(private_key=private_key, public_key=private_key_to_public_key(private_key))


def generate_keypair() -> KeyPair:
    """Fresh identity drawn from the OS CSPRNG."""
    return _keypair(_int32(secrets.randbelow(SECP256K1_ORDER - 1) + 1))


def keypair_from_hex(private_key_hex: str) -> KeyPair:
    """Identity from a hex private key, e.g. PRIVATE_KEY in a .env file."""
    return _keypair(hex_to_bytes(private_key_hex))


def random_address() -> str:
    """An unused address whose key is thrown away (fallback payout target)."""
    return generate_keypair().address


# =============================================================================
# Transaction Signatures
# =============================================================================

HALF_ORDER = SECP256K1_ORDER // 2


def sign(message_hash: bytes, private_key: bytes) -> bytes:
    """
    Produce a recoverable signature over a transaction hash.

    The result is r || s || v (65 bytes) with v in {27, 28} and s in the
    lower half of the curve order, so every signature has a single encoding.

    Raises:
        ValueError: on a hash or key of the wrong length
    """
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    v, r, s = secp256k1.ecdsa_raw_sign(message_hash, private_key)
    if s > HALF_ORDER:
        # -s pairs with the other y parity
        s = SECP256K1_ORDER - s
        v = 27 + ((v - 27) ^ 1)
    return _int32(r) + _int32(s) + bytes([v])


def recover_public_key(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """Public key behind a signature, or None when the signature is malformed."""
    if len(message_hash) != 32 or len(signature) != 65:
        return None

    r = int.from_bytes(signature[:32], byteorder="big")
    s = int.from_bytes(signature[32:64], byteorder="big")
    v = signature[64]
    if v not in (27, 28) or not 0 < r < SECP256K1_ORDER or not 0 < s < SECP256K1_ORDER:
        return None

    try:
        point = secp256k1.ecdsa_raw_recover(message_hash, (v, r, s))
    except (ValueError, ZeroDivisionError):
        return None
    return _point_bytes(point) if point else None


def recover_address(message_hash: bytes, signature: bytes) -> Optional[str]:
    """Sender address of a signed transaction, or None."""
    public_key = recover_public_key(message_hash, signature)
    return address_from_public_key(public_key) if public_key is not None else None


# =============================================================================
# Hex
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Decode hex, tolerating a 0x prefix."""
    if hex_str[:2] in ("0x", "0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)
