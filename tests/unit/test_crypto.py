"""Account keys, transaction signatures and address handling."""

import pytest

from xip.crypto import (
    SECP256K1_ORDER,
    ZERO_ADDRESS,
    bytes_to_hex,
    generate_keypair,
    hex_to_bytes,
    is_valid_address,
    is_zero_address,
    keccak256,
    keypair_from_hex,
    private_key_to_public_key,
    random_address,
    recover_address,
    recover_public_key,
    same_address,
    sign,
    to_checksum_address,
)


class TestKeys:

    def test_keypair_generation_produces_valid_lengths(self):
        kp = generate_keypair()
        assert len(kp.private_key) == 32
        assert len(kp.public_key) == 64

    def test_keypair_address_format(self):
        """Address should be a checksummed 0x-prefixed 40 hex chars."""
        kp = generate_keypair()
        assert kp.address.startswith("0x")
        assert len(kp.address) == 42
        assert is_valid_address(kp.address)
        assert kp.address == to_checksum_address(kp.address.lower())

    def test_derive_public_key_from_private(self):
        kp = generate_keypair()
        assert private_key_to_public_key(kp.private_key) == kp.public_key

    def test_known_private_key_address(self):
        """Private key 1 maps to the well-known Ethereum address."""
        kp = keypair_from_hex("0x" + "00" * 31 + "01")
        assert kp.address == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"

    def test_keypair_from_hex_roundtrip(self):
        kp = generate_keypair()
        assert keypair_from_hex(kp.private_key_hex).address == kp.address

    def test_random_addresses_are_unique(self):
        assert random_address() != random_address()


class TestTransactionSignatures:

    def test_signature_length_and_v(self):
        kp = generate_keypair()
        sig = sign(keccak256(b"message"), kp.private_key)
        assert len(sig) == 65
        assert sig[64] in (27, 28)

    def test_signature_is_low_s(self):
        kp = generate_keypair()
        for i in range(5):
            sig = sign(keccak256(bytes([i])), kp.private_key)
            s = int.from_bytes(sig[32:64], "big")
            assert s <= SECP256K1_ORDER // 2

    def test_recover_signer(self):
        kp = generate_keypair()
        msg = keccak256(b"recovery test")
        sig = sign(msg, kp.private_key)
        assert recover_public_key(msg, sig) == kp.public_key
        assert recover_address(msg, sig) == kp.address

    def test_recover_wrong_message_gives_other_address(self):
        kp = generate_keypair()
        sig = sign(keccak256(b"message 1"), kp.private_key)
        assert recover_address(keccak256(b"message 2"), sig) != kp.address

    def test_recover_rejects_malformed_signature(self):
        msg = keccak256(b"x")
        assert recover_public_key(msg, b"\x00" * 64) is None
        assert recover_public_key(msg, b"\x00" * 65) is None

    def test_sign_rejects_bad_lengths(self):
        kp = generate_keypair()
        with pytest.raises(ValueError):
            sign(b"short", kp.private_key)
        with pytest.raises(ValueError):
            sign(keccak256(b"x"), b"\x01" * 31)


class TestKeccak:

    def test_keccak256_empty_vector(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_keccak256_is_legacy_not_sha3(self):
        # SHA3-256("") differs from Keccak-256("") only by padding
        assert keccak256(b"").hex() != "a7ffc6f8bf1ed76651c14756a061d662f580ff4de43b49fa82d80a4b80f8434a"


class TestAddresses:

    def test_eip55_checksum(self):
        checksummed = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        assert to_checksum_address(checksummed.lower()) == checksummed

    def test_checksum_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            to_checksum_address("0x1234")

    def test_is_valid_address(self):
        assert is_valid_address("0x" + "a" * 40)
        assert is_valid_address("0x" + "A" * 40)
        assert not is_valid_address("0x" + "a" * 39)
        assert not is_valid_address("a" * 40)
        assert not is_valid_address("0x" + "g" * 40)

    @pytest.mark.parametrize("body", [
        "a" * 39 + " ",
        " " + "a" * 39,
        "a" * 39 + "\n",
        "a" * 19 + "_" + "a" * 20,
        "+" + "a" * 39,
    ])
    def test_is_valid_address_rejects_non_hex_characters(self, body):
        assert not is_valid_address("0x" + body)
        with pytest.raises(ValueError):
            to_checksum_address("0x" + body)

    def test_bad_mixed_case_checksum_rejected(self):
        good = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        bad = good[:3] + good[3].upper() + good[4:]
        assert bad != good
        assert not is_valid_address(bad)

    def test_zero_and_same_address(self):
        assert is_zero_address(ZERO_ADDRESS)
        addr = random_address()
        assert same_address(addr, addr.lower())
        assert not same_address(addr, None)


class TestHex:

    def test_bytes_to_hex(self):
        assert bytes_to_hex(bytes([0xde, 0xad, 0xbe, 0xef])) == "0xdeadbeef"

    def test_hex_to_bytes(self):
        assert hex_to_bytes("0xdeadbeef") == bytes([0xde, 0xad, 0xbe, 0xef])
        assert hex_to_bytes("deadbeef") == bytes([0xde, 0xad, 0xbe, 0xef])
