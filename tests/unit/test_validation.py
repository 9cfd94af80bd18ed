"""
Unit tests for input validation.

Every check returns (is_valid, error_message) and never raises.
"""

from xip.crypto import ZERO_ADDRESS, random_address
from xip.utils.validation import (
    MAX_AMOUNT,
    MAX_ARRAY_LENGTH,
    parse_amount,
    validate_address,
    validate_amount,
    validate_array,
    validate_chain_id,
    validate_integer,
    validate_intent_id,
    validate_recipients,
    validate_string,
)


class TestScalars:
    """Tests for integer, amount and chain id checks."""

    def test_integer_rejects_bool_and_float(self):
        assert not validate_integer(True, "x")[0]
        assert not validate_integer(1.0, "x")[0]

    def test_integer_bounds(self):
        assert validate_integer(5, "x", 0, 10) == (True, "")
        valid, err = validate_integer(11, "x", 0, 10)
        assert not valid
        assert "[0, 10]" in err

    def test_amount_zero_rules(self):
        assert not validate_amount(0)[0]
        assert validate_amount(0, allow_zero=True)[0]
        assert not validate_amount(MAX_AMOUNT + 1)[0]

    def test_parse_amount_accepts_decimal_strings(self):
        assert parse_amount("1000000000000000000000") == (10**21, "")
        assert parse_amount(7) == (7, "")

    def test_parse_amount_rejects_garbage(self):
        assert parse_amount("1e18")[0] is None
        assert parse_amount("-5")[0] is None
        assert parse_amount(None)[0] is None

    def test_chain_id(self):
        assert validate_chain_id(84532)[0]
        assert not validate_chain_id(0)[0]
        assert not validate_chain_id("84532")[0]


class TestStringsAndArrays:

    def test_address(self):
        assert validate_address(random_address())[0]
        assert not validate_address("0x1234")[0]
        assert not validate_address(42)[0]

    def test_zero_address_needs_opt_in(self):
        assert not validate_address(ZERO_ADDRESS)[0]
        assert validate_address(ZERO_ADDRESS, allow_zero=True)[0]

    def test_array_length_limits(self):
        assert validate_array([1, 2], "a")[0]
        assert not validate_array("ab", "a")[0]
        assert not validate_array([0] * (MAX_ARRAY_LENGTH + 1), "a")[0]
        assert not validate_array([], "a", min_length=1)[0]

    def test_string_pattern(self):
        assert validate_string("abc", "s", pattern=r"^[a-z]+$")[0]
        assert not validate_string("ABC", "s", pattern=r"^[a-z]+$")[0]
        assert not validate_string("x" * 10, "s", max_length=5)[0]

    def test_intent_id_forms(self):
        assert validate_intent_id(0)[0]
        assert validate_intent_id("123456789012345678901234567890")[0]
        assert not validate_intent_id("12abc")[0]
        assert not validate_intent_id(-1)[0]
        assert not validate_intent_id(1.5)[0]


class TestRecipients:
    """Tests for recipient manifest validation."""

    def test_valid_manifest(self):
        assert validate_recipients([random_address(), random_address()], [60, "35"]) == (True, "")

    def test_length_mismatch(self):
        valid, err = validate_recipients([random_address()], [1, 2])
        assert not valid
        assert "mismatch" in err

    def test_empty_lists_rejected(self):
        assert not validate_recipients([], [])[0]

    def test_zero_amount_rejected(self):
        valid, err = validate_recipients([random_address()], [0])
        assert not valid
        assert "positive" in err

    def test_bad_address_rejected(self):
        valid, err = validate_recipients(["0xnope"], [1])
        assert not valid
        assert "recipients[0]" in err

