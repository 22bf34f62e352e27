import pytest

from conftest import make_identifier
from errors import IdentifierOutOfRange
from merkle.leaf_encoder import LeafEncoder, normalize_identifier, parse_identifier
from zk.field import FIELD_PRIME, FieldElement


def test_parse_accepts_all_wire_forms():
    expected = FieldElement(0xB0B)
    assert parse_identifier(make_identifier(0xB0B)) == expected
    assert parse_identifier((0xB0B).to_bytes(32, 'big')) == expected
    assert parse_identifier(0xB0B) == expected
    assert parse_identifier(expected) == expected


def test_parse_accepts_uppercase_hex():
    assert parse_identifier("0x" + "1F" * 32) == parse_identifier("0x" + "1f" * 32)


@pytest.mark.parametrize("bad", [
    "0x1234",                      # short
    "0x" + "0" * 66,               # long
    "0" * 64,                      # no prefix
    "0x" + "g" * 64,               # not hex
    b"\x01" * 31,                  # 31 bytes
    -1,
    1 << 256,
    1.5,
    None,
])
def test_parse_rejects_malformed(bad):
    with pytest.raises(IdentifierOutOfRange):
        parse_identifier(bad)


def test_values_at_or_above_prime_are_rejected_not_reduced():
    with pytest.raises(IdentifierOutOfRange):
        parse_identifier(make_identifier(FIELD_PRIME))
    with pytest.raises(IdentifierOutOfRange):
        parse_identifier("0x" + "f" * 64)
    assert parse_identifier(make_identifier(FIELD_PRIME - 1)).value == FIELD_PRIME - 1


def test_normalize_is_lowercase_bytes32():
    assert normalize_identifier("0x" + "0A" * 32) == "0x" + "0a" * 32
    assert normalize_identifier(7) == make_identifier(7)


def test_leaf_is_hash1_of_identifier(hasher):
    encoder = LeafEncoder(hasher)
    identifier = make_identifier(0xA11CE)
    assert encoder.encode_leaf(identifier) == hasher.hash1(FieldElement(0xA11CE))
    assert encoder.encode_leaves([identifier, identifier]) == [encoder.encode_leaf(identifier)] * 2
