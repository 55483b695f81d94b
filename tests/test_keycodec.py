"""Tests for secret key encodings."""

import base64
import json

import base58
import pytest
from solders.keypair import Keypair

from solkeeper import keycodec
from solkeeper.errors import (
    CorruptSecretError,
    ErrorKind,
    InvalidKeyFormatError,
    InvalidKeyLengthError,
)
from solkeeper.keycodec import KeyEncoding


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def material(keypair) -> bytes:
    return bytes(keypair)


class TestDetection:
    """Tests for format detection."""

    def test_base58(self, material):
        text = base58.b58encode(material).decode()
        decoded = keycodec.detect_and_decode(text)

        assert decoded.encoding == KeyEncoding.BASE58
        assert decoded.material == material

    def test_base64(self, material):
        text = base64.b64encode(material).decode()
        assert len(text) == 88

        decoded = keycodec.detect_and_decode(text)

        assert decoded.encoding == KeyEncoding.BASE64
        assert decoded.material == material

    @pytest.mark.parametrize("prefix", ["", "0x", "0X"])
    def test_hex(self, material, prefix):
        decoded = keycodec.detect_and_decode(prefix + material.hex())

        assert decoded.encoding == KeyEncoding.HEX
        assert decoded.material == material

    def test_uppercase_hex(self, material):
        decoded = keycodec.detect_and_decode(material.hex().upper())
        assert decoded.material == material

    def test_array(self, material):
        decoded = keycodec.detect_and_decode(json.dumps(list(material)))

        assert decoded.encoding == KeyEncoding.ARRAY
        assert decoded.material == material

    def test_array_with_spaces(self, material):
        text = "[ " + " , ".join(str(b) for b in material) + " ]"
        assert keycodec.detect_and_decode(text).material == material

    def test_surrounding_whitespace_ignored(self, material):
        text = "\n  " + base58.b58encode(material).decode() + "  \n"
        assert keycodec.detect_and_decode(text).material == material

    def test_base58_wins_over_base64(self):
        """An 88-char string in the Base58 alphabet is treated as Base58."""
        for _ in range(50):
            material = bytes(Keypair())
            text = base58.b58encode(material).decode()
            if len(text) == 88:
                break
        else:
            pytest.skip("no 88-character Base58 key generated")

        decoded = keycodec.detect_and_decode(text)
        assert decoded.encoding == KeyEncoding.BASE58
        assert decoded.material == material

    def test_unknown_format_lists_attempts(self):
        with pytest.raises(InvalidKeyFormatError) as exc_info:
            keycodec.detect_and_decode("definitely not a key")

        error = exc_info.value
        assert error.kind == ErrorKind.INVALID_KEY_FORMAT
        assert [a.encoding for a in error.attempts] == ["base58", "base64", "hex", "array"]
        assert error.user_correctable

    def test_overlong_non_base58_is_format_error(self):
        text = ("0OIl" * 23)[:90]

        with pytest.raises(InvalidKeyFormatError) as exc_info:
            keycodec.detect_and_decode(text)

        assert not isinstance(exc_info.value, InvalidKeyLengthError)
        assert exc_info.value.kind == ErrorKind.INVALID_KEY_FORMAT
        assert len(exc_info.value.attempts) == 4
        assert exc_info.value.attempts[0].reason == "length 90 outside 87-88"

    def test_empty_input(self):
        with pytest.raises(InvalidKeyFormatError):
            keycodec.detect_and_decode("   ")

    def test_short_array_is_length_error(self):
        with pytest.raises(InvalidKeyLengthError) as exc_info:
            keycodec.detect_and_decode(json.dumps(list(range(32))))

        assert exc_info.value.length == 32
        assert exc_info.value.kind == ErrorKind.INVALID_KEY_LENGTH

    def test_base58_wrong_length_is_length_error(self):
        # 87 leading-zero characters decode to 87 zero bytes
        with pytest.raises(InvalidKeyLengthError) as exc_info:
            keycodec.detect_and_decode("1" * 87)

        assert exc_info.value.length == 87

    def test_array_out_of_range(self, material):
        values = list(material)
        values[0] = 256
        with pytest.raises(InvalidKeyFormatError) as exc_info:
            keycodec.detect_and_decode(json.dumps(values))

        assert not isinstance(exc_info.value, InvalidKeyLengthError)

    def test_array_negative_rejected(self, material):
        values = list(material)
        values[5] = -1
        with pytest.raises(InvalidKeyFormatError):
            keycodec.detect_and_decode(json.dumps(values))

    def test_short_hex_rejected(self, material):
        with pytest.raises(InvalidKeyFormatError):
            keycodec.detect_and_decode(material[:32].hex())

    def test_decoded_repr_hides_material(self, material):
        decoded = keycodec.detect_and_decode(material.hex())
        assert material.hex() not in repr(decoded)
        assert "length=64" in repr(decoded)


class TestEncode:
    """Tests for encoding and explicit decoding."""

    @pytest.mark.parametrize("encoding", list(KeyEncoding))
    def test_encode_decode(self, material, encoding):
        text = keycodec.encode(material, encoding)
        assert keycodec.decode(text, encoding) == material

    def test_hex_is_lowercase_without_prefix(self, material):
        text = keycodec.encode(material, KeyEncoding.HEX)
        assert text == material.hex()

    def test_array_is_compact_json(self, material):
        text = keycodec.encode(material, KeyEncoding.ARRAY)
        assert " " not in text
        assert json.loads(text) == list(material)

    def test_default_is_base58(self, keypair, material):
        assert keycodec.encode(material) == base58.b58encode(material).decode()

    def test_encode_rejects_wrong_length(self):
        with pytest.raises(InvalidKeyLengthError):
            keycodec.encode(b"\x01" * 32)

    def test_decode_with_wrong_encoding(self, material):
        with pytest.raises(InvalidKeyFormatError):
            keycodec.decode(material.hex(), KeyEncoding.BASE64)

    def test_to_byte_array(self, material):
        assert keycodec.to_byte_array(material) == list(material)


class TestKeypair:
    """Tests for keypair validation."""

    def test_derive_public_key(self, keypair, material):
        assert keycodec.derive_public_key(material) == str(keypair.pubkey())

    def test_mismatched_halves_rejected(self, material):
        other = bytes(Keypair())
        spliced = material[:32] + other[32:]

        with pytest.raises(InvalidKeyFormatError) as exc_info:
            keycodec.derive_public_key(spliced)

        assert "Could not create keypair" in str(exc_info.value)

    def test_keypair_from_secret(self, keypair, material):
        restored = keycodec.keypair_from_secret(material)
        assert restored.pubkey() == keypair.pubkey()


class TestAddressValidation:
    """Tests for destination address checks."""

    def test_valid_address(self, keypair):
        assert keycodec.is_valid_address(str(keypair.pubkey()))

    def test_address_with_whitespace(self, keypair):
        assert keycodec.is_valid_address(f"  {keypair.pubkey()} ")

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "not-an-address",
            "0OIl" * 11,
            "1" * 20,
            "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0",
        ],
    )
    def test_invalid_addresses(self, address):
        assert not keycodec.is_valid_address(address)

    def test_secret_key_is_not_an_address(self, material):
        assert not keycodec.is_valid_address(base58.b58encode(material).decode())


class TestStorageFormat:
    """Tests for the plaintext stored under encryption."""

    def test_serialize_is_json_array(self, material):
        text = keycodec.serialize_secret(material)
        assert text.startswith("[") and " " not in text
        assert keycodec.deserialize_secret(text) == material

    def test_legacy_base64(self, material):
        text = base64.b64encode(material).decode()
        assert keycodec.deserialize_secret(text) == material

    def test_legacy_digit_list(self, material):
        text = ",".join(str(b) for b in material)
        assert keycodec.deserialize_secret(text) == material

    def test_wrong_length_is_returned_unchecked(self):
        assert keycodec.deserialize_secret("[1,2,3]") == b"\x01\x02\x03"

    @pytest.mark.parametrize("text", ["hello", "[1,2,300]", '{"a": 1}', "[true,false]"])
    def test_unknown_forms_rejected(self, text):
        with pytest.raises(CorruptSecretError):
            keycodec.deserialize_secret(text)
