"""Secret key encodings for Solana keypairs.

A Solana secret key is 64 bytes: the 32-byte ed25519 seed followed by the
32-byte public key. Users paste it in one of four textual forms:

- Base58 (87-88 characters, what Phantom/Backpack export)
- Base64 (88 characters)
- Hex (128 characters, optionally 0x-prefixed)
- Decimal array ``[n0,n1,...,n63]`` (solana-keygen JSON file)

Detection tries each form in that order and the first one that decodes to
exactly 64 bytes wins. Nothing in this module logs key material, only
lengths and format tags.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from solkeeper.errors import (
    CorruptSecretError,
    FormatAttempt,
    InvalidKeyFormatError,
    InvalidKeyLengthError,
)

logger = logging.getLogger(__name__)

SECRET_KEY_LENGTH = 64
PUBLIC_KEY_LENGTH = 32

_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_HEX_RE = re.compile(r"^(?:0[xX])?[0-9a-fA-F]{128}$")
_DIGITS_RE = re.compile(r"^\d+$")
_LEGACY_LIST_RE = re.compile(r"^\d+(,\d+)*$")


class KeyEncoding(str, Enum):
    """Textual encodings accepted for secret keys."""

    BASE58 = "base58"
    BASE64 = "base64"
    HEX = "hex"
    ARRAY = "array"


@dataclass(frozen=True)
class DecodedSecret:
    """Secret key material together with the encoding it arrived in."""

    encoding: KeyEncoding
    material: bytes

    def __repr__(self) -> str:
        return f"DecodedSecret(encoding={self.encoding.value}, length={len(self.material)})"


class _WrongLength(Exception):
    def __init__(self, length: int):
        self.length = length


def _decode_base58(text: str) -> bytes:
    if not (87 <= len(text) <= 88):
        raise ValueError(f"length {len(text)} outside 87-88")
    if not _BASE58_RE.match(text):
        raise ValueError("contains non-base58 characters")
    return base58.b58decode(text)


def _decode_base64(text: str) -> bytes:
    if len(text) != 88:
        raise ValueError(f"length {len(text)} is not 88")
    if not _BASE64_RE.match(text):
        raise ValueError("contains non-base64 characters")
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 ({e})")


def _decode_hex(text: str) -> bytes:
    if not _HEX_RE.match(text):
        raise ValueError("not 128 hex characters")
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    return bytes.fromhex(text)


def _decode_array(text: str) -> bytes:
    if not (text.startswith("[") and text.endswith("]")):
        raise ValueError("not bracket-delimited")
    parts = [p.strip() for p in text[1:-1].split(",")]
    if not all(_DIGITS_RE.match(p) for p in parts):
        raise ValueError("elements must be non-negative integers")
    numbers = [int(p) for p in parts]
    if any(n > 255 for n in numbers):
        raise ValueError("elements must be in 0-255")
    if len(numbers) != SECRET_KEY_LENGTH:
        raise _WrongLength(len(numbers))
    return bytes(numbers)


# Order matters: first successful detector wins
_DETECTORS = (
    (KeyEncoding.BASE58, _decode_base58),
    (KeyEncoding.BASE64, _decode_base64),
    (KeyEncoding.HEX, _decode_hex),
    (KeyEncoding.ARRAY, _decode_array),
)

_DECODERS = dict(_DETECTORS)


def detect_and_decode(text: str) -> DecodedSecret:
    """Detect the encoding of a pasted secret key and decode it.

    Args:
        text: User input, surrounding whitespace is ignored

    Returns:
        DecodedSecret with exactly 64 bytes of material

    Raises:
        InvalidKeyLengthError: If some encoding matched but decoded to the
            wrong number of bytes and nothing else matched
        InvalidKeyFormatError: If no encoding matched
    """
    clean = text.strip()
    attempts: list[FormatAttempt] = []
    wrong_lengths: list[int] = []

    for encoding, decoder in _DETECTORS:
        try:
            material = decoder(clean)
        except _WrongLength as e:
            wrong_lengths.append(e.length)
            attempts.append(FormatAttempt(encoding.value, f"decoded to {e.length} bytes"))
            continue
        except ValueError as e:
            attempts.append(FormatAttempt(encoding.value, str(e)))
            continue

        # Shape checks are necessary but not sufficient
        if len(material) != SECRET_KEY_LENGTH:
            wrong_lengths.append(len(material))
            attempts.append(FormatAttempt(encoding.value, f"decoded to {len(material)} bytes"))
            continue

        logger.debug(f"Secret key detected as {encoding.value} (input length {len(clean)})")
        return DecodedSecret(encoding=encoding, material=material)

    logger.debug(f"No secret key format matched (input length {len(clean)})")

    if wrong_lengths:
        raise InvalidKeyLengthError(
            f"Invalid private key length: {wrong_lengths[0]}, expected {SECRET_KEY_LENGTH} bytes",
            length=wrong_lengths[0],
            attempts=attempts,
        )
    raise InvalidKeyFormatError(
        "Invalid private key format. Supported formats: Base58 (87-88 characters), "
        "Base64 (88 characters), Hex (128 characters, with or without 0x prefix), "
        "Array format [n1,n2,...]",
        attempts=attempts,
    )


def decode(text: str, encoding: KeyEncoding) -> bytes:
    """Decode text with a known encoding, requiring 64 bytes of output."""
    clean = text.strip()
    try:
        material = _DECODERS[KeyEncoding(encoding)](clean)
    except _WrongLength as e:
        raise InvalidKeyLengthError(
            f"Invalid private key length: {e.length}, expected {SECRET_KEY_LENGTH} bytes",
            length=e.length,
        )
    except ValueError as e:
        raise InvalidKeyFormatError(
            f"Not a valid {KeyEncoding(encoding).value} key",
            attempts=[FormatAttempt(KeyEncoding(encoding).value, str(e))],
        )

    _require_length(material)
    return material


def encode(material: bytes, encoding: KeyEncoding = KeyEncoding.BASE58) -> str:
    """Encode 64 bytes of key material."""
    _require_length(material)
    encoding = KeyEncoding(encoding)

    if encoding == KeyEncoding.BASE58:
        return base58.b58encode(material).decode()
    elif encoding == KeyEncoding.BASE64:
        return base64.b64encode(material).decode()
    elif encoding == KeyEncoding.HEX:
        return material.hex()
    else:
        return json.dumps(list(material), separators=(",", ":"))


def to_byte_array(material: bytes) -> list[int]:
    """Raw byte values, for JSON consumers."""
    _require_length(material)
    return list(material)


def _require_length(material: bytes) -> None:
    if len(material) != SECRET_KEY_LENGTH:
        raise InvalidKeyLengthError(
            f"Invalid private key length: {len(material)}, expected {SECRET_KEY_LENGTH} bytes",
            length=len(material),
        )


def derive_public_key(material: bytes) -> str:
    """Derive the base58 public key and check it matches the secret's tail.

    Raises:
        InvalidKeyLengthError: If material is not 64 bytes
        InvalidKeyFormatError: If the trailing 32 bytes are not the public
            key of the leading seed
    """
    _require_length(material)
    keypair = Keypair.from_seed(bytes(material[:32]))
    public_key = keypair.pubkey()

    if bytes(public_key) != bytes(material[32:]):
        raise InvalidKeyFormatError(
            "Invalid private key: Could not create keypair",
            attempts=[FormatAttempt("keypair", "public half does not match seed")],
        )

    return str(public_key)


def keypair_from_secret(material: bytes) -> Keypair:
    """Build a signing keypair from validated 64-byte material."""
    derive_public_key(material)
    return Keypair.from_seed(bytes(material[:32]))


def is_valid_address(address: str) -> bool:
    """Check that text is a base58 32-byte public key on the ed25519 curve."""
    address = address.strip()
    if not address or not _BASE58_RE.match(address):
        return False
    try:
        raw = base58.b58decode(address)
    except ValueError:
        return False
    if len(raw) != PUBLIC_KEY_LENGTH:
        return False
    return Pubkey(raw).is_on_curve()


# ============ STORAGE FORMAT ============


def serialize_secret(material: bytes) -> str:
    """Plaintext stored under encryption: a compact JSON byte array."""
    _require_length(material)
    return json.dumps(list(material), separators=(",", ":"))


def deserialize_secret(text: str) -> bytes:
    """Parse a decrypted stored secret.

    Accepts the JSON array written by ``serialize_secret`` and the two legacy
    forms older records used: an 88-character Base64 string and a bare
    comma-separated digit list. The length is not checked here.

    Raises:
        CorruptSecretError: If the text matches none of the forms
    """
    try:
        values = json.loads(text)
    except ValueError:
        values = None

    if isinstance(values, list):
        if not all(isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 255 for v in values):
            raise CorruptSecretError("Stored secret array contains invalid byte values")
        return bytes(values)

    if len(text) == 88 and _BASE64_RE.match(text):
        try:
            return base64.b64decode(text, validate=True)
        except binascii.Error:
            raise CorruptSecretError("Stored secret is not valid base64")

    if _LEGACY_LIST_RE.match(text):
        values = [int(n) for n in text.split(",")]
        if any(v > 255 for v in values):
            raise CorruptSecretError("Stored secret list contains invalid byte values")
        return bytes(values)

    raise CorruptSecretError("Unknown stored secret format")
