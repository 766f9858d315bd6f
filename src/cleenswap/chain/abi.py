"""Minimal ABI encoding/decoding for ERC-20/ERC-721 calls and logs.

Works on raw bytes and hex strings only - there is no contract object.
Supported argument types: address, bool, uint<N>.

Word layout:
    selector = keccak256(canonical signature)[:4]
    address  = 12 zero bytes + 20 address bytes
    uint     = big-endian, left-padded to 32 bytes
"""

import re
from typing import Any, Sequence, Union

from Crypto.Hash import keccak
from eth_utils import to_checksum_address

from cleenswap.errors import DecodingError

WORD_SIZE = 32
ADDRESS_SIZE = 20

# \Z, not $: $ also matches before a trailing newline
_HEX_RE = re.compile(r"^[0-9a-fA-F]*\Z")
_ADDRESS_RE = re.compile(r"^(0x|0X)?[0-9a-fA-F]{40}\Z")
_SIGNATURE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\(([A-Za-z0-9,]*)\)\Z")
_UINT_RE = re.compile(r"^uint([0-9]{0,3})\Z")

# Function signatures used by the resolver and the exchange flow
BALANCE_OF = "balanceOf(address)"
DECIMALS = "decimals()"
TRANSFER = "transfer(address,uint256)"

TRANSFER_EVENT = "Transfer(address,address,uint256)"


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA-3 used by Ethereum)."""
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def _canonical(signature: str) -> str:
    canonical = signature.replace(" ", "")
    if not _SIGNATURE_RE.match(canonical):
        raise DecodingError(f"Invalid function signature: {signature!r}")
    return canonical


def signature_types(signature: str) -> list[str]:
    """Parameter types declared in a canonical signature."""
    params = _SIGNATURE_RE.match(_canonical(signature)).group(2)
    return params.split(",") if params else []


def function_selector(signature: str) -> bytes:
    """First 4 bytes of keccak256 of the canonical signature."""
    return keccak256(_canonical(signature).encode("ascii"))[:4]


def event_topic(signature: str) -> str:
    """Topic0 (full keccak256 hash) for an event signature, as hex."""
    return "0x" + keccak256(_canonical(signature).encode("ascii")).hex()


TRANSFER_EVENT_TOPIC = event_topic(TRANSFER_EVENT)


def hex_to_bytes(value: str) -> bytes:
    """Strictly convert a 0x-prefixed (or bare) hex string to bytes."""
    if not isinstance(value, str):
        raise DecodingError(f"Expected hex string, got {type(value).__name__}")
    digits = value[2:] if value[:2] in ("0x", "0X") else value
    if not _HEX_RE.match(digits):
        raise DecodingError(f"Non-hex characters in {value!r}")
    if len(digits) % 2:
        raise DecodingError(f"Odd-length hex string {value!r}")
    try:
        return bytes.fromhex(digits)
    except ValueError as e:
        raise DecodingError(f"Invalid hex string {value!r}: {e}") from e


def normalize_address(address: str) -> str:
    """Canonical lowercase form used for comparisons and padding."""
    if not isinstance(address, str) or not _ADDRESS_RE.match(address.strip()):
        raise DecodingError(f"Invalid address: {address!r}")
    address = address.strip()
    digits = address[2:] if address[:2] in ("0x", "0X") else address
    return "0x" + digits.lower()


def is_address(value) -> bool:
    """True for a 20-byte hex address, with or without 0x."""
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value.strip()))


def checksum_address(address: str) -> str:
    """EIP-55 checksummed form for display and transaction fields."""
    return to_checksum_address(normalize_address(address))


def encode_address(address: str) -> bytes:
    raw = bytes.fromhex(normalize_address(address)[2:])
    return raw.rjust(WORD_SIZE, b"\x00")


def encode_uint(value: int, bits: int = 256) -> bytes:
    """Encode an unsigned integer as a big-endian 32-byte word.

    Args:
        value: Non-negative integer
        bits: Declared width (8..256, multiple of 8)

    Raises:
        DecodingError: bool/non-int input, negative value or overflow
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodingError(f"uint{bits} value must be an int, got {type(value).__name__}")
    if value < 0:
        raise DecodingError(f"uint{bits} cannot be negative: {value}")
    if value >= 1 << bits:
        raise DecodingError(f"Value {value} overflows uint{bits}")
    return value.to_bytes(WORD_SIZE, "big")


def encode_bool(value: bool) -> bytes:
    if not isinstance(value, bool):
        raise DecodingError(f"bool value expected, got {type(value).__name__}")
    return encode_uint(int(value))


def _uint_bits(arg_type: str) -> int:
    match = _UINT_RE.match(arg_type)
    if not match:
        raise DecodingError(f"Unsupported ABI type: {arg_type}")
    bits = int(match.group(1) or "256")
    if bits < 8 or bits > 256 or bits % 8:
        raise DecodingError(f"Invalid uint width: {arg_type}")
    return bits


def encode_argument(arg_type: str, value: Any) -> bytes:
    """Encode one static argument into a single 32-byte word."""
    if arg_type == "address":
        return encode_address(value)
    if arg_type == "bool":
        return encode_bool(value)
    return encode_uint(value, _uint_bits(arg_type))


def encode_call(
    signature: str,
    arg_types: Sequence[str],
    arg_values: Sequence[Any],
) -> bytes:
    """Encode calldata: selector followed by one word per argument."""
    declared = signature_types(signature)
    if list(arg_types) != declared:
        raise DecodingError(
            f"Argument types {list(arg_types)} do not match signature {signature}"
        )
    if len(arg_types) != len(arg_values):
        raise DecodingError(
            f"{signature} expects {len(arg_types)} arguments, got {len(arg_values)}"
        )
    data = function_selector(signature)
    for arg_type, value in zip(arg_types, arg_values):
        data += encode_argument(arg_type, value)
    return data


def encode_call_hex(
    signature: str,
    arg_types: Sequence[str] = (),
    arg_values: Sequence[Any] = (),
) -> str:
    return "0x" + encode_call(signature, arg_types, arg_values).hex()


def decode_uint(data: Union[bytes, str]) -> int:
    """Interpret a word as an unsigned big-endian integer.

    Bytes must be exactly one 32-byte word. Hex strings may be shorter
    (leading zeros dropped) but never longer than a word or empty.
    """
    if isinstance(data, (bytes, bytearray)):
        if len(data) != WORD_SIZE:
            raise DecodingError(f"Expected {WORD_SIZE}-byte word, got {len(data)} bytes")
        return int.from_bytes(data, "big")

    if not isinstance(data, str):
        raise DecodingError(f"Cannot decode uint from {type(data).__name__}")
    digits = data[2:] if data[:2] in ("0x", "0X") else data
    if not digits:
        raise DecodingError("Empty result - is the address a contract?")
    if len(digits) % 2:
        digits = "0" + digits
    raw = hex_to_bytes(digits)
    if len(raw) > WORD_SIZE:
        raise DecodingError(f"Value of {len(raw)} bytes exceeds a {WORD_SIZE}-byte word")
    return int.from_bytes(raw, "big")


def decode_quantity(value: str) -> int:
    """Decode a JSON-RPC quantity such as a block number (``0x1b4``)."""
    if not isinstance(value, str) or value[:2] not in ("0x", "0X") or len(value) < 3:
        raise DecodingError(f"Invalid quantity: {value!r}")
    if not _HEX_RE.match(value[2:]):
        raise DecodingError(f"Invalid quantity: {value!r}")
    return int(value, 16)


def address_to_topic(address: str) -> str:
    """Left-pad an address to a 32-byte topic for log filters."""
    return "0x" + encode_address(address).hex()


def topic_to_address(topic: str) -> str:
    raw = hex_to_bytes(topic)
    if len(raw) != WORD_SIZE or any(raw[: WORD_SIZE - ADDRESS_SIZE]):
        raise DecodingError(f"Topic is not a padded address: {topic}")
    return checksum_address("0x" + raw[WORD_SIZE - ADDRESS_SIZE :].hex())
