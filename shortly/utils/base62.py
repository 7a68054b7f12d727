"""
Fixed-Width Base62 Codec

Renders 42-bit compact IDs as 7-character short codes and parses them back.

Alphabet:
    0-9, A-Z, a-z (digit 0 -> '0', digit 61 -> 'z')

Range:
    Seven base62 digits hold values in [0, 62**7), about 3.52e12. A 42-bit ID
    can reach 2**42 - 1, about 4.40e12, so the top of the ID space does not fit.
    Such values are rejected with EncodingRangeError instead of growing an
    eighth character or dropping high bits. With the compact ID layout this
    happens once the timestamp offset passes MAX_ENCODABLE_OFFSET, roughly
    6.8 years after the 2024 epoch.
"""

from typing import NamedTuple

from shortly.core.exceptions import EncodingRangeError, InvalidShortCodeError

BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
BASE = len(BASE62_ALPHABET)
SHORT_CODE_LENGTH = 7
MAX_ENCODABLE_VALUE = BASE**SHORT_CODE_LENGTH - 1

# Layout shared with shortly.utils.compact_id
TIMESTAMP_BITS = 28
MACHINE_ID_BITS = 8
SEQUENCE_BITS = 6
MAX_MACHINE_ID = (1 << MACHINE_ID_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
MACHINE_ID_SHIFT = SEQUENCE_BITS
TIMESTAMP_SHIFT = SEQUENCE_BITS + MACHINE_ID_BITS

# Largest offset whose every (machine, sequence) combination still fits
MAX_ENCODABLE_OFFSET = ((MAX_ENCODABLE_VALUE + 1) >> TIMESTAMP_SHIFT) - 1

_DIGITS = {symbol: index for index, symbol in enumerate(BASE62_ALPHABET)}


class IdParts(NamedTuple):
    timestamp_offset: int
    machine_id: int
    sequence: int


def encode_base62(value: int) -> str:
    """Encode a non-negative integer as a 7-character base62 string.

    Args:
        value (int): Integer in [0, 62**7).

    Returns:
        str: The short code, left-padded with '0'.

    Raises:
        EncodingRangeError: If the value does not fit in 7 characters.
    """
    if not 0 <= value <= MAX_ENCODABLE_VALUE:
        raise EncodingRangeError(
            f"Value {value} is outside the encodable range"
            f" [0, {MAX_ENCODABLE_VALUE}]"
        )

    digits = []
    while value > 0:
        value, remainder = divmod(value, BASE)
        digits.append(BASE62_ALPHABET[remainder])

    while len(digits) < SHORT_CODE_LENGTH:
        digits.append(BASE62_ALPHABET[0])

    return "".join(reversed(digits))


def decode_base62(code: str) -> int:
    """Parse a 7-character base62 short code back into its integer.

    Raises:
        InvalidShortCodeError: If the code has the wrong length or symbols.
    """
    if len(code) != SHORT_CODE_LENGTH:
        raise InvalidShortCodeError(
            f"Short code must be {SHORT_CODE_LENGTH} characters, got {len(code)}"
        )

    value = 0
    for symbol in code:
        try:
            value = value * BASE + _DIGITS[symbol]
        except KeyError:
            raise InvalidShortCodeError(
                f"Invalid character {symbol!r} in short code {code!r}"
            ) from None
    return value


def compose_id(timestamp_offset: int, machine_id: int, sequence: int) -> int:
    """Pack the three ID fields into one integer."""
    return (
        (timestamp_offset << TIMESTAMP_SHIFT)
        | (machine_id << MACHINE_ID_SHIFT)
        | sequence
    )


def decompose_id(value: int) -> IdParts:
    """Split a compact ID into timestamp offset, machine ID and sequence."""
    return IdParts(
        timestamp_offset=value >> TIMESTAMP_SHIFT,
        machine_id=(value >> MACHINE_ID_SHIFT) & MAX_MACHINE_ID,
        sequence=value & MAX_SEQUENCE,
    )
