"""
Variable-length delay encoding utilities.

Delays in command streams are stored in one or two bytes:

- Values 0x00-0x7F are stored as a single byte
- Values 0x80-0x7FFF are stored as two bytes, the first with bit 7 set
  and carrying the high 7 bits, the second carrying the low 8 bits

A small value may still appear in the two byte form in real data. Decoders
report that so the value can be written back the same way.

Example:
    Value 0x0030 -> [0x30]
    Value 0x0180 -> [0x81, 0x80]
    Value 0x0030 (wide) -> [0x80, 0x30]
"""

from typing import Tuple

MAX_VARLEN = 0x7FFF


def decode_varlen(data: bytes, offset: int) -> Tuple[int, int, bool]:
    """
    Decode a variable-length value.

    Args:
        data: Buffer to read from
        offset: Offset of the first byte

    Returns:
        Tuple of (value, number of bytes consumed, stored in wide form
        although it would fit in one byte)

    Raises:
        IndexError: If the value runs past the end of data
    """
    first = data[offset]
    if first & 0x80 == 0:
        return first, 1, False

    second = data[offset + 1]
    value = ((first & 0x7F) << 8) | second
    return value, 2, value < 0x80


def encode_varlen(value: int, force_wide: bool = False) -> bytes:
    """
    Encode a value in variable-length form.

    Args:
        value: Value to encode (0-0x7FFF)
        force_wide: Use the two byte form even for small values

    Returns:
        Encoded bytes

    Raises:
        ValueError: If value is out of range
    """
    if not 0 <= value <= MAX_VARLEN:
        raise ValueError(f"Variable-length value must be 0-0x{MAX_VARLEN:04X}, got {value}")

    if value < 0x80 and not force_wide:
        return bytes([value])

    return bytes([0x80 | (value >> 8), value & 0xFF])


def varlen_size(value: int, force_wide: bool = False) -> int:
    """Get the encoded size of a variable-length value."""
    if value < 0x80 and not force_wide:
        return 1
    return 2
