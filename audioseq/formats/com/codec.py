"""
Binary encoding of single commands.

Both the reader and the writer go through this module, so the length the
writer plans with is always the length it emits.
"""

import struct
from typing import Optional, Tuple

from audioseq.descriptor.model import (
    ADDRESS_SIZE,
    DataSource,
    Descriptor,
    ParamSpec,
    SectionKind,
)
from audioseq.errors import DecodeError, EncodeError
from audioseq.models.command import (
    ACTION_CLASSES,
    Command,
    EnvelopePoint,
    MessageData,
    RawData,
    TableEntry,
)
from audioseq.utils.validation import ValidationError, fits_signed, fits_unsigned, validate_range
from audioseq.utils.varlen import MAX_VARLEN, decode_varlen, encode_varlen, varlen_size

# Size of one entry in each table kind
TABLE_STRIDE = {
    SectionKind.DYN_TABLE: 2,
    SectionKind.VALUE_TABLE: 1,
}

ENVELOPE_POINT_SIZE = 4


def _read_fixed(data: bytes, offset: int, param: ParamSpec) -> int:
    raw = data[offset : offset + param.length]
    if len(raw) < param.length:
        raise IndexError(offset)
    return int.from_bytes(raw, "big", signed=param.signed)


def _write_fixed(value: int, param: ParamSpec) -> bytes:
    return value.to_bytes(param.length, "big", signed=param.signed)


def decode_command(
    descriptor: Descriptor, data: bytes, offset: int, kind: SectionKind
) -> Tuple[Command, Optional[int]]:
    """
    Decode one stream command.

    Args:
        descriptor: Instruction set
        data: Whole buffer
        offset: Address of the opcode byte
        kind: Kind of the section being decoded

    Returns:
        Tuple of (command, absolute target address or None). The command's
        target field is left unset; the caller resolves the address.

    Raises:
        DecodeError: If the opcode is unknown, a parameter is out of range,
            or the command runs past the end of data
    """
    if offset >= len(data):
        raise DecodeError("Ran past end of data", offset)

    first = data[offset]
    spec = descriptor.get_description(first, kind)
    if spec is None:
        raise DecodeError(f"Unknown opcode 0x{first:02X} in {kind.display_name}", offset)

    cls = ACTION_CLASSES.get(spec.action, Command)
    values = {}
    pos = offset + 1
    force_wide = False
    target_address = None
    relative = None

    try:
        for param in spec.params:
            if param.source == DataSource.CMD_OFFSET:
                value = first - spec.cmd
            elif param.source == DataSource.FIXED:
                value = _read_fixed(data, pos, param)
                pos += param.length
            elif param.source == DataSource.VARIABLE:
                value, consumed, wide = decode_varlen(data, pos)
                force_wide = force_wide or wide
                pos += consumed
            elif param.source == DataSource.ADDRESS:
                target_address = struct.unpack_from(">H", data, pos)[0]
                pos += ADDRESS_SIZE
                continue
            else:
                relative = struct.unpack_from(">b", data, pos)[0]
                pos += 1
                continue

            low, high = param.value_range(spec.cmd_span)
            if not low <= value <= high:
                raise DecodeError(
                    f"{spec.name}: {param.meaning.value} {value} outside {low}..{high}", offset
                )
            values[cls.FIELDS[param.meaning]] = value
    except (IndexError, struct.error):
        raise DecodeError(f"{spec.name} runs past end of data", offset) from None

    if relative is not None:
        target_address = pos + relative

    command = cls(action=spec.action, spec=spec, address=offset, **values)
    command.length = pos - offset
    command.force_wide = force_wide
    return command, target_address


def command_length(command: Command, kind: SectionKind, descriptor: Descriptor) -> int:
    """
    Get the encoded length of a command.

    Used for decoded and newly created commands alike.

    Args:
        command: Command to measure
        kind: Kind of its section (selects data entry sizes)
        descriptor: Instruction set (message terminator)

    Returns:
        Length in bytes
    """
    if command.spec is None:
        return data_length(command, kind, descriptor)

    return _length_of(command.spec.params, command)


def data_length(command: Command, kind: SectionKind, descriptor: Descriptor) -> int:
    """Get the encoded length of a data-section entry."""
    if isinstance(command, TableEntry):
        return TABLE_STRIDE[kind]
    if isinstance(command, EnvelopePoint):
        return ENVELOPE_POINT_SIZE
    if isinstance(command, MessageData):
        return len(command.payload) + 1
    if isinstance(command, RawData):
        return len(command.payload)
    raise EncodeError(f"{command.name} has no binary form in {kind.value}")


def get_ptr_address(
    param: ParamSpec, command_address: int, length: int, target_address: int
) -> int:
    """
    Compute the stored value of a reference field.

    Args:
        param: The target parameter
        command_address: Address the command is written at
        length: Encoded length of the command
        target_address: Address of the referenced command

    Returns:
        Absolute address, or the offset from the end of the command for
        relative references
    """
    if param.source == DataSource.REL_ADDRESS:
        return target_address - (command_address + length)
    return target_address


def encode_command(
    command: Command, address: int, target_address: Optional[int] = None
) -> bytes:
    """
    Encode one stream command.

    Args:
        command: Command with a descriptor spec
        address: Address the command is written at
        target_address: Address of its reference target, if it has one

    Returns:
        Encoded bytes

    Raises:
        EncodeError: If a value does not fit its encoding
    """
    spec = command.spec
    if spec is None:
        raise EncodeError(f"{command.name} is not a stream command")

    opcode = spec.cmd
    body = bytearray()
    length = None

    for param in spec.params:
        if param.is_target:
            continue
        value = command.get_param(param.meaning)
        if value is None:
            raise EncodeError(f"{spec.name}: missing {param.meaning.value}")
        try:
            name = f"{spec.name} {param.meaning.value}"
            validate_range(value, param.encoding_range(spec.cmd_span), name)
        except ValidationError as e:
            raise EncodeError(str(e)) from None

    for param in spec.params:
        if param.source == DataSource.CMD_OFFSET:
            opcode += command.get_param(param.meaning)
        elif param.source == DataSource.FIXED:
            body += _write_fixed(command.get_param(param.meaning), param)
        elif param.source == DataSource.VARIABLE:
            value = command.get_param(param.meaning)
            if value > MAX_VARLEN:
                raise EncodeError(f"{spec.name}: delay {value} exceeds 0x{MAX_VARLEN:04X}")
            body += encode_varlen(value, command.force_wide)
        else:
            if target_address is None:
                raise EncodeError(f"{spec.name}: target address unknown")
            if length is None:
                length = _length_of(spec.params, command)
            stored = get_ptr_address(param, address, length, target_address)
            if param.source == DataSource.REL_ADDRESS:
                if not fits_signed(stored, 1):
                    raise EncodeError(f"{spec.name}: relative offset {stored} does not fit")
                body += struct.pack(">b", stored)
            else:
                if not fits_unsigned(stored, ADDRESS_SIZE):
                    raise EncodeError(f"{spec.name}: address 0x{stored:X} does not fit")
                body += struct.pack(">H", stored)

    return bytes([opcode]) + bytes(body)


def _length_of(params, command: Command) -> int:
    length = 1
    for param in params:
        size = param.fixed_size()
        if size < 0:
            size = varlen_size(command.get_param(param.meaning) or 0, command.force_wide)
        length += size
    return length


def relative_fits(command: Command, address: int, target_address: int) -> bool:
    """Check if a relative reference from address reaches target_address."""
    param = command.spec.target_param if command.spec else None
    if param is None or param.source != DataSource.REL_ADDRESS:
        return True
    length = _length_of(command.spec.params, command)
    return fits_signed(get_ptr_address(param, address, length, target_address), 1)


def encode_data(
    command: Command,
    kind: SectionKind,
    descriptor: Descriptor,
    target_address: Optional[int] = None,
) -> bytes:
    """
    Encode one data-section entry.

    Args:
        command: Table entry, envelope point, message or raw data
        kind: Kind of its section
        descriptor: Instruction set (message terminator)
        target_address: Address of a table entry's target

    Raises:
        EncodeError: If a value does not fit
    """
    if isinstance(command, TableEntry):
        stride = TABLE_STRIDE[kind]
        value = target_address if command.target is not None else command.value
        if value is None or not fits_unsigned(value, stride):
            raise EncodeError(f"Table entry {value} does not fit {stride} byte(s)")
        return value.to_bytes(stride, "big")

    if isinstance(command, EnvelopePoint):
        if not fits_signed(command.delay, 2) or not fits_unsigned(command.arg, 2):
            raise EncodeError(f"Envelope point {command.describe()} does not fit")
        return struct.pack(">hH", command.delay, command.arg)

    if isinstance(command, MessageData):
        if descriptor.message_terminator is not None:
            return bytes(command.payload) + bytes([descriptor.message_terminator])
        if len(command.payload) > 0xFF:
            raise EncodeError(f"Message of {len(command.payload)} bytes is too long")
        return bytes([len(command.payload)]) + bytes(command.payload)

    if isinstance(command, RawData):
        return bytes(command.payload)

    raise EncodeError(f"{command.name} has no binary form in {kind.value}")


def read_envelope_point(data: bytes, offset: int) -> EnvelopePoint:
    """
    Decode one envelope point.

    Raises:
        DecodeError: If the point runs past the end of data
    """
    if offset + ENVELOPE_POINT_SIZE > len(data):
        raise DecodeError("Envelope runs past end of data", offset)
    delay, arg = struct.unpack_from(">hH", data, offset)
    return EnvelopePoint(delay=delay, arg=arg, address=offset, length=ENVELOPE_POINT_SIZE)


def read_message(data: bytes, offset: int, terminator: Optional[int]) -> MessageData:
    """
    Decode one message payload.

    Raises:
        DecodeError: If the message runs past the end of data
    """
    if terminator is not None:
        end = data.find(bytes([terminator]), offset)
        if end < 0:
            raise DecodeError("Message terminator not found", offset)
        payload = data[offset:end]
        return MessageData(payload=payload, address=offset, length=len(payload) + 1)

    if offset >= len(data):
        raise DecodeError("Message runs past end of data", offset)
    size = data[offset]
    if offset + 1 + size > len(data):
        raise DecodeError(f"Message of {size} bytes runs past end of data", offset)
    payload = data[offset + 1 : offset + 1 + size]
    return MessageData(payload=payload, address=offset, length=size + 1)


def read_table_value(data: bytes, offset: int, kind: SectionKind) -> int:
    """Read one raw table entry value."""
    stride = TABLE_STRIDE[kind]
    if offset + stride > len(data):
        raise DecodeError("Table runs past end of data", offset)
    return int.from_bytes(data[offset : offset + stride], "big")
