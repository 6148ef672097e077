"""
Instruction-set descriptor model.

A Descriptor lists every command an audio engine variant understands: its
opcode (or opcode range), its parameters and their binary encodings, the
section kinds it may appear in and, for channel controllers, the MIDI
controller number it corresponds to.

Descriptors are immutable once built and can be shared between sessions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from audioseq.errors import DescriptorFormatError


class SectionKind(Enum):
    """
    Kinds of sections in a sequence.

    The first three hold command streams that are parsed one command at a
    time; the rest hold data addressed by pointer or index.
    """

    SEQ = "seq"  # sequence header
    CHN = "chn"  # channel header
    TRK = "trk"  # track (note layer) data
    DYN_TABLE = "dyntable"
    VALUE_TABLE = "valuetable"
    ENVELOPE = "envelope"
    MESSAGE = "message"
    RAW = "raw"

    @classmethod
    def command_kinds(cls) -> Tuple["SectionKind", ...]:
        """Get the kinds that hold command streams."""
        return (cls.SEQ, cls.CHN, cls.TRK)

    @property
    def is_command_stream(self) -> bool:
        return self in (SectionKind.SEQ, SectionKind.CHN, SectionKind.TRK)

    @property
    def is_table(self) -> bool:
        return self in (SectionKind.DYN_TABLE, SectionKind.VALUE_TABLE)

    @property
    def display_name(self) -> str:
        """Get human-readable kind name."""
        names = {
            SectionKind.SEQ: "Sequence Header",
            SectionKind.CHN: "Channel Header",
            SectionKind.TRK: "Track Data",
            SectionKind.DYN_TABLE: "Dynamic Table",
            SectionKind.VALUE_TABLE: "Value Table",
            SectionKind.ENVELOPE: "Envelope",
            SectionKind.MESSAGE: "Message",
            SectionKind.RAW: "Unreachable Data",
        }
        return names[self]


class Action(Enum):
    """Semantic operation performed by a command."""

    END = "End of Data"
    TIMESTAMP = "Timestamp"
    CALL = "Call"
    JUMP = "Jump"
    JUMP_RELATIVE = "Jump Relative"
    LOOP_START = "Loop Start"
    LOOP_END = "Loop End"
    CHANNEL_ENABLE = "Channel Enable"
    CHANNEL_DISABLE = "Channel Disable"
    MASTER_VOLUME = "Master Volume"
    TEMPO = "Tempo"
    PTR_CHANNEL_HEADER = "Ptr Channel Header"
    PTR_MESSAGE = "Ptr Message"
    PTR_TRACK_DATA = "Ptr Track Data"
    DYN_TRACK_DATA = "Dyn Track Data"
    PTR_DYN_TABLE = "Ptr Dyn Table"
    DYN_CALL = "Dyn Call"
    SET_Q = "Set Q"
    PTR_ENVELOPE = "Ptr Envelope"
    PTR_VALUE_TABLE = "Ptr Value Table"
    CHN_INSTRUMENT = "Chn Instrument"
    CHN_VOLUME = "Chn Volume"
    CHN_PAN = "Chn Pan"
    CHN_REVERB = "Chn Reverb"
    CHN_VIBRATO = "Chn Vibrato"
    CHN_PITCH_BEND = "Chn Pitch Bend"
    CHN_TRANSPOSE = "Chn Transpose"
    CHN_PRIORITY = "Chn Priority"
    NOTE = "Note"
    LAYER_TRANSPOSE = "Layer Transpose"

    # Contents of data sections, never looked up by opcode
    TABLE_ENTRY = "Table Entry"
    ENVELOPE_POINT = "Envelope Point"
    MESSAGE = "Message"
    RAW_DATA = "Raw Data"

    @property
    def ends_section(self) -> bool:
        """Check if parsing stops after this command."""
        return self in (Action.END, Action.JUMP, Action.JUMP_RELATIVE)

    def target_kind(self, source_kind: SectionKind) -> Optional[SectionKind]:
        """
        Get the kind of section this action points to.

        Jumps and calls stay inside the kind they are used in; every
        "Ptr" action names its target kind.

        Args:
            source_kind: Kind of the section containing the command

        Returns:
            Target section kind, or None if this action has no target
        """
        if self in (Action.CALL, Action.JUMP, Action.JUMP_RELATIVE):
            return source_kind
        return _TARGET_KINDS.get(self)


_TARGET_KINDS = {
    Action.PTR_CHANNEL_HEADER: SectionKind.CHN,
    Action.PTR_TRACK_DATA: SectionKind.TRK,
    Action.PTR_DYN_TABLE: SectionKind.DYN_TABLE,
    Action.PTR_ENVELOPE: SectionKind.ENVELOPE,
    Action.PTR_MESSAGE: SectionKind.MESSAGE,
    Action.PTR_VALUE_TABLE: SectionKind.VALUE_TABLE,
}


class Meaning(Enum):
    """What a command parameter stands for."""

    VALUE = "Value"
    CHANNEL = "Channel"
    LAYER = "Layer"
    NOTE = "Note"
    DELAY = "Delay"
    VELOCITY = "Velocity"
    GATE = "Gate Time"
    TARGET = "Target"
    COUNT = "Count"
    BITFIELD = "Bitfield"


class DataSource(Enum):
    """How a parameter is stored in the binary stream."""

    CMD_OFFSET = "cmd_offset"  # low bits of the opcode
    FIXED = "fixed"  # fixed number of big-endian bytes
    VARIABLE = "variable"  # 1-2 byte variable length
    ADDRESS = "address"  # 16-bit absolute address
    REL_ADDRESS = "rel_address"  # signed 8-bit offset from end of command


ADDRESS_SIZE = 2


@dataclass(frozen=True)
class ParamSpec:
    """
    Encoding of one command parameter.

    Attributes:
        meaning: What the parameter stands for
        source: How it is stored
        length: Byte count for FIXED parameters
        signed: Two's complement for FIXED parameters
        min_value: Smallest legal value (None = encoding minimum)
        max_value: Largest legal value (None = encoding maximum)
    """

    meaning: Meaning
    source: DataSource
    length: int = 0
    signed: bool = False
    min_value: Optional[int] = None
    max_value: Optional[int] = None

    @property
    def is_target(self) -> bool:
        return self.source in (DataSource.ADDRESS, DataSource.REL_ADDRESS)

    def encoding_range(self, cmd_span: int = 0) -> Tuple[int, int]:
        """
        Get the range the encoding itself can hold.

        Args:
            cmd_span: cmd_end - cmd of the owning command (CMD_OFFSET only)
        """
        if self.source == DataSource.CMD_OFFSET:
            return 0, cmd_span
        if self.source == DataSource.VARIABLE:
            return 0, 0x7FFF
        if self.source == DataSource.ADDRESS:
            return 0, 0xFFFF
        if self.source == DataSource.REL_ADDRESS:
            return -0x80, 0x7F
        bits = 8 * self.length
        if self.signed:
            return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        return 0, (1 << bits) - 1

    def value_range(self, cmd_span: int = 0) -> Tuple[int, int]:
        """Get the legal value range (declared limits inside encoding limits)."""
        low, high = self.encoding_range(cmd_span)
        if self.min_value is not None:
            low = max(low, self.min_value)
        if self.max_value is not None:
            high = min(high, self.max_value)
        return low, high

    def fixed_size(self) -> int:
        """Get the byte size, or -1 for variable-length parameters."""
        if self.source == DataSource.CMD_OFFSET:
            return 0
        if self.source == DataSource.FIXED:
            return self.length
        if self.source == DataSource.ADDRESS:
            return ADDRESS_SIZE
        if self.source == DataSource.REL_ADDRESS:
            return 1
        return -1


@dataclass(frozen=True)
class CommandSpec:
    """
    One command of the instruction set.

    Attributes:
        name: Unique display name
        action: Semantic operation
        cmd: First opcode byte
        cmd_end: Last opcode byte when the opcode carries a parameter
        params: Parameters in stream order
        valid_in: Section kinds the command may appear in
        cc: MIDI controller number this command represents, if any
        wide_form: Name of a longer command to use when a relative
            target does not fit
    """

    name: str
    action: Action
    cmd: int
    cmd_end: Optional[int] = None
    params: Tuple[ParamSpec, ...] = ()
    valid_in: FrozenSet[SectionKind] = frozenset()
    cc: Optional[int] = None
    wide_form: Optional[str] = None

    @property
    def last_cmd(self) -> int:
        return self.cmd if self.cmd_end is None else self.cmd_end

    @property
    def cmd_span(self) -> int:
        return self.last_cmd - self.cmd

    def matches(self, first_byte: int) -> bool:
        """Check if an opcode byte selects this command."""
        return self.cmd <= first_byte <= self.last_cmd

    def param(self, meaning: Meaning) -> Optional[ParamSpec]:
        """Get the parameter with the given meaning."""
        for param in self.params:
            if param.meaning == meaning:
                return param
        return None

    @property
    def target_param(self) -> Optional[ParamSpec]:
        return self.param(Meaning.TARGET)

    def value_range(self, meaning: Meaning) -> Optional[Tuple[int, int]]:
        """Get the legal range of a parameter, or None if absent."""
        param = self.param(meaning)
        if param is None:
            return None
        return param.value_range(self.cmd_span)

    def to_dict(self) -> Dict:
        """Serialize to the preset document shape."""
        data = {"name": self.name, "action": self.action.value, "cmd": self.cmd}
        if self.cmd_end is not None:
            data["cmd_end"] = self.cmd_end
        data["valid_in"] = sorted(kind.value for kind in self.valid_in)
        if self.params:
            data["params"] = [_param_to_dict(p) for p in self.params]
        if self.cc is not None:
            data["cc"] = self.cc
        if self.wide_form is not None:
            data["wide_form"] = self.wide_form
        return data


def _param_to_dict(param: ParamSpec) -> Dict:
    data = {"meaning": param.meaning.value, "source": param.source.value}
    if param.source == DataSource.FIXED:
        data["length"] = param.length
        if param.signed:
            data["signed"] = True
    if param.min_value is not None:
        data["min"] = param.min_value
    if param.max_value is not None:
        data["max"] = param.max_value
    return data


@dataclass(frozen=True)
class Descriptor:
    """
    Immutable instruction-set descriptor for one engine variant.

    Attributes:
        name: Preset name
        description: Free text
        commands: All commands
        ticks_per_beat: Sequence tick resolution per quarter note
        num_channels: Number of sequence channels
        message_terminator: Sentinel ending message payloads; None means
            messages are length-prefixed
    """

    name: str
    description: str = ""
    commands: Tuple[CommandSpec, ...] = ()
    ticks_per_beat: int = 48
    num_channels: int = 16
    message_terminator: Optional[int] = None
    _by_name: Dict[str, CommandSpec] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        by_name = {}
        for spec in self.commands:
            if spec.name in by_name:
                raise DescriptorFormatError(f"Duplicate command name: {spec.name}")
            by_name[spec.name] = spec
        object.__setattr__(self, "_by_name", by_name)

        for kind in SectionKind.command_kinds():
            seen: Dict[int, str] = {}
            for spec in self.commands_in(kind):
                for byte in range(spec.cmd, spec.last_cmd + 1):
                    if byte in seen:
                        raise DescriptorFormatError(
                            f"Opcode 0x{byte:02X} used by both {seen[byte]} and "
                            f"{spec.name} in {kind.value}"
                        )
                    seen[byte] = spec.name

        for spec in self.commands:
            if spec.wide_form is not None and spec.wide_form not in by_name:
                raise DescriptorFormatError(
                    f"{spec.name}: unknown wide form {spec.wide_form}"
                )

    def __iter__(self) -> Iterator[CommandSpec]:
        return iter(self.commands)

    def commands_in(self, kind: SectionKind) -> List[CommandSpec]:
        """Get all commands legal in a section kind."""
        return [spec for spec in self.commands if kind in spec.valid_in]

    def by_name(self, name: str) -> Optional[CommandSpec]:
        """Get a command by its unique name."""
        return self._by_name.get(name)

    def get_description(self, first_byte: int, kind: SectionKind) -> Optional[CommandSpec]:
        """
        Find the command an opcode byte selects in a section kind.

        Args:
            first_byte: Opcode byte
            kind: Kind of the section being decoded

        Returns:
            Matching command, or None if the opcode is not legal there
        """
        for spec in self.commands:
            if kind in spec.valid_in and spec.matches(first_byte):
                return spec
        return None

    def find(self, action: Action, kind: SectionKind) -> Optional[CommandSpec]:
        """Find the first command performing an action in a section kind."""
        for spec in self.commands:
            if spec.action == action and kind in spec.valid_in:
                return spec
        return None

    def get_command_range(self, spec: CommandSpec, meaning: Meaning) -> Tuple[int, int]:
        """
        Get the legal range of one parameter of a command.

        Returns:
            (min, max); (0, -1) if the command has no such parameter
        """
        value_range = spec.value_range(meaning)
        if value_range is None:
            return 0, -1
        return value_range

    def largest_command_range(
        self, kind: SectionKind, action: Action, meaning: Meaning
    ) -> Tuple[int, int]:
        """
        Get the widest range any command for an action offers for a parameter.

        Returns:
            (min, max); (0, -1) if no command offers the parameter
        """
        low, high = 0, -1
        for spec in self.commands_in(kind):
            if spec.action != action:
                continue
            value_range = spec.value_range(meaning)
            if value_range is None:
                continue
            if high < low:
                low, high = value_range
            else:
                low, high = min(low, value_range[0]), max(high, value_range[1])
        return low, high

    def is_command_valid_in(self, command, kind: SectionKind) -> bool:
        """
        Check whether a command may appear in a section of the given kind.

        Stream commands must use a command of this descriptor that is legal
        in the kind and have every parameter within its declared range.
        Data-section contents are valid only in their own section kinds.

        Args:
            command: Command to check
            kind: Kind of the (prospective) owning section

        Returns:
            True if valid
        """
        if not kind.is_command_stream:
            return command.spec is None and kind in command.DATA_KINDS

        spec = command.spec
        if spec is None or self._by_name.get(spec.name) != spec:
            return False
        if kind not in spec.valid_in:
            return False
        if spec.action != command.action:
            return False

        for param in spec.params:
            if param.is_target:
                continue
            value = command.get_param(param.meaning)
            if value is None:
                return False
            low, high = param.value_range(spec.cmd_span)
            if not low <= value <= high:
                return False
        return True

    def controller_commands(self) -> Dict[int, CommandSpec]:
        """Map every declared MIDI controller number to its command."""
        return {spec.cc: spec for spec in self.commands if spec.cc is not None}

    def is_valid_cc(self, cc: int) -> bool:
        """Check if a (possibly extended) controller number can be imported."""
        return cc in self.controller_commands()

    def to_dict(self) -> Dict:
        """Serialize to the preset document shape."""
        data = {
            "name": self.name,
            "description": self.description,
            "ticks_per_beat": self.ticks_per_beat,
            "num_channels": self.num_channels,
            "message_terminator": self.message_terminator,
            "commands": [spec.to_dict() for spec in self.commands],
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict, name: Optional[str] = None) -> "Descriptor":
        """
        Build a descriptor from a preset document.

        Args:
            data: Parsed document
            name: Preset name overriding the document's own

        Raises:
            DescriptorFormatError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise DescriptorFormatError("Descriptor document must be a mapping")

        try:
            commands = tuple(_command_from_dict(entry) for entry in data.get("commands") or [])
            return cls(
                name=name or str(data["name"]),
                description=str(data.get("description", "")),
                commands=commands,
                ticks_per_beat=int(data.get("ticks_per_beat", 48)),
                num_channels=int(data.get("num_channels", 16)),
                message_terminator=data.get("message_terminator"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DescriptorFormatError(f"Malformed descriptor: {e}") from e


def _command_from_dict(entry: Dict) -> CommandSpec:
    params = tuple(
        ParamSpec(
            meaning=Meaning(p["meaning"]),
            source=DataSource(p["source"]),
            length=int(p.get("length", 0)),
            signed=bool(p.get("signed", False)),
            min_value=p.get("min"),
            max_value=p.get("max"),
        )
        for p in entry.get("params") or []
    )
    for param in params:
        if param.source == DataSource.FIXED and param.length not in (1, 2):
            raise DescriptorFormatError(
                f"{entry['name']}: fixed parameter length must be 1 or 2"
            )

    return CommandSpec(
        name=str(entry["name"]),
        action=Action(entry["action"]),
        cmd=int(entry["cmd"]),
        cmd_end=entry.get("cmd_end"),
        params=params,
        valid_in=frozenset(SectionKind(kind) for kind in entry.get("valid_in") or []),
        cc=entry.get("cc"),
        wide_form=entry.get("wide_form"),
    )
