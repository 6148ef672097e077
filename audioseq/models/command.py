"""
Command data models.

Commands form a closed set of variants. Each variant carries exactly the
fields its action needs; the descriptor parameter meanings are mapped onto
those fields through the class-level FIELDS table.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict, FrozenSet, Optional, Tuple

from audioseq.descriptor.model import Action, CommandSpec, Meaning, SectionKind


@dataclass(frozen=True)
class Target:
    """
    Reference from a command to a position in the graph.

    Attributes:
        section: Index of the target section
        command: Index of the target command inside that section
    """

    section: int
    command: int = 0

    def __str__(self) -> str:
        return f"{self.section}:{self.command}"


@dataclass(eq=False)
class Command:
    """
    A single command node.

    Commands compare by identity; two commands with the same content are
    still different nodes of the graph.

    Attributes:
        action: Semantic operation
        spec: Descriptor command used to encode it (None for data entries)
        address: Origin address when decoded from binary, None when created
        length: Encoded length in bytes, if known
        force_wide: A variable-length parameter used the two byte form
            although its value fits in one byte
    """

    action: Action
    spec: Optional[CommandSpec] = None
    address: Optional[int] = None
    length: Optional[int] = None
    force_wide: bool = False

    FIELDS: ClassVar[Dict[Meaning, str]] = {}
    PARAMS: ClassVar[Tuple[str, ...]] = ()
    DATA_KINDS: ClassVar[FrozenSet[SectionKind]] = frozenset()

    @property
    def name(self) -> str:
        """Get the display name of the command."""
        return self.spec.name if self.spec is not None else self.action.value

    @property
    def ticks(self) -> int:
        """Get the time this command advances its section by."""
        return 0

    def get_target(self) -> Optional[Target]:
        """Get the reference carried by this command, if any."""
        return None

    def set_target(self, target: Target) -> None:
        raise AttributeError(f"{self.name} has no target")

    def get_param(self, meaning: Meaning):
        """
        Get a parameter value by descriptor meaning.

        Returns:
            The value, or None if this variant has no such parameter
        """
        attr = self.FIELDS.get(meaning)
        if attr is None:
            return None
        return getattr(self, attr)

    def set_param(self, meaning: Meaning, value) -> None:
        """
        Set a parameter value by descriptor meaning.

        Raises:
            AttributeError: If this variant has no such parameter
        """
        attr = self.FIELDS.get(meaning)
        if attr is None:
            raise AttributeError(f"{self.name} has no parameter {meaning.value}")
        setattr(self, attr, value)

    def param_items(self) -> Tuple[Tuple[str, object], ...]:
        """Get (field, value) pairs in a stable order."""
        return tuple((attr, getattr(self, attr)) for attr in self.PARAMS)

    def describe(self) -> str:
        """Render the command as one line of text."""
        parts = [self.name]
        for attr, value in self.param_items():
            if value is None:
                continue
            if isinstance(value, bytes):
                value = value.hex()
            parts.append(f"{attr}={value}")
        return " ".join(parts)


@dataclass(eq=False)
class DelayCommand(Command):
    """Timestamp: wait a number of ticks."""

    delay: int = 0

    FIELDS: ClassVar[Dict[Meaning, str]] = {Meaning.DELAY: "delay"}
    PARAMS: ClassVar[Tuple[str, ...]] = ("delay",)

    @property
    def ticks(self) -> int:
        return self.delay


@dataclass(eq=False)
class NoteCommand(Command):
    """
    Note in a track (layer).

    The layer waits `delay` ticks after the note starts. The note sounds for
    the whole delay when gate is 0, otherwise for delay - delay * gate / 256.
    """

    note: int = 0
    delay: int = 0
    velocity: int = 0
    gate: int = 0

    FIELDS: ClassVar[Dict[Meaning, str]] = {
        Meaning.NOTE: "note",
        Meaning.DELAY: "delay",
        Meaning.VELOCITY: "velocity",
        Meaning.GATE: "gate",
    }
    PARAMS: ClassVar[Tuple[str, ...]] = ("note", "delay", "velocity", "gate")

    @property
    def ticks(self) -> int:
        return self.delay

    @property
    def duration(self) -> int:
        """Get the sounding length in ticks."""
        return self.delay - ((self.delay * self.gate) >> 8)


@dataclass(eq=False)
class ValueCommand(Command):
    """Command with one numeric argument (tempo, volume, loop count...)."""

    value: int = 0

    FIELDS: ClassVar[Dict[Meaning, str]] = {
        Meaning.VALUE: "value",
        Meaning.COUNT: "value",
        Meaning.BITFIELD: "value",
    }
    PARAMS: ClassVar[Tuple[str, ...]] = ("value",)


@dataclass(eq=False)
class PointerCommand(Command):
    """
    Command referencing another section: jumps, calls and "Ptr" commands.

    Attributes:
        target: Referenced position
        index: Channel or layer number for channel/track pointers
        count: Entry count for value tables
    """

    target: Optional[Target] = None
    index: Optional[int] = None
    count: Optional[int] = None

    FIELDS: ClassVar[Dict[Meaning, str]] = {
        Meaning.TARGET: "target",
        Meaning.CHANNEL: "index",
        Meaning.LAYER: "index",
        Meaning.COUNT: "count",
    }
    PARAMS: ClassVar[Tuple[str, ...]] = ("index", "count", "target")

    def get_target(self) -> Optional[Target]:
        return self.target

    def set_target(self, target: Target) -> None:
        self.target = target


@dataclass(eq=False)
class IndexCommand(Command):
    """Runtime-indexed command (dynamic call or dynamic track data)."""

    index: Optional[int] = None

    FIELDS: ClassVar[Dict[Meaning, str]] = {Meaning.LAYER: "index"}
    PARAMS: ClassVar[Tuple[str, ...]] = ("index",)


@dataclass(eq=False)
class TableEntry(Command):
    """Entry of a dynamic or value table: a raw value or a reference."""

    action: Action = Action.TABLE_ENTRY
    value: int = 0
    target: Optional[Target] = None

    PARAMS: ClassVar[Tuple[str, ...]] = ("value", "target")
    DATA_KINDS: ClassVar[FrozenSet[SectionKind]] = frozenset(
        {SectionKind.DYN_TABLE, SectionKind.VALUE_TABLE}
    )

    def get_target(self) -> Optional[Target]:
        return self.target

    def set_target(self, target: Target) -> None:
        self.target = target


@dataclass(eq=False)
class EnvelopePoint(Command):
    """One point of an envelope: a signed delay and an argument."""

    action: Action = Action.ENVELOPE_POINT
    delay: int = 0
    arg: int = 0

    PARAMS: ClassVar[Tuple[str, ...]] = ("delay", "arg")
    DATA_KINDS: ClassVar[FrozenSet[SectionKind]] = frozenset({SectionKind.ENVELOPE})

    @property
    def is_terminator(self) -> bool:
        """Check if this point ends the envelope."""
        return self.delay <= 0


@dataclass(eq=False)
class MessageData(Command):
    """Free-form message payload (without prefix or terminator)."""

    action: Action = Action.MESSAGE
    payload: bytes = b""

    PARAMS: ClassVar[Tuple[str, ...]] = ("payload",)
    DATA_KINDS: ClassVar[FrozenSet[SectionKind]] = frozenset({SectionKind.MESSAGE})


@dataclass(eq=False)
class RawData(Command):
    """Bytes no command refers to, kept verbatim."""

    action: Action = Action.RAW_DATA
    payload: bytes = b""

    PARAMS: ClassVar[Tuple[str, ...]] = ("payload",)
    DATA_KINDS: ClassVar[FrozenSet[SectionKind]] = frozenset({SectionKind.RAW})


# Variant used for each stream action; anything missing has no parameters
ACTION_CLASSES = {
    Action.TIMESTAMP: DelayCommand,
    Action.NOTE: NoteCommand,
    Action.CALL: PointerCommand,
    Action.JUMP: PointerCommand,
    Action.JUMP_RELATIVE: PointerCommand,
    Action.PTR_CHANNEL_HEADER: PointerCommand,
    Action.PTR_MESSAGE: PointerCommand,
    Action.PTR_TRACK_DATA: PointerCommand,
    Action.PTR_DYN_TABLE: PointerCommand,
    Action.PTR_ENVELOPE: PointerCommand,
    Action.PTR_VALUE_TABLE: PointerCommand,
    Action.DYN_TRACK_DATA: IndexCommand,
    Action.DYN_CALL: IndexCommand,
    Action.LOOP_START: ValueCommand,
    Action.CHANNEL_ENABLE: ValueCommand,
    Action.CHANNEL_DISABLE: ValueCommand,
    Action.MASTER_VOLUME: ValueCommand,
    Action.TEMPO: ValueCommand,
    Action.SET_Q: ValueCommand,
    Action.CHN_INSTRUMENT: ValueCommand,
    Action.CHN_VOLUME: ValueCommand,
    Action.CHN_PAN: ValueCommand,
    Action.CHN_REVERB: ValueCommand,
    Action.CHN_VIBRATO: ValueCommand,
    Action.CHN_PITCH_BEND: ValueCommand,
    Action.CHN_TRANSPOSE: ValueCommand,
    Action.CHN_PRIORITY: ValueCommand,
    Action.LAYER_TRANSPOSE: ValueCommand,
}


def new_command(spec: CommandSpec, address: Optional[int] = None, **values) -> Command:
    """
    Create a command of the right variant for a descriptor command.

    Args:
        spec: Descriptor command
        address: Origin address, None for newly created commands
        **values: Variant field values

    Returns:
        New command
    """
    cls = ACTION_CLASSES.get(spec.action, Command)
    return cls(action=spec.action, spec=spec, address=address, **values)
