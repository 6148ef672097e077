"""
Com sequence reader (disassembler).

Turns a flat byte buffer into a command graph. Sections are discovered from
entry points with a worklist: every reference met while decoding a command
stream either lands in a section already known or queues a new section of
the kind the referencing command implies. Dynamic tables have no length of
their own, so they are decoded last and their length is inferred; when a
later reference lands inside an inferred table, the table is truncated and
discovery starts over.
"""

import logging
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Dict, List, Optional, Sequence, Tuple, Union

from audioseq.descriptor.model import Action, Descriptor, SectionKind
from audioseq.descriptor.presets import load_descriptor
from audioseq.errors import DecodeError, InvariantError
from audioseq.formats.com.codec import (
    TABLE_STRIDE,
    decode_command,
    read_envelope_point,
    read_message,
    read_table_value,
)
from audioseq.models.command import Command, RawData, TableEntry, Target
from audioseq.models.graph import SequenceGraph
from audioseq.models.section import Section
from audioseq.utils.diagnostics import SessionLog, Severity

logger = logging.getLogger(__name__)

# Traversal states of an (address, kind) pair
IN_PROGRESS = "in progress"
DONE = "done"

# Discovery restarts allowed for dynamic table truncation
MAX_RESTARTS = 32

Entry = Tuple[int, SectionKind]


class _Restart(Exception):
    """Discovery must start over with a shorter dynamic table."""

    def __init__(self, address: int, limit: int):
        super().__init__(f"table 0x{address:04X} limited to {limit} entries")
        self.address = address
        self.limit = limit


@dataclass
class _PendingRef:
    """A reference whose target section is not known yet."""

    section: Section
    command: Command
    address: int
    kind: SectionKind


def _where(address: int, kind: SectionKind) -> str:
    return f"{kind.value}@0x{address:04X}"


class ComReader:
    """
    Reader for Com sequence data.

    Example:
        graph = ComReader.read("song.seq")
        print(graph.dump())

    Diagnostics go to the reader's SessionLog; the worst severity logged
    tells whether the graph is clean, has warnings, or is only a partial
    result.
    """

    def __init__(self, descriptor: Optional[Descriptor] = None, log: Optional[SessionLog] = None):
        self.descriptor = descriptor or load_descriptor()
        self.log = log if log is not None else SessionLog("com-reader")
        self._data: bytes = b""
        self._table_limits: Dict[int, int] = {}
        self._reset()

    @classmethod
    def read(
        cls, filepath: Union[str, Path], descriptor: Optional[Descriptor] = None, **kwargs
    ) -> SequenceGraph:
        """
        Read a Com file and return its command graph.

        Args:
            filepath: Path to the sequence file
            descriptor: Instruction set (default preset if omitted)
            **kwargs: Passed to parse_bytes()

        Returns:
            Disassembled graph
        """
        reader = cls(descriptor)
        return reader.parse_file(filepath, **kwargs)

    def parse_file(self, filepath: Union[str, Path], **kwargs) -> SequenceGraph:
        """
        Parse a Com file.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        with open(filepath, "rb") as f:
            data = f.read()

        return self.parse_bytes(data, **kwargs)

    def parse_bytes(
        self,
        data: bytes,
        entries: Optional[Sequence[Entry]] = None,
        merge_duplicates: bool = True,
    ) -> SequenceGraph:
        """
        Disassemble a buffer into a command graph.

        Args:
            data: Raw sequence data
            entries: Known (address, kind) entry points; default is a
                sequence header at address 0
            merge_duplicates: Merge structurally identical sections

        Returns:
            The graph built; partial if a fatal problem was logged
        """
        self._data = bytes(data)
        entries = list(entries) if entries else [(0, SectionKind.SEQ)]
        self._table_limits = {}

        if not self._data:
            self._reset()
            self.log.error("No data to disassemble", logger)
            return self.graph

        restarts = 0
        while True:
            self._reset()
            try:
                self._discover(entries)
                break
            except _Restart as restart:
                restarts += 1
                if restarts > MAX_RESTARTS:
                    self._flush()
                    self.log.error(
                        f"Gave up after {MAX_RESTARTS} dynamic table restarts", logger
                    )
                    return self.graph
                previous = self._table_limits.get(restart.address)
                if previous is not None and previous <= restart.limit:
                    self._flush()
                    self.log.error(f"Dynamic table restart did not converge: {restart}", logger)
                    return self.graph
                self._table_limits[restart.address] = restart.limit
                logger.debug("Restarting discovery: %s", restart)

        self._flush()
        if restarts:
            self.log.info(f"Dynamic tables truncated after {restarts} restart(s)", logger)

        graph = self.graph
        self._fill_gaps()
        graph.sort_by_address()
        try:
            graph.check_placement()
        except InvariantError as e:
            self.log.error(str(e), logger)
            return graph

        self._resolve_references()
        self._link_fallthrough()

        if merge_duplicates:
            merged = graph.merge_duplicates(on_merge=self._report_merge)
            if merged:
                graph.renumber()
                self.log.info(f"Merged {merged} duplicate section(s)", logger)

        self.log.info(
            f"Disassembled {len(self._data)} bytes into {len(graph)} sections", logger
        )
        return graph

    # Discovery

    def _reset(self) -> None:
        self.graph = SequenceGraph(self.descriptor)
        self._starts: Dict[int, SectionKind] = {}
        self._visited: Dict[Tuple[int, SectionKind], str] = {}
        self._worklist: Deque[Entry] = deque()
        self._dyn_queue: Deque[Tuple[int, Optional[SectionKind]]] = deque()
        self._pending: List[_PendingRef] = []
        self._value_counts: Dict[int, int] = {}
        self._notes: List[Tuple[Severity, str]] = []

    def _warn(self, text: str) -> None:
        self._notes.append((Severity.WARNING, text))

    def _fail(self, text: str) -> None:
        self._notes.append((Severity.ERROR, text))

    def _flush(self) -> None:
        for severity, text in self._notes:
            if severity == Severity.ERROR:
                self.log.error(text, logger)
            else:
                self.log.warning(text, logger)
        self._notes = []

    def _discover(self, entries: List[Entry]) -> None:
        for address, kind in entries:
            self._add_target(address, kind)

        # Dynamic tables wait until every command stream known so far is parsed
        while self._worklist or self._dyn_queue:
            if self._worklist:
                address, kind = self._worklist.popleft()
                self.create_section(address, kind)
            else:
                address, element_kind = self._dyn_queue.popleft()
                self.get_dyn_table(address, element_kind)

    def _add_target(
        self,
        address: int,
        kind: SectionKind,
        caller: Optional[Section] = None,
        action: Optional[Action] = None,
    ) -> bool:
        """
        Register a referenced address.

        Returns:
            True if the address is or will become part of a section
        """
        source = f" from {_where(caller.address, caller.kind)}" if caller else ""
        if not 0 <= address < len(self._data):
            self._fail(f"Reference to 0x{address:04X}{source} is outside the data")
            return False

        self._check_table_overrun(address)

        if (
            action == Action.CALL
            and caller is not None
            and self._visited.get((caller.address, caller.kind)) == IN_PROGRESS
            and caller.address <= address < caller.address_end
        ):
            raise DecodeError(f"Recursive call into {_where(caller.address, caller.kind)}", address)

        if self.check_ran_into_other_section(address) is not None:
            return True

        known = self._starts.get(address)
        if known is not None:
            if known != kind:
                self._fail(
                    f"0x{address:04X} is referenced as {kind.display_name}{source} "
                    f"but also as {known.display_name}"
                )
                return False
            return True

        self._starts[address] = kind
        if kind != SectionKind.DYN_TABLE:
            self._worklist.append((address, kind))
        return True

    def _check_table_overrun(self, address: int) -> None:
        for section in self.graph.sections_of(SectionKind.DYN_TABLE):
            if section.contains(address) and address != section.address:
                stride = TABLE_STRIDE[SectionKind.DYN_TABLE]
                raise _Restart(section.address, (address - section.address) // stride)

    def check_ran_into_other_section(self, address: int) -> Optional[Section]:
        """Find the already decoded section covering an address, if any."""
        return self.graph.section_at(address)

    def create_section(self, address: int, kind: SectionKind) -> Optional[Section]:
        """
        Decode a new section at an address.

        Returns:
            The section, or None if (address, kind) was already visited
        """
        if (address, kind) in self._visited:
            return None

        section = self.graph.create_section(kind, address=address, address_end=address)
        self._visited[(address, kind)] = IN_PROGRESS
        try:
            if kind.is_command_stream:
                self._parse_stream(section)
            elif kind == SectionKind.ENVELOPE:
                self.get_envelope_command(section)
            elif kind == SectionKind.MESSAGE:
                self.get_message_command(section)
            elif kind == SectionKind.VALUE_TABLE:
                self._parse_value_table(section)
        except DecodeError as e:
            self._fail(f"{_where(address, kind)}: {e}")
        finally:
            self._visited[(address, kind)] = DONE

        logger.debug(
            "Decoded %s with %d commands", _where(address, kind), len(section.commands)
        )
        return section

    def get_command(self, address: int, kind: SectionKind) -> Tuple[Command, Optional[int]]:
        """
        Decode one command of a command stream.

        Raises:
            DecodeError: If the bytes do not form a command legal in kind
        """
        command, target_address = decode_command(self.descriptor, self._data, address, kind)
        if not self.graph.is_command_valid_in(command, kind):
            raise DecodeError(f"{command.describe()} is not valid in {kind.display_name}", address)
        return command, target_address

    def _parse_stream(self, section: Section) -> None:
        pos = section.address
        dyn_refs: List[Tuple[int, int]] = []

        try:
            while True:
                if pos != section.address:
                    known = self._starts.get(pos)
                    if known is not None:
                        if known != section.kind:
                            raise DecodeError(f"Ran into {known.display_name}", pos)
                        section.fallthrough = True
                        break
                    self._check_table_overrun(pos)
                    other = self.check_ran_into_other_section(pos)
                    if other is not None and other is not section:
                        raise DecodeError(f"Ran into {other.kind.display_name}", pos)

                command, target_address = self.get_command(pos, section.kind)
                section.commands.append(command)
                pos += command.length
                section.address_end = pos

                target_kind = command.action.target_kind(section.kind)
                if target_kind is not None and target_address is not None:
                    if target_kind == SectionKind.VALUE_TABLE:
                        if command.count == 0:
                            raise DecodeError(
                                f"{command.describe()} points to an empty value table",
                                pos - command.length,
                            )
                        self._value_counts.setdefault(target_address, command.count)
                    self._pending.append(
                        _PendingRef(section, command, target_address, target_kind)
                    )
                    self._add_target(target_address, target_kind, section, command.action)
                    if target_kind == SectionKind.DYN_TABLE:
                        dyn_refs.append((len(section.commands) - 1, target_address))

                if command.action.ends_section:
                    break
        finally:
            for position, table_address in dyn_refs:
                element_kind = self._scan_dyn_users(section, position)
                self._dyn_queue.append((table_address, element_kind))

    def _scan_dyn_users(self, section: Section, position: int) -> Optional[SectionKind]:
        """Infer the entry kind of a dynamic table from the commands using it."""
        for command in section.commands[position + 1 :]:
            if command.action == Action.DYN_CALL:
                return SectionKind.CHN
            if command.action == Action.DYN_TRACK_DATA:
                return SectionKind.TRK
            if command.action == Action.PTR_DYN_TABLE:
                break
        return None

    def get_dyn_table(self, address: int, element_kind: Optional[SectionKind]) -> None:
        """Decode a dynamic table and queue the sections its entries point to."""
        key = (address, SectionKind.DYN_TABLE)
        if key in self._visited or self.check_ran_into_other_section(address):
            return

        section = self.graph.create_section(
            SectionKind.DYN_TABLE, address=address, address_end=address, element_kind=element_kind
        )
        self._visited[key] = IN_PROGRESS
        stride = TABLE_STRIDE[SectionKind.DYN_TABLE]
        limit = self._table_limits.get(address)
        pos = address

        while limit is None or len(section.commands) < limit:
            if pos != address and (pos in self._starts or self.check_ran_into_other_section(pos)):
                break
            if pos + stride > len(self._data):
                break
            entry = self.get_dyn_table_command(pos, section)
            if entry is None:
                break
            section.commands.append(entry)
            pos += stride
            section.address_end = pos

        self._visited[key] = DONE
        if not section.commands:
            self._fail(f"{_where(address, SectionKind.DYN_TABLE)}: no usable entries")
            return
        if element_kind is None:
            self._warn(
                f"{_where(address, SectionKind.DYN_TABLE)}: no command uses the table, "
                f"keeping {len(section.commands)} raw values"
            )
            return

        for entry in section.commands:
            self._pending.append(_PendingRef(section, entry, entry.value, element_kind))
            self._add_target(entry.value, element_kind, section)

    def get_dyn_table_command(self, address: int, section: Section) -> Optional[TableEntry]:
        """
        Decode one dynamic table entry.

        Returns:
            The entry, or None if the value cannot be an entry (it lies
            outside the data or inside the table itself)
        """
        value = read_table_value(self._data, address, SectionKind.DYN_TABLE)
        if value >= len(self._data):
            return None
        if section.element_kind is not None and section.address <= value < address + 2:
            return None
        return TableEntry(value=value, address=address, length=2)

    def _parse_value_table(self, section: Section) -> None:
        count = self._value_counts.get(section.address, 1)
        pos = section.address
        for _ in range(count):
            value = read_table_value(self._data, pos, SectionKind.VALUE_TABLE)
            section.commands.append(TableEntry(value=value, address=pos, length=1))
            pos += 1
            section.address_end = pos

    def get_envelope_command(self, section: Section) -> None:
        """Decode envelope points up to and including the terminating point."""
        pos = section.address
        while True:
            point = read_envelope_point(self._data, pos)
            section.commands.append(point)
            pos += point.length
            section.address_end = pos
            if point.is_terminator:
                break

    def get_message_command(self, section: Section) -> None:
        """Decode a message payload."""
        message = read_message(self._data, section.address, self.descriptor.message_terminator)
        section.commands.append(message)
        section.address_end = section.address + message.length

    # Finishing

    def _fill_gaps(self) -> None:
        """Keep bytes no reference reaches as raw sections."""
        for section in [s for s in self.graph.sections if not s.commands]:
            self.graph.delete_section(section.index)

        placed = sorted(self.graph.sections, key=lambda s: s.address)
        cursor = 0
        bounds = [(s.address, s.address_end) for s in placed] + [(len(self._data), None)]
        for start, end in bounds:
            if start > cursor:
                payload = self._data[cursor:start]
                self.graph.create_section(
                    SectionKind.RAW,
                    address=cursor,
                    address_end=start,
                    commands=[RawData(payload=payload, address=cursor, length=len(payload))],
                )
                self.log.warning(
                    f"{len(payload)} unreachable byte(s) at 0x{cursor:04X} kept as raw data",
                    logger,
                )
            if end is not None:
                cursor = max(cursor, end)

    def _resolve_references(self) -> None:
        for ref in self._pending:
            where = _where(ref.section.address, ref.section.kind)
            target_section = self.graph.section_at(ref.address)
            if target_section is None:
                self.log.error(f"{where}: unresolved reference to 0x{ref.address:04X}", logger)
                continue
            if target_section.kind != ref.kind:
                self.log.error(
                    f"{where}: 0x{ref.address:04X} should be {ref.kind.display_name} "
                    f"but is {target_section.kind.display_name}",
                    logger,
                )
                continue
            position = target_section.command_index_at(ref.address)
            if position is None:
                self.log.error(
                    f"{where}: reference to 0x{ref.address:04X} is not at a command boundary",
                    logger,
                )
                continue
            ref.command.set_target(Target(target_section.index, position))

    def _link_fallthrough(self) -> None:
        for section in self.graph.sections:
            if not section.fallthrough:
                continue
            following = self.graph.section_at(section.address_end)
            if following is None:
                self.log.error(f"{section.label}: falls through into nothing", logger)
                continue
            section.fallthrough_to = following.index
            self.log.info(f"{section.label} falls through into {following.label}", logger)

    def _report_merge(self, removed: Section, kept: Section) -> None:
        logger.debug("Merging %s into %s", removed.label, kept.label)
