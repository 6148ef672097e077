"""
Com sequence writer (assembler).

Lays a command graph out as one flat buffer. Addresses are planned first
with the same length rule the encoder uses, so references to later sections
can be written in the same pass as everything else.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from audioseq.descriptor.model import Action, DataSource
from audioseq.errors import EncodeError, InvariantError
from audioseq.formats.com.codec import (
    command_length,
    encode_command,
    encode_data,
    relative_fits,
)
from audioseq.models.command import Command, TableEntry, Target, new_command
from audioseq.models.graph import SequenceGraph
from audioseq.models.section import Section
from audioseq.utils.diagnostics import SessionLog

logger = logging.getLogger(__name__)

# Largest address a reference can hold
MAX_ADDRESS = 0xFFFF

# Layout passes allowed for widening relative references
MAX_PASSES = 16


class ComWriter:
    """
    Writer for Com sequence data.

    Example:
        ComWriter.write(graph, "song.seq")

    Problems are logged to the writer's SessionLog and emission continues,
    so a best-effort buffer is always produced.
    """

    def __init__(self, log: Optional[SessionLog] = None):
        self.log = log if log is not None else SessionLog("com-writer")
        self._addresses: Dict[int, List[int]] = {}

    @classmethod
    def write(cls, graph: SequenceGraph, filepath: Union[str, Path]) -> None:
        """
        Write a graph to a Com file.

        Args:
            graph: Graph to assemble
            filepath: Output file path
        """
        writer = cls()
        data = writer.to_bytes(graph)

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, "wb") as f:
            f.write(data)

    def to_bytes(self, graph: SequenceGraph) -> bytes:
        """
        Assemble a graph.

        Section and command addresses and lengths are written back to the
        graph.

        Args:
            graph: Graph to assemble

        Returns:
            Assembled data

        Raises:
            InvariantError: If planned and emitted lengths disagree
        """
        self._check(graph)
        order = self.placement_order(graph)
        self._fix_fallthrough(graph, order)

        for _ in range(MAX_PASSES):
            self._plan(graph, order)
            if not self._widen_relative(graph, order):
                break
        else:
            self.log.error("Relative references did not settle", logger)

        data = self._emit(graph, order)
        self.log.info(f"Assembled {len(order)} sections into {len(data)} bytes", logger)
        return bytes(data)

    @staticmethod
    def placement_order(graph: SequenceGraph) -> List[Section]:
        """
        Get the order sections are laid out in.

        Sections that have an address keep their address order; sections
        created since follow in index order.
        """
        return sorted(
            graph.sections,
            key=lambda s: (s.address is None, s.address if s.address is not None else 0, s.index),
        )

    def _check(self, graph: SequenceGraph) -> None:
        for problem in graph.check_references():
            self.log.error(f"Dangling reference: {problem}", logger)

        for section in graph.sections:
            for i, command in enumerate(section.commands):
                if not graph.is_command_valid_in(command, section.kind):
                    self.log.error(
                        f"{section.label} command {i}: {command.describe()} is not valid "
                        f"in {section.kind.display_name}",
                        logger,
                    )
                spec = command.spec
                if spec is None or spec.target_param is None:
                    continue
                if command.get_target() is None:
                    self.log.error(
                        f"{section.label} command {i}: {spec.name} has no target", logger
                    )

    def _fix_fallthrough(self, graph: SequenceGraph, order: List[Section]) -> None:
        """Append a jump where a section no longer precedes the one it falls into."""
        for position, section in enumerate(order):
            if not section.fallthrough:
                continue
            following = order[position + 1] if position + 1 < len(order) else None
            if following is not None and following.index == section.fallthrough_to:
                continue
            if section.fallthrough_to is None or not graph.has_section(section.fallthrough_to):
                self.log.error(f"{section.label} falls through into a missing section", logger)
                continue

            spec = graph.descriptor.find(Action.JUMP, section.kind)
            if spec is None:
                self.log.error(f"{section.label}: no jump command to end it with", logger)
                continue
            jump = new_command(spec, target=Target(section.fallthrough_to, 0))
            graph.add_command(section, jump)
            self.log.warning(
                f"{section.label} no longer falls through into section "
                f"{section.fallthrough_to}; appended a jump",
                logger,
            )
            section.fallthrough = False
            section.fallthrough_to = None

    def _plan(self, graph: SequenceGraph, order: List[Section]) -> None:
        """Assign provisional addresses to every section and command."""
        self._addresses = {}
        address = 0
        for section in order:
            addresses = []
            for command in section.commands:
                addresses.append(address)
                address += command_length(command, section.kind, graph.descriptor)
            addresses.append(address)
            self._addresses[section.index] = addresses

    def _target_address(self, target: Optional[Target]) -> Optional[int]:
        if target is None:
            return None
        addresses = self._addresses.get(target.section)
        if addresses is None or not 0 <= target.command < len(addresses) - 1:
            return None
        return addresses[target.command]

    def _widen_relative(self, graph: SequenceGraph, order: List[Section]) -> bool:
        """
        Replace relative references that do not reach with their wide form.

        Returns:
            True if anything changed (addresses must be planned again)
        """
        changed = False
        for section in order:
            addresses = self._addresses[section.index]
            for i, command in enumerate(section.commands):
                param = command.spec.target_param if command.spec else None
                if param is None or param.source != DataSource.REL_ADDRESS:
                    continue
                target_address = self._target_address(command.get_target())
                if target_address is None or relative_fits(command, addresses[i], target_address):
                    continue

                wide = graph.descriptor.by_name(command.spec.wide_form or "")
                if wide is None:
                    self.log.error(
                        f"{section.label} command {i}: {command.spec.name} cannot reach "
                        f"0x{target_address:04X} and has no wider form",
                        logger,
                    )
                    continue
                section.commands[i] = new_command(wide, target=command.get_target())
                section.invalidate()
                self.log.warning(
                    f"{section.label} command {i}: {command.spec.name} out of range, "
                    f"using {wide.name}",
                    logger,
                )
                changed = True
        return changed

    def _emit(self, graph: SequenceGraph, order: List[Section]) -> bytearray:
        data = bytearray()
        for section in order:
            addresses = self._addresses[section.index]
            section.address = addresses[0]
            section.address_end = addresses[-1]
            for i, command in enumerate(section.commands):
                address = addresses[i]
                planned = addresses[i + 1] - address
                encoded = self._encode(graph, section, i, command, address, planned)
                if len(encoded) != planned:
                    raise InvariantError(
                        "planned-length",
                        f"{section.label} command {i} planned {planned} bytes, "
                        f"encoded {len(encoded)}",
                    )
                command.address = address
                command.length = planned
                if isinstance(command, TableEntry) and command.target is not None:
                    target_address = self._target_address(command.target)
                    if target_address is not None:
                        command.value = target_address
                data += encoded
            section.invalidate()

        if len(data) > MAX_ADDRESS + 1:
            self.log.error(
                f"Assembled size {len(data)} exceeds the 0x{MAX_ADDRESS:04X} address range",
                logger,
            )
        return data

    def _encode(
        self,
        graph: SequenceGraph,
        section: Section,
        position: int,
        command: Command,
        address: int,
        planned: int,
    ) -> bytes:
        target = command.get_target()
        target_address = self._target_address(target)
        if target is not None and target_address is None:
            self.log.error(
                f"{section.label} command {position}: target {target} does not resolve", logger
            )
            return bytes(planned)

        try:
            if command.spec is None:
                return encode_data(command, section.kind, graph.descriptor, target_address)
            return encode_command(command, address, target_address)
        except EncodeError as e:
            self.log.error(f"{section.label} command {position} at 0x{address:04X}: {e}", logger)
            return bytes(planned)

