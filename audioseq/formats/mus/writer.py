"""
Music macro text writer.

Renders a command graph as a text listing in the labelling convention of an
export dialect: one labelled block per section, one mnemonic line per
command, and every reference written as the label of its target. Blocks are
grouped by time section, in the order the sequence header starts them.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

from audioseq.converters.midi_export import Dialect, MidiExporter
from audioseq.descriptor.model import CommandSpec, SectionKind
from audioseq.formats.com.codec import TABLE_STRIDE
from audioseq.models.command import (
    Command,
    EnvelopePoint,
    MessageData,
    RawData,
    TableEntry,
    Target,
)
from audioseq.models.graph import SequenceGraph
from audioseq.models.section import Section
from audioseq.utils.diagnostics import SessionLog

logger = logging.getLogger(__name__)

INDENT = "    "
BYTES_PER_LINE = 16


def mnemonic(dialect: Dialect, spec: CommandSpec) -> str:
    """
    Get the mnemonic of a command in a dialect.

    Canon writes CamelCase, zeldaret lowercase words run together, the
    others lowercase words joined by underscores.
    """
    words = spec.name.replace("-", " ").split()
    if dialect == Dialect.CANON:
        return "".join(w[0].upper() + w[1:] for w in words)
    if dialect == Dialect.ZELDARET:
        return "".join(words).lower()
    return "_".join(words).lower()


class MusWriter:
    """
    Writer for music macro text listings.

    Example:
        MusWriter.write(graph, "song.mus", Dialect.COMMUNITY)
    """

    def __init__(self, dialect: Dialect = Dialect.COMMUNITY, log: Optional[SessionLog] = None):
        self.dialect = dialect
        self.log = log if log is not None else SessionLog("mus-writer")
        self._names: Dict[int, str] = {}

    @classmethod
    def write(
        cls,
        graph: SequenceGraph,
        filepath: Union[str, Path],
        dialect: Dialect = Dialect.COMMUNITY,
    ) -> None:
        """
        Write a graph to a text file.

        Args:
            graph: Graph to render
            filepath: Output file path
            dialect: Labelling convention
        """
        filepath = Path(filepath)
        text = cls(dialect).to_text(graph, name=filepath.stem)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(text)

    def to_text(self, graph: SequenceGraph, name: str = "sequence") -> str:
        """
        Render a graph.

        Args:
            graph: Graph to render
            name: Sequence name for the header comment

        Returns:
            The listing, ending with a newline
        """
        exporter = MidiExporter(self.dialect, self.log)
        self._names = exporter.name_sections(graph)
        local = self._local_labels(graph)

        lines = [
            f"; {name}",
            f"; {graph.descriptor.name} instruction set, {self.dialect.value} dialect",
        ]
        for heading, sections in self._groups(graph, exporter):
            lines.append("")
            lines.append(f"; {heading}")
            for section in sections:
                lines.append("")
                lines.extend(self._section_lines(section, local))

        self.log.info(
            f"Wrote {len(graph)} sections as {self.dialect.value} text "
            f"({len(lines)} lines)",
            logger,
        )
        return "\n".join(lines) + "\n"

    def _groups(
        self, graph: SequenceGraph, exporter: MidiExporter
    ) -> List[Tuple[str, List[Section]]]:
        headers = [s for s in graph.sections if s.kind == SectionKind.SEQ]
        groups: List[Tuple[str, List[Section]]] = []
        placed: Set[int] = set()

        first = [s for s in headers if s.index not in exporter.tsection]
        if first:
            groups.append(("sequence header", first))
            placed.update(s.index for s in first)

        for tsec, tsec_name in enumerate(exporter.tsec_names):
            members = [s for s in graph.sections if exporter.tsection.get(s.index) == tsec]
            if members:
                groups.append((tsec_name, members))
                placed.update(s.index for s in members)

        rest = [s for s in graph.sections if s.index not in placed]
        if rest:
            groups.append(("not started by the sequence header", rest))
        return groups

    def _local_labels(self, graph: SequenceGraph) -> Set[Tuple[int, int]]:
        """Find references into the middle of a section; those get their own label."""
        local = set()
        for ref in graph.references():
            if ref.target.command != 0:
                local.add((ref.target.section, ref.target.command))
        return local

    def label(self, target: Target) -> str:
        """Get the label a reference is written as."""
        name = self._names.get(target.section, f"section{target.section}")
        if target.command == 0:
            return name
        return f"{name}_cmd{target.command}"

    def _section_lines(self, section: Section, local: Set[Tuple[int, int]]) -> List[str]:
        name = self._names[section.index]
        lines = [f"{name}:"]
        for position, command in enumerate(section.commands):
            if position and (section.index, position) in local:
                lines.append(f"{self.label(Target(section.index, position))}:")
            lines.append(INDENT + self._command_text(section, command))
        if section.fallthrough and section.fallthrough_to is not None:
            target = Target(section.fallthrough_to, 0)
            lines.append(f"{INDENT}; falls through into {self.label(target)}")
        return lines

    def _command_text(self, section: Section, command: Command) -> str:
        if section.kind.is_table and isinstance(command, TableEntry):
            directive = ".dw" if TABLE_STRIDE[section.kind] == 2 else ".db"
            if command.target is not None:
                return f"{directive} {self.label(command.target)}"
            if directive == ".dw":
                return f"{directive} 0x{command.value:04X}"
            return f"{directive} {command.value}"
        if isinstance(command, EnvelopePoint):
            return f".point {command.delay}, {command.arg}"
        if isinstance(command, MessageData):
            return f".message {_hex_bytes(command.payload)}".rstrip()
        if isinstance(command, RawData):
            return _raw_lines(command.payload)

        args = []
        for attr, value in command.param_items():
            if attr == "target":
                args.append(self.label(value) if value is not None else "?")
            elif value is not None:
                args.append(str(value))
        text = mnemonic(self.dialect, command.spec) if command.spec else command.name
        if args:
            text += " " + ", ".join(args)
        return text


def _hex_bytes(payload: bytes) -> str:
    return " ".join(f"0x{b:02X}" for b in payload)


def _raw_lines(payload: bytes) -> str:
    chunks = [payload[i : i + BYTES_PER_LINE] for i in range(0, len(payload), BYTES_PER_LINE)]
    return f"\n{INDENT}".join(".db " + ", ".join(f"0x{b:02X}" for b in chunk) for chunk in chunks)
