"""
Command graph to musical event conversion.

The sequence header is played like the engine would: it starts channel
headers, which start note layers. Every thread follows calls, loops and
jumps; a jump back onto material already played ends the thread, so an
endlessly looping song is exported as one pass.

For notation dialects the song is partitioned into time sections: a new
time section begins where the sequence header starts channels again after
time has passed. Sections reached from more than one time section cannot be
expressed in those dialects and the later time section is skipped.
"""

import logging
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set, Tuple

from audioseq.converters.midi_import import ensure_simul_msgs_in_order
from audioseq.descriptor.model import Action, SectionKind
from audioseq.errors import GraphError
from audioseq.models.command import Command, NoteCommand, Target
from audioseq.models.event import CC_PITCH_BEND, CC_PROGRAM, EventSequence, MidiEvent
from audioseq.models.graph import SequenceGraph
from audioseq.models.section import Section
from audioseq.utils.diagnostics import SessionLog

logger = logging.getLogger(__name__)

# Guards against runaway playback
MAX_TICKS = 1 << 22
MAX_STEPS = 200_000
MAX_CALL_DEPTH = 32

CONDUCTOR_TRACK = 0


class Dialect(Enum):
    """Target naming convention for exported sequences."""

    MIDI = "midi"
    COMMUNITY = "community"
    CANON = "canon"
    ZELDARET = "zeldaret"

    @property
    def uses_tsections(self) -> bool:
        """Check if the dialect partitions the song into time sections."""
        return self != Dialect.MIDI


TSECTION_PREFIX = {
    Dialect.MIDI: "",
    Dialect.COMMUNITY: "tsec",
    Dialect.CANON: "Part",
    Dialect.ZELDARET: "section",
}

SECTION_PREFIX = {
    Dialect.MIDI: {},
    Dialect.COMMUNITY: {
        SectionKind.SEQ: "seq",
        SectionKind.CHN: "chn",
        SectionKind.TRK: "trk",
        SectionKind.DYN_TABLE: "tbl",
        SectionKind.VALUE_TABLE: "vtbl",
        SectionKind.ENVELOPE: "env",
        SectionKind.MESSAGE: "msg",
        SectionKind.RAW: "raw",
    },
    Dialect.CANON: {
        SectionKind.SEQ: "Seq",
        SectionKind.CHN: "Channel",
        SectionKind.TRK: "Layer",
        SectionKind.DYN_TABLE: "Table",
        SectionKind.VALUE_TABLE: "Values",
        SectionKind.ENVELOPE: "Envelope",
        SectionKind.MESSAGE: "Message",
        SectionKind.RAW: "Data",
    },
    Dialect.ZELDARET: {
        SectionKind.SEQ: "seq",
        SectionKind.CHN: "chan",
        SectionKind.TRK: "layer",
        SectionKind.DYN_TABLE: "table",
        SectionKind.VALUE_TABLE: "values",
        SectionKind.ENVELOPE: "envelope",
        SectionKind.MESSAGE: "message",
        SectionKind.RAW: "data",
    },
}


class _Unexpressible(Exception):
    """A thread uses a construct that cannot be resolved statically."""

    pass


def get_sec_name_prefix(dialect: Dialect, section: Section, parent: Optional[str] = None) -> str:
    """
    Get the name prefix of a section in a dialect.

    Zeldaret names nest under the name of the section that references
    them (chan0_layer1); the other dialects use flat prefixes.
    """
    prefix = SECTION_PREFIX[dialect].get(section.kind, section.kind.value)
    if dialect == Dialect.ZELDARET and parent and section.kind != SectionKind.SEQ:
        return f"{parent}_{prefix}"
    return prefix


class _Thread:
    """
    Playback state of one sequence, channel or layer script.

    Attributes:
        q: Value set by Set Q, indexing dynamic tables
        table: Current dynamic table
        transpose: Semitones added to notes
    """

    def __init__(self, graph: SequenceGraph, section: Section, start: int):
        self.graph = graph
        self.section = section
        self.position = 0
        self.time = start
        self.q: Optional[int] = None
        self.table: Optional[Section] = None
        self.transpose = 0
        self.ended_early = False

    def dyn_target(self, what: str) -> Target:
        """
        Look up the current dynamic table entry.

        Raises:
            _Unexpressible: If Set Q or the table is missing or the entry
                has no target
        """
        if self.table is None or self.q is None:
            raise _Unexpressible(f"{what} without a preceding Set Q and dynamic table")
        if not 0 <= self.q < len(self.table.commands):
            raise _Unexpressible(f"{what} index {self.q} outside {self.table.label}")
        target = self.table.commands[self.q].get_target()
        if target is None:
            raise _Unexpressible(f"{what} entry {self.q} of {self.table.label} is not a reference")
        return target

    def run(self) -> Iterator[Tuple[int, Section, int, Command]]:
        """
        Play the script.

        Yields:
            (time, section, position, command) for every command that is
            not flow control
        """
        stack: List[Tuple[Section, int]] = []
        loops: List[List] = []
        played: Set[Tuple[int, int]] = set()
        steps = 0

        while True:
            section, position = self.section, self.position
            if position >= len(section.commands):
                if section.fallthrough and section.fallthrough_to is not None:
                    self.section, self.position = self.graph.section(section.fallthrough_to), 0
                    continue
                return

            steps += 1
            if steps > MAX_STEPS or self.time > MAX_TICKS:
                self.ended_early = True
                return

            command = section.commands[position]
            action = command.action
            played.add((section.index, position))

            if action == Action.END:
                if not stack:
                    return
                self.section, self.position = stack.pop()
            elif action in (Action.JUMP, Action.JUMP_RELATIVE):
                target = command.get_target()
                if target is None or (target.section, target.command) in played:
                    return
                self._goto(target)
            elif action in (Action.CALL, Action.DYN_CALL):
                if action == Action.CALL:
                    target = command.get_target()
                else:
                    target = self.dyn_target("Dyn Call")
                if target is None:
                    return
                if len(stack) >= MAX_CALL_DEPTH:
                    raise _Unexpressible(f"Calls nested deeper than {MAX_CALL_DEPTH}")
                stack.append((section, position + 1))
                self._goto(target)
            elif action == Action.LOOP_START:
                loops.append([section, position + 1, max(command.value, 1)])
                self.position += 1
            elif action == Action.LOOP_END:
                if loops:
                    loops[-1][2] -= 1
                    if loops[-1][2] > 0:
                        self.section, self.position = loops[-1][0], loops[-1][1]
                        continue
                    loops.pop()
                self.position += 1
            else:
                if action == Action.SET_Q:
                    self.q = command.value
                elif action == Action.PTR_DYN_TABLE and command.get_target() is not None:
                    self.table = self.graph.section(command.get_target().section)
                yield self.time, section, position, command
                self.time += command.ticks
                self.position += 1

    def _goto(self, target: Target) -> None:
        self.section = self.graph.section(target.section)
        self.position = target.command


class MidiExporter:
    """
    Converter from a command graph to musical events.

    Output track 0 holds tempo changes and markers; MIDI channel n goes to
    track n + 1.

    Example:
        sequence = MidiExporter(dialect=Dialect.COMMUNITY).convert(graph)
        MidiFileWriter.write(sequence, "song.mid")
    """

    def __init__(self, dialect: Dialect = Dialect.MIDI, log: Optional[SessionLog] = None):
        self.dialect = dialect
        self.log = log if log is not None else SessionLog("midi-export")
        self.graph: Optional[SequenceGraph] = None
        self.tsection: Dict[int, int] = {}
        self.tsec_names: List[str] = []
        self.section_names: Dict[int, str] = {}
        self._skipped: Set[int] = set()

    def convert(self, graph: SequenceGraph) -> EventSequence:
        """
        Export a graph.

        Returns:
            Events in deterministic order at the descriptor tick rate
        """
        self._reset(graph)
        sequence = EventSequence(ticks_per_beat=graph.descriptor.ticks_per_beat)

        headers = graph.sections_of(SectionKind.SEQ)
        if not headers:
            self.log.error("Graph has no sequence header", logger)
            return sequence
        seq = headers[0]

        events: List[MidiEvent] = []
        starts = self._play_header(seq, events)
        self._assign_all(seq, starts)

        for tsec, name in enumerate(self.tsec_names):
            if self.dialect.uses_tsections and tsec not in self._skipped:
                time = min(t for t, _, _, s in starts if s == tsec)
                events.append(MidiEvent.marker(time, name, CONDUCTOR_TRACK))

        for index, (time, channel, chn_index, tsec) in enumerate(starts):
            if tsec in self._skipped:
                continue
            stop = self._next_start(starts, index, channel)
            try:
                events.extend(self._play_channel(time, channel, chn_index, stop))
            except (_Unexpressible, GraphError) as e:
                self.log.warning(
                    f"Channel {channel} in {self._tsec_label(tsec)} skipped: {e}", logger
                )

        sequence.events = ensure_simul_msgs_in_order(events)
        self.log.info(
            f"Exported {len(sequence.events)} events over {len(self.tsec_names)} time "
            f"section(s), {self.count_ticks(seq.index)} ticks",
            logger,
        )
        return sequence

    def name_sections(self, graph: SequenceGraph) -> Dict[int, str]:
        """
        Name every section of a graph the way the dialect labels it.

        Time sections are assigned as for event export. Sections no channel
        start reaches get the dialect prefix followed by their index.

        Returns:
            Unique name by section index
        """
        self._reset(graph)
        headers = graph.sections_of(SectionKind.SEQ)
        if headers:
            self._assign_all(headers[0], self._play_header(headers[0], []))

        used = set(self.section_names.values())
        for section in graph.sections:
            if section.index in self.section_names:
                continue
            if self.dialect.uses_tsections:
                name = f"{get_sec_name_prefix(self.dialect, section)}_{section.index}"
            else:
                name = section.label
            while name in used:
                name += "_"
            used.add(name)
            self.section_names[section.index] = name
        return dict(self.section_names)

    def _reset(self, graph: SequenceGraph) -> None:
        self.graph = graph
        self.tsection = {}
        self.tsec_names = []
        self.section_names = {}
        self._skipped = set()

    # Sequence header

    def _play_header(
        self, seq: Section, events: List[MidiEvent]
    ) -> List[Tuple[int, int, int, int]]:
        """
        Play the sequence header, emitting tempo events.

        Returns:
            (time, channel, channel section index, time section) of every
            channel start
        """
        starts: List[Tuple[int, int, int, int]] = []
        tsec = -1
        waited = True
        thread = _Thread(self.graph, seq, 0)

        for time, _, _, command in thread.run():
            if command.action == Action.TEMPO:
                tempo = int(round(60_000_000 / command.value))
                events.append(MidiEvent.set_tempo(time, tempo, CONDUCTOR_TRACK))
            elif command.action == Action.TIMESTAMP:
                if command.ticks:
                    waited = True
            elif command.action == Action.PTR_CHANNEL_HEADER:
                target = command.get_target()
                if target is None:
                    continue
                if waited:
                    tsec += 1
                    waited = False
                starts.append((time, command.index, target.section, tsec))

        if thread.ended_early:
            self.log.warning(f"{seq.label}: playback stopped by the tick guard", logger)
        return starts

    @staticmethod
    def _next_start(
        starts: List[Tuple[int, int, int, int]], index: int, channel: int
    ) -> Optional[int]:
        for time, other_channel, _, _ in starts[index + 1 :]:
            if other_channel == channel and time > starts[index][0]:
                return time
        return None

    # Time sections

    def _tsec_label(self, tsec: int) -> str:
        if 0 <= tsec < len(self.tsec_names):
            return self.tsec_names[tsec]
        return f"time section {tsec}"

    def _assign_all(self, seq: Section, starts: List[Tuple[int, int, int, int]]) -> None:
        prefix = TSECTION_PREFIX[self.dialect] or "tsec"
        count = max((s for _, _, _, s in starts), default=-1) + 1
        self.tsec_names = [f"{prefix}{n}" for n in range(count)]
        if self.dialect.uses_tsections:
            self.section_names[seq.index] = get_sec_name_prefix(self.dialect, seq)
        else:
            self.section_names[seq.index] = seq.label

        for _, channel, chn_index, tsec in starts:
            if not self.graph.has_section(chn_index):
                continue
            if not self.assign_tsection(self.graph.section(chn_index), tsec):
                if self.dialect.uses_tsections:
                    self._skipped.add(tsec)

        for tsec in sorted(self._skipped):
            self.log.warning(
                f"{self._tsec_label(tsec)} shares sections with an earlier time section "
                f"and cannot be expressed in {self.dialect.value}; skipped",
                logger,
            )

    def assign_tsection(self, sec: Section, tsecnum: int) -> bool:
        """
        Assign a section and everything it reaches to a time section.

        Returns:
            False if some of that material already belongs to another
            time section
        """
        ok = True
        counters: Dict[SectionKind, int] = {}
        stack: List[Tuple[Section, Optional[str]]] = [(sec, None)]
        while stack:
            section, parent = stack.pop()
            owner = self.tsection.get(section.index)
            if owner is not None:
                if owner != tsecnum:
                    ok = False
                    if self.dialect.uses_tsections:
                        logger.debug(
                            "%s belongs to time sections %d and %d", section.label, owner, tsecnum
                        )
                continue

            self.tsection[section.index] = tsecnum
            number = counters.get(section.kind, 0)
            counters[section.kind] = number + 1
            if self.dialect.uses_tsections:
                prefix = get_sec_name_prefix(self.dialect, section, parent)
                self.section_names[section.index] = f"{prefix}{tsecnum}_{number}"
            else:
                self.section_names[section.index] = section.label
            name = self.section_names[section.index]

            children = []
            for command in section.commands:
                target = command.get_target()
                if target is not None and self.graph.has_section(target.section):
                    child = self.graph.section(target.section)
                    if child.kind != SectionKind.SEQ:
                        children.append(child)
            if section.fallthrough and section.fallthrough_to is not None:
                children.append(self.graph.section(section.fallthrough_to))
            for child in reversed(children):
                stack.append((child, name))
        return ok

    def count_ticks(self, section_index: int) -> int:
        """
        Count the ticks a section plays for, following calls and loops.

        Returns:
            Length in ticks; 0 if it cannot be played statically
        """
        thread = _Thread(self.graph, self.graph.section(section_index), 0)
        end = 0
        try:
            for time, _, _, command in thread.run():
                end = time + command.ticks
        except _Unexpressible:
            return 0
        return end

    # Channels and layers

    def _play_channel(
        self, start: int, channel: int, chn_index: int, stop: Optional[int]
    ) -> List[MidiEvent]:
        events: List[MidiEvent] = []
        track = channel + 1
        thread = _Thread(self.graph, self.graph.section(chn_index), start)
        layer_starts: List[Tuple[int, int, Target, int]] = []

        if self.dialect.uses_tsections:
            events.append(MidiEvent.marker(start, self.section_names.get(chn_index, ""), track))

        for time, _, _, command in thread.run():
            if stop is not None and time >= stop:
                break
            action = command.action
            if action == Action.PTR_TRACK_DATA and command.get_target() is not None:
                layer_starts.append((time, command.index, command.get_target(), thread.transpose))
            elif action == Action.DYN_TRACK_DATA:
                target = thread.dyn_target("Dyn Track Data")
                layer_starts.append((time, command.index, target, thread.transpose))
            elif action == Action.CHN_TRANSPOSE:
                thread.transpose = command.value
            elif command.spec is not None and command.spec.cc is not None:
                events.append(
                    self._controller_event(time, channel, command.spec.cc, command.value, track)
                )

        if thread.ended_early:
            self.log.warning(f"Channel {channel}: playback stopped by the tick guard", logger)

        for index, (time, layer, target, transpose) in enumerate(layer_starts):
            layer_stop = stop
            for later_time, later_layer, _, _ in layer_starts[index + 1 :]:
                if later_layer == layer and later_time > time:
                    layer_stop = later_time if stop is None else min(stop, later_time)
                    break
            events.extend(self._play_layer(time, channel, target, layer_stop, transpose, track))
        return events

    def _play_layer(
        self,
        start: int,
        channel: int,
        target: Target,
        stop: Optional[int],
        transpose: int,
        track: int,
    ) -> List[MidiEvent]:
        events: List[MidiEvent] = []
        thread = _Thread(self.graph, self.graph.section(target.section), start)
        thread.position = target.command
        thread.transpose = transpose

        for time, _, _, command in thread.run():
            if stop is not None and time >= stop:
                break
            if command.action == Action.LAYER_TRANSPOSE:
                thread.transpose = transpose + command.value
            elif isinstance(command, NoteCommand):
                pitch = min(max(command.note + thread.transpose, 0), 127)
                end = time + max(command.duration, 1)
                if stop is not None:
                    end = min(end, stop)
                events.append(MidiEvent.note_on(time, channel, pitch, command.velocity, track))
                events.append(MidiEvent.note_off(end, channel, pitch, track))

        if thread.ended_early:
            self.log.warning(f"Channel {channel}: layer playback stopped by the tick guard", logger)
        return events

    @staticmethod
    def _controller_event(time: int, channel: int, cc: int, value: int, track: int) -> MidiEvent:
        if cc == CC_PITCH_BEND:
            return MidiEvent.pitch_bend(time, channel, value << 6, track)
        if cc == CC_PROGRAM:
            return MidiEvent.program_change(time, channel, value, track)
        return MidiEvent.control_change(time, channel, cc, value, track)
