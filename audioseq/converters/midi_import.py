"""
Musical event to command graph conversion.

Events are put in a deterministic order, rescaled to the sequence tick rate
and distributed over sections: one sequence header, one channel header per
MIDI channel, and one track (note layer) per polyphony slot of a channel.
An optimization pass then merges redundant controller commands, drops empty
notes and layers, and merges identical sections.
"""

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from audioseq.converters.options import ImportOptions
from audioseq.descriptor.model import Action, Descriptor, Meaning, SectionKind
from audioseq.descriptor.presets import load_descriptor
from audioseq.formats.midi.midi_file import MidiFileReader
from audioseq.models.command import ACTION_CLASSES, Command, DelayCommand, NoteCommand, Target
from audioseq.models.event import EventSequence, EventType, MidiEvent
from audioseq.models.graph import SequenceGraph
from audioseq.models.section import Section
from audioseq.utils.diagnostics import SessionLog

logger = logging.getLogger(__name__)

DEFAULT_BPM = 120

# Order of events sharing one timestamp
_ORDER_NOTE_OFF = 0
_ORDER_META = 1
_ORDER_CONTROL = 2
_ORDER_NOTE_ON = 3


@dataclass
class Want:
    """
    A command being asked for: an action plus parameter values.

    create_command() turns it into a command of whichever descriptor
    command for the action can hold the values.
    """

    action: Action
    kind: SectionKind
    values: Dict[Meaning, int] = field(default_factory=dict)


@dataclass
class _Note:
    start: int
    end: int
    pitch: int
    velocity: int


def _event_order(event: MidiEvent) -> int:
    if event.is_note_off:
        return _ORDER_NOTE_OFF
    if event.event_type == EventType.META:
        return _ORDER_META
    if event.is_note_on:
        return _ORDER_NOTE_ON
    return _ORDER_CONTROL


def ensure_simul_msgs_in_order(events: List[MidiEvent]) -> List[MidiEvent]:
    """
    Put events in one deterministic order.

    Events sharing a timestamp are ordered by content only (note-offs,
    then meta events, then controllers, then note-ons; then channel and
    data bytes), so the result does not depend on which input track an
    event came from or on the order tracks were merged in.

    Args:
        events: Events with absolute times

    Returns:
        New sorted list
    """
    return sorted(
        events,
        key=lambda e: (
            e.time,
            _event_order(e),
            e.channel,
            e.data1,
            e.data2,
            e.tempo or 0,
            e.text or "",
        ),
    )


def is_close_enough(
    command1: Command,
    command2: Command,
    allow_cc_merge: bool,
    options: ImportOptions,
    ticks_between: int,
) -> bool:
    """
    Check if a controller command can be dropped in favor of an earlier one.

    Equal values always merge. Different values merge only with
    allow_cc_merge, a difference within cc_tolerance, and at most
    merge_window ticks between the two commands.
    """
    if command1.action != command2.action or command1.spec is not command2.spec:
        return False
    value1 = command1.get_param(Meaning.VALUE)
    value2 = command2.get_param(Meaning.VALUE)
    if value1 is None or value2 is None:
        return False
    if value1 == value2:
        return True
    if not allow_cc_merge:
        return False
    return abs(value1 - value2) <= options.cc_tolerance and ticks_between <= options.merge_window


class MidiImporter:
    """
    Converter from musical events to a command graph.

    Example:
        graph = MidiImporter.read("song.mid")
        ComWriter.write(graph, "song.seq")
    """

    def __init__(
        self,
        descriptor: Optional[Descriptor] = None,
        options: Optional[ImportOptions] = None,
        log: Optional[SessionLog] = None,
    ):
        self.descriptor = descriptor or load_descriptor()
        self.options = options or ImportOptions()
        self.log = log if log is not None else SessionLog("midi-import")
        self.graph = SequenceGraph(self.descriptor)

    @classmethod
    def read(
        cls,
        filepath: Union[str, Path],
        descriptor: Optional[Descriptor] = None,
        options: Optional[ImportOptions] = None,
    ) -> SequenceGraph:
        """Import a .mid file."""
        importer = cls(descriptor, options)
        return importer.convert(MidiFileReader.read(filepath))

    def convert(self, sequence: EventSequence) -> SequenceGraph:
        """
        Convert an event sequence.

        Args:
            sequence: Events with absolute times and their tick rate

        Returns:
            New graph
        """
        self.graph = SequenceGraph(self.descriptor)
        events = ensure_simul_msgs_in_order(sequence.events)
        events = self._rescale(events, sequence.ticks_per_beat)

        notes, controls, tempos = self._collect(events)
        end_time = max(
            [n.end for ns in notes.values() for n in ns]
            + [t for cs in controls.values() for t, _, _ in cs]
            + [t for t, _ in tempos]
            + [0]
        )

        channels = sorted(set(notes) | set(controls))
        seq = self.graph.create_section(SectionKind.SEQ)
        chn_sections = {ch: self.graph.create_section(SectionKind.CHN) for ch in channels}

        layer_sections: Dict[int, List[Section]] = {}
        for channel in channels:
            layers = self._assign_layers(channel, notes.get(channel, []))
            layer_sections[channel] = []
            for layer_notes in layers:
                trk = self.graph.create_section(SectionKind.TRK)
                self._build_track(trk, layer_notes)
                layer_sections[channel].append(trk)

        self._build_seq(seq, chn_sections, tempos, end_time)
        for channel in channels:
            self._build_channel(
                chn_sections[channel], layer_sections[channel], controls.get(channel, []), end_time
            )

        self.optimize()
        self.log.info(
            f"Imported {len(events)} events on {len(channels)} channel(s) into "
            f"{len(self.graph)} sections",
            logger,
        )
        return self.graph

    # Event preparation

    def _rescale(self, events: List[MidiEvent], ticks_per_beat: int) -> List[MidiEvent]:
        target = self.descriptor.ticks_per_beat
        if ticks_per_beat == target or ticks_per_beat <= 0:
            return events
        half = ticks_per_beat // 2
        return [replace(e, time=(e.time * target + half) // ticks_per_beat) for e in events]

    def _collect(self, events: List[MidiEvent]) -> Tuple[Dict, Dict, List]:
        """
        Split events into notes, controller changes and tempo changes.

        Returns:
            Tuple of (notes per channel, (time, cc, value) per channel,
            (time, bpm) list)
        """
        notes: Dict[int, List[_Note]] = {}
        controls: Dict[int, List[Tuple[int, int, int]]] = {}
        tempos: List[Tuple[int, int]] = []
        active: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
        last_time = events[-1].time if events else 0

        for event in events:
            if event.is_tempo:
                tempos.append((event.time, self._tempo_bpm(event)))
            elif event.is_note_on:
                active.setdefault((event.channel, event.note), []).append(
                    (event.time, event.velocity)
                )
            elif event.is_note_off:
                started = active.get((event.channel, event.note))
                if not started:
                    logger.debug("Note-off without note-on at tick %d", event.time)
                    continue
                start, velocity = started.pop(0)
                notes.setdefault(event.channel, []).append(
                    _Note(start, event.time, event.note, velocity)
                )
            elif event.controller is not None:
                control = self._check_control(event)
                if control is not None:
                    controls.setdefault(event.channel, []).append(control)

        for (channel, pitch), started in sorted(active.items()):
            for start, velocity in started:
                self.log.warning(
                    f"Channel {channel}: note {pitch} at tick {start} never ends, "
                    f"ending it at tick {last_time}",
                    logger,
                )
                notes.setdefault(channel, []).append(_Note(start, last_time, pitch, velocity))

        for channel_notes in notes.values():
            channel_notes.sort(key=lambda n: (n.start, n.pitch, n.end))
        return notes, controls, tempos

    def _tempo_bpm(self, event: MidiEvent) -> int:
        bpm = int(round(event.bpm or DEFAULT_BPM))
        spec = self.descriptor.find(Action.TEMPO, SectionKind.SEQ)
        if spec is None:
            return bpm
        low, high = self.descriptor.get_command_range(spec, Meaning.VALUE)
        if not low <= bpm <= high:
            clamped = min(max(bpm, low), high)
            self.log.warning(f"Tempo {bpm} BPM at tick {event.time} clamped to {clamped}", logger)
            return clamped
        return bpm

    def _check_control(self, event: MidiEvent) -> Optional[Tuple[int, int, int]]:
        """Get (time, cc, value) of a controller event, or None if it cannot be imported."""
        cc = event.controller
        value = event.controller_value
        if not self.descriptor.is_valid_cc(cc):
            self.log.warning(
                f"Channel {event.channel}: controller {cc} at tick {event.time} "
                f"has no command, dropped",
                logger,
            )
            return None
        spec = self.descriptor.controller_commands()[cc]
        low, high = self.descriptor.get_command_range(spec, Meaning.VALUE)
        if not low <= value <= high:
            self.log.warning(
                f"Channel {event.channel}: controller {cc} value {value} at tick "
                f"{event.time} outside {low}..{high}, dropped",
                logger,
            )
            return None
        return event.time, cc, value

    def _assign_layers(self, channel: int, notes: List[_Note]) -> List[List[_Note]]:
        """Distribute a channel's notes over monophonic layers."""
        layers: List[List[_Note]] = []
        busy_until: List[int] = []
        for note in notes:
            for i, end in enumerate(busy_until):
                if end <= note.start:
                    layers[i].append(note)
                    busy_until[i] = note.end
                    break
            else:
                if len(layers) < self.options.max_layers:
                    layers.append([note])
                    busy_until.append(note.end)
                else:
                    self.log.warning(
                        f"Channel {channel}: more than {self.options.max_layers} "
                        f"simultaneous notes at tick {note.start}, note {note.pitch} dropped",
                        logger,
                    )
        return layers

    # Command creation

    def want_action(self, action: Action, kind: SectionKind) -> Want:
        """Start asking for a command performing an action."""
        return Want(action, kind)

    def want_property(self, want: Want, meaning: Meaning, value: int) -> None:
        want.values[meaning] = value

    def create_command(self, want: Want, warn_if_impossible: bool = True) -> Optional[Command]:
        """
        Create a command fulfilling a want.

        The first descriptor command for the action that is legal in the
        wanted section kind and can hold every wanted value is used.

        Returns:
            New command, or None if no command fits
        """
        for spec in self.descriptor.commands_in(want.kind):
            if spec.action != want.action:
                continue
            fits = True
            for meaning, value in want.values.items():
                param = spec.param(meaning)
                if param is None or param.is_target:
                    fits = False
                    break
                low, high = param.value_range(spec.cmd_span)
                if not low <= value <= high:
                    fits = False
                    break
            if not fits:
                continue
            cls = ACTION_CLASSES.get(spec.action, Command)
            values = {cls.FIELDS[m]: v for m, v in want.values.items()}
            return cls(action=spec.action, spec=spec, **values)

        if warn_if_impossible:
            wanted = ", ".join(f"{m.value}={v}" for m, v in want.values.items())
            self.log.warning(
                f"No {want.action.value} command in {want.kind.display_name} can hold {wanted}",
                logger,
            )
        return None

    def _add(self, section: Section, action: Action, **values) -> Optional[Command]:
        want = self.want_action(action, section.kind)
        target = values.pop("target", None)
        for meaning, value in values.items():
            self.want_property(want, Meaning[meaning.upper()], value)
        command = self.create_command(want)
        if command is None:
            return None
        if target is not None:
            command.set_target(target)
        return self.graph.add_command(section, command)

    def advance_to_timestamp(self, section: Section, t: int, newt: int) -> int:
        """
        Insert timestamp commands to move a section's time from t to newt.

        Returns:
            The new time
        """
        if newt <= t:
            return t
        _, longest = self.descriptor.largest_command_range(
            section.kind, Action.TIMESTAMP, Meaning.DELAY
        )
        if longest <= 0:
            self.log.warning(f"{section.label}: no timestamp command, time not advanced", logger)
            return t
        remaining = newt - t
        while remaining > 0:
            step = min(remaining, longest)
            self._add(section, Action.TIMESTAMP, delay=step)
            remaining -= step
        return newt

    def create_marker(self, section: Section) -> Optional[Command]:
        """Mark the end of a section."""
        return self._add(section, Action.END)

    # Section building

    def _build_seq(
        self,
        seq: Section,
        chn_sections: Dict[int, Section],
        tempos: List[Tuple[int, int]],
        end_time: int,
    ) -> None:
        self._add(seq, Action.MASTER_VOLUME, value=self.options.master_volume)
        mask = 0
        for channel in chn_sections:
            mask |= 1 << channel
        if mask:
            self._add(seq, Action.CHANNEL_ENABLE, bitfield=mask)

        first_tempo = DEFAULT_BPM
        changes = tempos
        if tempos and tempos[0][0] == 0:
            first_tempo = tempos[0][1]
            changes = tempos[1:]
        self._add(seq, Action.TEMPO, value=first_tempo)

        for channel, chn in chn_sections.items():
            self._add(
                seq, Action.PTR_CHANNEL_HEADER, channel=channel, target=Target(chn.index, 0)
            )

        t = 0
        for time, bpm in changes:
            t = self.advance_to_timestamp(seq, t, time)
            self._add(seq, Action.TEMPO, value=bpm)
        self.advance_to_timestamp(seq, t, end_time)

        if self.options.loop:
            self._add(seq, Action.JUMP, target=Target(seq.index, 0))
        else:
            self.create_marker(seq)

    def _build_channel(
        self,
        chn: Section,
        layers: List[Section],
        controls: List[Tuple[int, int, int]],
        end_time: int,
    ) -> None:
        for layer, trk in enumerate(layers):
            self._add(chn, Action.PTR_TRACK_DATA, layer=layer, target=Target(trk.index, 0))

        controller_commands = self.descriptor.controller_commands()
        t = 0
        for time, cc, value in controls:
            t = self.advance_to_timestamp(chn, t, time)
            self._add(chn, controller_commands[cc].action, value=value)
        self.advance_to_timestamp(chn, t, end_time)
        self.create_marker(chn)

    def _build_track(self, trk: Section, notes: List[_Note]) -> None:
        _, longest = self.descriptor.largest_command_range(
            SectionKind.TRK, Action.NOTE, Meaning.DELAY
        )
        t = 0
        for note in notes:
            t = self.advance_to_timestamp(trk, t, note.start)
            duration = note.end - note.start
            if duration > longest:
                self.log.warning(
                    f"Note {note.pitch} at tick {note.start} lasts {duration} ticks, "
                    f"shortened to {longest}",
                    logger,
                )
                duration = longest
            self._add(
                trk,
                Action.NOTE,
                note=note.pitch,
                delay=duration,
                velocity=note.velocity,
                gate=0,
            )
            t += duration
        self.create_marker(trk)

    # Optimization

    def optimize(self) -> None:
        """
        Run the optimization passes.

        Order: controller merging, then note reduction, then merging of
        identical sections.
        """
        merged = 0
        for section in self.graph.sections_of(SectionKind.CHN):
            merged += self._merge_controllers(section)
        if merged:
            self.log.info(f"Merged {merged} redundant controller command(s)", logger)

        if self.options.reduce_notes:
            self.reduce_track_notes()

        if self.options.merge_sections:
            removed = self.graph.merge_duplicates(
                kinds=(SectionKind.TRK, SectionKind.CHN)
            )
            if removed:
                self.log.info(f"Merged {removed} identical section(s)", logger)
        self.graph.renumber()

    def _merge_controllers(self, section: Section) -> int:
        last: Dict[Action, Tuple[Command, int]] = {}
        t = 0
        position = 0
        removed = 0
        while position < len(section.commands):
            command = section.commands[position]
            if command.spec is not None and command.spec.cc is not None:
                previous = last.get(command.action)
                if previous is not None and is_close_enough(
                    previous[0], command, self.options.allow_cc_merge, self.options, t - previous[1]
                ):
                    self.graph.delete_command(section, position)
                    removed += 1
                    continue
                last[command.action] = (command, t)
            t += command.ticks
            position += 1
        return removed

    def reduce_track_notes(self) -> None:
        """
        Drop zero-length notes, join adjacent timestamps, and delete layers
        that play nothing.
        """
        dropped = 0
        for trk in self.graph.sections_of(SectionKind.TRK):
            position = 0
            while position < len(trk.commands):
                command = trk.commands[position]
                if isinstance(command, NoteCommand) and command.delay == 0:
                    self.graph.delete_command(trk, position)
                    dropped += 1
                    continue
                position += 1
        if dropped:
            self.log.info(f"Dropped {dropped} zero-length note(s)", logger)

        for section in self.graph.sections:
            if section.kind.is_command_stream:
                self._join_timestamps(section)

        for trk in self.graph.sections_of(SectionKind.TRK):
            if any(isinstance(c, NoteCommand) for c in trk.commands):
                continue
            for ref in self.graph.references_to(trk.index):
                position = ref.section.commands.index(ref.command)
                self.graph.delete_command(ref.section, position)
            self.graph.delete_section(trk.index)
            logger.debug("Deleted empty layer %s", trk.label)

    def _join_timestamps(self, section: Section) -> None:
        _, longest = self.descriptor.largest_command_range(
            section.kind, Action.TIMESTAMP, Meaning.DELAY
        )
        position = 1
        while position < len(section.commands):
            before = section.commands[position - 1]
            command = section.commands[position]
            if (
                isinstance(before, DelayCommand)
                and isinstance(command, DelayCommand)
                and before.spec is command.spec
                and before.delay + command.delay <= longest
            ):
                before.delay += command.delay
                self.graph.delete_command(section, position)
                continue
            position += 1
