"""
Standard MIDI file adapter.

Reads and writes .mid files with mido and converts them to and from the
EventSequence model used by the converters.
"""

import logging
from pathlib import Path
from typing import Dict, List, Union

import mido

from audioseq.models.event import EventSequence, EventType, MetaType, MidiEvent

logger = logging.getLogger(__name__)


def _event_from_message(msg: mido.Message, time: int, track: int) -> Union[MidiEvent, None]:
    if msg.type == "note_on":
        return MidiEvent.note_on(time, msg.channel, msg.note, msg.velocity, track)
    if msg.type == "note_off":
        return MidiEvent.note_off(time, msg.channel, msg.note, track)
    if msg.type == "control_change":
        return MidiEvent.control_change(time, msg.channel, msg.control, msg.value, track)
    if msg.type == "program_change":
        return MidiEvent.program_change(time, msg.channel, msg.program, track)
    if msg.type == "pitchwheel":
        return MidiEvent.pitch_bend(time, msg.channel, msg.pitch, track)
    if msg.type == "set_tempo":
        return MidiEvent.set_tempo(time, msg.tempo, track)
    if msg.type == "marker":
        return MidiEvent.marker(time, msg.text, track)
    if msg.type == "track_name":
        return MidiEvent(
            time, EventType.META, track=track, meta_type=MetaType.TRACK_NAME, text=msg.name
        )
    return None


def _message_from_event(event: MidiEvent) -> Union[mido.Message, mido.MetaMessage, None]:
    if event.event_type == EventType.NOTE_ON:
        return mido.Message(
            "note_on", channel=event.channel, note=event.data1, velocity=event.data2
        )
    if event.event_type == EventType.NOTE_OFF:
        return mido.Message(
            "note_off", channel=event.channel, note=event.data1, velocity=event.data2
        )
    if event.event_type == EventType.CONTROL_CHANGE:
        return mido.Message(
            "control_change", channel=event.channel, control=event.data1, value=event.data2
        )
    if event.event_type == EventType.PROGRAM_CHANGE:
        return mido.Message("program_change", channel=event.channel, program=event.data1)
    if event.event_type == EventType.PITCH_BEND:
        return mido.Message("pitchwheel", channel=event.channel, pitch=event.data2)
    if event.meta_type == MetaType.SET_TEMPO:
        return mido.MetaMessage("set_tempo", tempo=event.tempo)
    if event.meta_type == MetaType.MARKER:
        return mido.MetaMessage("marker", text=event.text or "")
    if event.meta_type == MetaType.TRACK_NAME:
        return mido.MetaMessage("track_name", name=event.text or "")
    return None


class MidiFileReader:
    """
    Reader for standard MIDI files.

    Example:
        sequence = MidiFileReader.read("song.mid")
        print(f"{len(sequence)} events at {sequence.ticks_per_beat} tpb")
    """

    @classmethod
    def read(cls, filepath: Union[str, Path]) -> EventSequence:
        """
        Read a .mid file.

        Args:
            filepath: Path to the MIDI file

        Returns:
            Events with absolute times, tagged with their track index

        Raises:
            FileNotFoundError: If the file does not exist
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        return cls.from_midi_file(mido.MidiFile(filepath))

    @staticmethod
    def from_midi_file(mid: mido.MidiFile) -> EventSequence:
        """Convert an open mido MidiFile."""
        events: List[MidiEvent] = []
        skipped = 0
        for track_index, track in enumerate(mid.tracks):
            time = 0
            for msg in track:
                time += msg.time
                event = _event_from_message(msg, time, track_index)
                if event is None:
                    skipped += 1
                    continue
                events.append(event)

        if skipped:
            logger.debug("Ignored %d unsupported MIDI messages", skipped)

        events.sort(key=lambda e: e.time)
        return EventSequence(events=events, ticks_per_beat=mid.ticks_per_beat)


class MidiFileWriter:
    """
    Writer for standard MIDI files (type 1).

    Example:
        MidiFileWriter.write(sequence, "song.mid")
    """

    @classmethod
    def write(cls, sequence: EventSequence, filepath: Union[str, Path]) -> None:
        """
        Write events to a .mid file.

        Args:
            sequence: Events to write; each event goes to the track its
                track field names
            filepath: Output file path
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        cls.to_midi_file(sequence).save(filepath)

    @staticmethod
    def to_midi_file(sequence: EventSequence) -> mido.MidiFile:
        """Build a mido MidiFile from an event sequence."""
        mid = mido.MidiFile(type=1, ticks_per_beat=sequence.ticks_per_beat)

        by_track: Dict[int, List[MidiEvent]] = {}
        for event in sequence.events:
            by_track.setdefault(event.track, []).append(event)

        for track_index in range(max(by_track, default=-1) + 1):
            track = mido.MidiTrack()
            last = 0
            for event in sorted(by_track.get(track_index, []), key=lambda e: e.time):
                msg = _message_from_event(event)
                if msg is None:
                    continue
                track.append(msg.copy(time=event.time - last))
                last = event.time
            track.append(mido.MetaMessage("end_of_track", time=0))
            mid.tracks.append(track)

        return mid
