"""
Musical event data models.

Events carry absolute times in ticks; the tick resolution belongs to the
sequence they are part of (see EventSequence.ticks_per_beat).
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

# Controller numbers beyond the MIDI range used for non-controller messages
CC_PITCH_BEND = 128
CC_PROGRAM = 129


class EventType(IntEnum):
    """MIDI event types."""

    NOTE_OFF = 0x80
    NOTE_ON = 0x90
    CONTROL_CHANGE = 0xB0
    PROGRAM_CHANGE = 0xC0
    PITCH_BEND = 0xE0
    META = 0xFF


class MetaType(IntEnum):
    """Meta event types used by the converters."""

    TRACK_NAME = 0x03
    MARKER = 0x06
    END_OF_TRACK = 0x2F
    SET_TEMPO = 0x51


@dataclass
class MidiEvent:
    """
    A single musical event.

    Attributes:
        time: Absolute time in ticks
        event_type: Type of MIDI event
        channel: MIDI channel (0-15 for channel messages)
        data1: First data byte (note number, CC number, program)
        data2: Second data byte (velocity, CC value); signed 14-bit value
            for pitch bend
        track: Index of the input/output track the event belongs to
        meta_type: Meta event type for META events
        tempo: Microseconds per beat for tempo meta events
        text: Text for name and marker meta events
    """

    time: int
    event_type: EventType
    channel: int = 0
    data1: int = 0
    data2: int = 0
    track: int = 0
    meta_type: Optional[MetaType] = None
    tempo: Optional[int] = None
    text: Optional[str] = None

    @property
    def is_note_on(self) -> bool:
        """Check if this is a note-on event with velocity > 0."""
        return self.event_type == EventType.NOTE_ON and self.data2 > 0

    @property
    def is_note_off(self) -> bool:
        """Check if this is a note-off event (or note-on with velocity 0)."""
        return self.event_type == EventType.NOTE_OFF or (
            self.event_type == EventType.NOTE_ON and self.data2 == 0
        )

    @property
    def is_tempo(self) -> bool:
        return self.event_type == EventType.META and self.meta_type == MetaType.SET_TEMPO

    @property
    def note(self) -> int:
        """Get note number for note events."""
        return self.data1

    @property
    def velocity(self) -> int:
        """Get velocity for note events."""
        return self.data2

    @property
    def controller(self) -> Optional[int]:
        """
        Get the extended controller number of a controller-like event.

        Control changes use their own number; pitch bend is 128 and program
        change is 129.

        Returns:
            Controller number, or None for other events
        """
        if self.event_type == EventType.CONTROL_CHANGE:
            return self.data1
        if self.event_type == EventType.PITCH_BEND:
            return CC_PITCH_BEND
        if self.event_type == EventType.PROGRAM_CHANGE:
            return CC_PROGRAM
        return None

    @property
    def controller_value(self) -> Optional[int]:
        """Get the value of a controller-like event, in command units."""
        if self.event_type == EventType.CONTROL_CHANGE:
            return self.data2
        if self.event_type == EventType.PITCH_BEND:
            return self.data2 >> 6
        if self.event_type == EventType.PROGRAM_CHANGE:
            return self.data1
        return None

    @property
    def bpm(self) -> Optional[float]:
        """Get beats per minute of a tempo event."""
        if not self.is_tempo or not self.tempo:
            return None
        return 60_000_000 / self.tempo

    @classmethod
    def note_on(
        cls, time: int, channel: int, note: int, velocity: int, track: int = 0
    ) -> "MidiEvent":
        """Create a note-on event."""
        return cls(time, EventType.NOTE_ON, channel, note, velocity, track)

    @classmethod
    def note_off(cls, time: int, channel: int, note: int, track: int = 0) -> "MidiEvent":
        """Create a note-off event."""
        return cls(time, EventType.NOTE_OFF, channel, note, 0, track)

    @classmethod
    def control_change(
        cls, time: int, channel: int, cc: int, value: int, track: int = 0
    ) -> "MidiEvent":
        """Create a control change event."""
        return cls(time, EventType.CONTROL_CHANGE, channel, cc, value, track)

    @classmethod
    def program_change(cls, time: int, channel: int, program: int, track: int = 0) -> "MidiEvent":
        """Create a program change event."""
        return cls(time, EventType.PROGRAM_CHANGE, channel, program, 0, track)

    @classmethod
    def pitch_bend(cls, time: int, channel: int, value: int, track: int = 0) -> "MidiEvent":
        """Create a pitch bend event (value -8192..8191)."""
        return cls(time, EventType.PITCH_BEND, channel, 0, value, track)

    @classmethod
    def set_tempo(cls, time: int, tempo: int, track: int = 0) -> "MidiEvent":
        """Create a tempo meta event (microseconds per beat)."""
        return cls(time, EventType.META, track=track, meta_type=MetaType.SET_TEMPO, tempo=tempo)

    @classmethod
    def marker(cls, time: int, text: str, track: int = 0) -> "MidiEvent":
        """Create a marker meta event."""
        return cls(time, EventType.META, track=track, meta_type=MetaType.MARKER, text=text)

    @classmethod
    def track_name(cls, text: str, track: int = 0) -> "MidiEvent":
        """Create a track name meta event at time 0."""
        return cls(0, EventType.META, track=track, meta_type=MetaType.TRACK_NAME, text=text)


@dataclass
class EventSequence:
    """
    An ordered sequence of timestamped events.

    Attributes:
        events: Events, ordered by time
        ticks_per_beat: Tick resolution of the event times
    """

    events: List[MidiEvent] = field(default_factory=list)
    ticks_per_beat: int = 480

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):
        return iter(self.events)

    @property
    def length_ticks(self) -> int:
        """Get the time of the last event."""
        return max((e.time for e in self.events), default=0)

    @property
    def channels(self) -> List[int]:
        """Get the channels used by channel messages."""
        return sorted({e.channel for e in self.events if e.event_type != EventType.META})

    def of_type(self, event_type: EventType) -> List[MidiEvent]:
        return [e for e in self.events if e.event_type == event_type]
