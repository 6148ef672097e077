"""Data models for the command graph and musical events."""

from audioseq.models.command import (
    Command,
    DelayCommand,
    EnvelopePoint,
    IndexCommand,
    MessageData,
    NoteCommand,
    PointerCommand,
    RawData,
    TableEntry,
    Target,
    ValueCommand,
    new_command,
)
from audioseq.models.event import EventSequence, EventType, MetaType, MidiEvent
from audioseq.models.graph import Reference, SequenceGraph
from audioseq.models.section import Section, SectionKind

__all__ = [
    "Command",
    "DelayCommand",
    "EnvelopePoint",
    "IndexCommand",
    "MessageData",
    "NoteCommand",
    "PointerCommand",
    "RawData",
    "TableEntry",
    "Target",
    "ValueCommand",
    "new_command",
    "EventSequence",
    "EventType",
    "MetaType",
    "MidiEvent",
    "Reference",
    "SequenceGraph",
    "Section",
    "SectionKind",
]
