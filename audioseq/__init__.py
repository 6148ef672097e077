"""
audioseq - Converter for Com music sequences.

Disassembles Com sequence data into a command graph, assembles graphs back
to bytes, and converts between graphs and MIDI-style musical events.
"""

__version__ = "0.1.0"

from audioseq.converters import Dialect, ImportOptions, MidiExporter, MidiImporter
from audioseq.descriptor import Descriptor, list_descriptors, load_descriptor, save_descriptor
from audioseq.formats import ComReader, ComWriter, MidiFileReader, MidiFileWriter
from audioseq.formats.mus import MusWriter
from audioseq.models import EventSequence, MidiEvent, SectionKind, SequenceGraph
from audioseq.session import (
    ConversionSession,
    export_com,
    export_events,
    export_mus,
    import_com,
    import_events,
)
from audioseq.utils.diagnostics import DiagnosticSink, Result, SessionLog

__all__ = [
    "__version__",
    "ComReader",
    "ComWriter",
    "ConversionSession",
    "Descriptor",
    "DiagnosticSink",
    "Dialect",
    "EventSequence",
    "ImportOptions",
    "MidiEvent",
    "MidiExporter",
    "MidiFileReader",
    "MidiFileWriter",
    "MidiImporter",
    "MusWriter",
    "Result",
    "SectionKind",
    "SequenceGraph",
    "SessionLog",
    "export_com",
    "export_events",
    "export_mus",
    "import_com",
    "import_events",
    "list_descriptors",
    "load_descriptor",
    "save_descriptor",
]
