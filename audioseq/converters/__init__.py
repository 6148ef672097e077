"""Converters between command graphs and musical events."""

from audioseq.converters.midi_export import Dialect, MidiExporter
from audioseq.converters.midi_import import MidiImporter, ensure_simul_msgs_in_order
from audioseq.converters.options import ImportOptions

__all__ = [
    "Dialect",
    "MidiExporter",
    "MidiImporter",
    "ensure_simul_msgs_in_order",
    "ImportOptions",
]
