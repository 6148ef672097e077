"""Format handlers for Com sequences and standard MIDI files."""

from audioseq.formats.com import ComReader, ComWriter
from audioseq.formats.midi import MidiFileReader, MidiFileWriter

__all__ = ["ComReader", "ComWriter", "MidiFileReader", "MidiFileWriter"]
