"""Standard MIDI file support."""

from audioseq.formats.midi.midi_file import MidiFileReader, MidiFileWriter

__all__ = ["MidiFileReader", "MidiFileWriter"]
