"""Music macro text listings."""

from audioseq.formats.mus.writer import MusWriter, mnemonic

__all__ = ["MusWriter", "mnemonic"]
