"""Test configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from audioseq.descriptor.presets import load_descriptor
from audioseq.session import ConversionSession


def hexbytes(*parts: str) -> bytes:
    """Build a buffer from hex strings ("90 00 10", "FF")."""
    return bytes.fromhex(" ".join(parts))


@pytest.fixture
def descriptor():
    """Return the built-in default descriptor."""
    return load_descriptor()


@pytest.fixture
def session(descriptor):
    """Return a fresh conversion session."""
    return ConversionSession(descriptor, name="test")


@pytest.fixture
def build():
    """Return the hex buffer builder."""
    return hexbytes


@pytest.fixture
def channel_and_track_data():
    """
    Channel header at 0x00 pointing its layer 0 at a track at 0x10.

    chn: Ptr Track Data 0 -> 0x10, six Chn Volume 127, End
    trk: Note 60 delay 48 velocity 100, End
    """
    return hexbytes("90 00 10", "DF 7F " * 6, "FF", "3C 30 64 00", "FF")


@pytest.fixture
def self_loop_data():
    """Sequence header that waits 16 ticks and jumps back to its start."""
    return hexbytes("FD 10", "FB 00 00")


@pytest.fixture
def duplicate_channels_data():
    """
    Sequence header starting two identical channel headers.

    seq: Ptr Channel Header 0 -> 0x09, 1 -> 0x0C, Timestamp 48, End
    chn (x2): Chn Volume 100, End
    """
    return hexbytes("90 00 09", "91 00 0C", "FD 30", "FF", "DF 64 FF", "DF 64 FF")


@pytest.fixture
def song_data():
    """
    A small playable song.

    seq: Ptr Channel Header 0 -> 0x04, End
    chn @0x04: Chn Instrument 5, Ptr Track Data 0 -> 0x0A, End
    trk @0x0A: Note 60 delay 48 vel 100, Layer Timestamp 24,
               Note 62 delay 24 vel 80 gate 0x80, End
    """
    return hexbytes(
        "90 00 04",
        "FF",
        "C1 05",
        "90 00 0A",
        "FF",
        "3C 30 64 00",
        "C0 18",
        "3E 18 50 80",
        "FF",
    )


@pytest.fixture
def two_part_data():
    """
    Sequence header starting channel 0 twice, 48 ticks apart.

    seq: Ptr Channel Header 0 -> 0x0B, Timestamp 48,
         Ptr Channel Header 0 -> 0x0E, Timestamp 48, End
    chn @0x0B: Chn Volume 100, End
    chn @0x0E: Chn Pan 64, End
    """
    return hexbytes("90 00 0B", "FD 30", "90 00 0E", "FD 30", "FF", "DF 64 FF", "DC 40 FF")
