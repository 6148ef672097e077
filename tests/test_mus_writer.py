"""Tests for the music macro text writer."""

from audioseq.converters.midi_export import Dialect
from audioseq.descriptor.model import SectionKind
from audioseq.formats.com.reader import ComReader
from audioseq.formats.mus.writer import MusWriter, mnemonic
from audioseq.utils.diagnostics import Result, SessionLog


def render(descriptor, data, dialect=Dialect.COMMUNITY, entries=None):
    """Disassemble data and return (lines, log) of its listing."""
    log = SessionLog("mus")
    graph = ComReader(descriptor, log).parse_bytes(data, entries)
    text = MusWriter(dialect, log).to_text(graph, name="song")
    return text.splitlines(), log


class TestMnemonic:
    """Test cases for per-dialect mnemonics."""

    def test_dialects(self, descriptor):
        """Test the three spellings of one command."""
        spec = descriptor.by_name("Ptr Channel Header")
        assert mnemonic(Dialect.COMMUNITY, spec) == "ptr_channel_header"
        assert mnemonic(Dialect.MIDI, spec) == "ptr_channel_header"
        assert mnemonic(Dialect.CANON, spec) == "PtrChannelHeader"
        assert mnemonic(Dialect.ZELDARET, spec) == "ptrchannelheader"


class TestMusWriter:
    """Test cases for text listings."""

    def test_song_community(self, descriptor, song_data):
        """Test the listing of a small song."""
        lines, log = render(descriptor, song_data)

        assert log.status == Result.OK
        assert lines[0] == "; song"
        assert "community dialect" in lines[1]
        for expected in [
            "seq:",
            "    ptr_channel_header 0, chn0_0",
            "chn0_0:",
            "    chn_instrument 5",
            "    ptr_track_data 0, trk0_0",
            "trk0_0:",
            "    note 60, 48, 100, 0",
            "    layer_timestamp 24",
            "    note 62, 24, 80, 128",
            "    end_of_data",
        ]:
            assert expected in lines
        assert lines.index("seq:") < lines.index("chn0_0:") < lines.index("trk0_0:")

    def test_song_canon(self, descriptor, song_data):
        """Test CamelCase mnemonics and canon section names."""
        lines, _ = render(descriptor, song_data, Dialect.CANON)
        assert "    PtrChannelHeader 0, Channel0_0" in lines
        assert "Channel0_0:" in lines

    def test_song_zeldaret(self, descriptor, song_data):
        """Test that zeldaret nests layer names under their channel."""
        lines, _ = render(descriptor, song_data, Dialect.ZELDARET)
        assert "    ptrchannelheader 0, chan0_0" in lines
        assert "chan0_0_layer0_0:" in lines

    def test_table_entries_as_labels(self, descriptor, build):
        """Test that dynamic table entries are written as labels."""
        data = build("E3 00 07", "CC 00", "88", "FF", "00 09", "3C 30 64 00 FF")
        lines, log = render(descriptor, data, entries=[(0, SectionKind.CHN)])

        assert log.status == Result.OK
        assert "; not started by the sequence header" in lines
        for expected in [
            "chn_0:",
            "    ptr_dyn_table tbl_1",
            "    set_q 0",
            "    dyn_track_data 0",
            "tbl_1:",
            "    .dw trk_2",
            "trk_2:",
        ]:
            assert expected in lines

    def test_local_label(self, descriptor, build):
        """Test that a jump into the middle of a section gets its own label."""
        lines, _ = render(descriptor, build("FD 10", "FD 20", "F4 FC"))

        assert "seq_cmd1:" in lines
        assert "    jump_relative seq_cmd1" in lines
        assert lines.index("seq:") < lines.index("seq_cmd1:")

    def test_message_and_raw(self, descriptor, build):
        """Test message payloads and unreachable bytes."""
        lines, _ = render(descriptor, build("EE 00 04 FF", "03 41 42 43", "09"))

        assert "    ptr_message msg_1" in lines
        assert "    .message 0x41 0x42 0x43" in lines
        assert "raw_2:" in lines
        assert "    .db 0x09" in lines

    def test_write_file(self, descriptor, song_data, tmp_path):
        """Test writing a listing to disk."""
        graph = ComReader(descriptor).parse_bytes(song_data)
        path = tmp_path / "out" / "song.mus"
        MusWriter.write(graph, path, Dialect.COMMUNITY)

        text = path.read_text(encoding="utf-8")
        assert text.startswith("; song\n")
        assert text.endswith("\n")
