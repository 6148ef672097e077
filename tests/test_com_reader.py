"""Tests for the Com disassembler."""

import pytest

from audioseq.descriptor.model import Action, Descriptor, SectionKind
from audioseq.formats.com.reader import ComReader
from audioseq.formats.com.writer import ComWriter
from audioseq.models.command import Target
from audioseq.utils.diagnostics import Result, SessionLog


def disassemble(descriptor, data, entries=None, **kwargs):
    """Disassemble data and return (graph, log)."""
    log = SessionLog("reader")
    graph = ComReader(descriptor, log).parse_bytes(data, entries, **kwargs)
    return graph, log


class TestComReaderBasics:
    """Test cases for section discovery."""

    def test_channel_and_track(self, descriptor, channel_and_track_data):
        """Test a channel header pointing at one track."""
        graph, log = disassemble(descriptor, channel_and_track_data, [(0, SectionKind.CHN)])

        assert log.status == Result.OK
        assert [s.kind for s in graph.sections] == [SectionKind.CHN, SectionKind.TRK]
        assert len(list(graph.references())) == 1

        chn, trk = graph.sections
        assert chn.commands[0].action == Action.PTR_TRACK_DATA
        assert chn.commands[0].target == Target(1, 0)
        assert len(chn.commands) == 8
        assert trk.address == 0x10
        note = trk.commands[0]
        assert (note.note, note.delay, note.velocity, note.gate) == (60, 48, 100, 0)

    def test_self_loop(self, descriptor, self_loop_data):
        """Test that a jump back into the section being decoded resolves."""
        graph, log = disassemble(descriptor, self_loop_data)

        assert log.status == Result.OK
        assert len(graph) == 1
        jump = graph.section(0).commands[1]
        assert jump.action == Action.JUMP
        assert jump.target == Target(0, 0)

    def test_relative_jump(self, descriptor, build):
        """Test that a relative jump resolves against the end of the command."""
        data = build("FD 10", "F4 FC")
        graph, log = disassemble(descriptor, data)

        assert log.status == Result.OK
        assert len(graph) == 1
        jump = graph.section(0).commands[1]
        assert jump.action == Action.JUMP_RELATIVE
        assert jump.target == Target(0, 0)
        assert ComWriter().to_bytes(graph) == data

    def test_duplicates_merged(self, descriptor, duplicate_channels_data):
        """Test that identical channel headers collapse into one."""
        graph, log = disassemble(descriptor, duplicate_channels_data)

        assert log.status == Result.OK
        assert len(graph) == 2
        seq = graph.section(0)
        assert seq.commands[0].target == Target(1, 0)
        assert seq.commands[1].target == Target(1, 0)

    def test_duplicates_kept_on_request(self, descriptor, duplicate_channels_data):
        """Test disassembly without merging."""
        graph, _ = disassemble(descriptor, duplicate_channels_data, merge_duplicates=False)
        assert len(graph) == 3

    def test_addresses_recorded(self, descriptor, song_data):
        """Test section and command addresses of a decoded buffer."""
        graph, _ = disassemble(descriptor, song_data)

        assert [(s.address, s.address_end) for s in graph.sections] == [(0, 4), (4, 10), (10, 21)]
        trk = graph.section(2)
        assert [c.address for c in trk.commands] == [10, 14, 16, 20]
        assert trk.ticks == 48 + 24 + 24

    def test_wide_delay_flagged(self, descriptor, build):
        """Test that a small delay stored in two bytes is remembered."""
        graph, _ = disassemble(descriptor, build("FD 80 10 FF"))
        timestamp = graph.section(0).commands[0]
        assert timestamp.delay == 0x10
        assert timestamp.force_wide


class TestComReaderDataSections:
    """Test cases for tables, envelopes and messages."""

    def test_dyn_table(self, descriptor, build):
        """Test that a dynamic table's entries become track references."""
        data = build("E3 00 07", "CC 00", "88", "FF", "00 09", "3C 30 64 00 FF")
        graph, log = disassemble(descriptor, data, [(0, SectionKind.CHN)])

        assert log.status == Result.OK
        kinds = [s.kind for s in graph.sections]
        assert kinds == [SectionKind.CHN, SectionKind.DYN_TABLE, SectionKind.TRK]
        table = graph.section(1)
        assert table.element_kind == SectionKind.TRK
        assert len(table.commands) == 1
        assert table.commands[0].target == Target(2, 0)

    def test_envelope(self, descriptor, build):
        """Test that an envelope ends at its terminating point."""
        data = build("DA 00 04 FF", "00 10 00 20", "00 00 00 00")
        graph, log = disassemble(descriptor, data, [(0, SectionKind.CHN)])

        assert log.status == Result.OK
        envelope = graph.section(1)
        assert envelope.kind == SectionKind.ENVELOPE
        assert [(p.delay, p.arg) for p in envelope.commands] == [(16, 32), (0, 0)]

    def test_message(self, descriptor, build):
        """Test a length-prefixed message."""
        graph, log = disassemble(descriptor, build("EE 00 04 FF", "03 41 42 43"))

        assert log.status == Result.OK
        message = graph.section(1)
        assert message.kind == SectionKind.MESSAGE
        assert message.commands[0].payload == b"ABC"

    def test_value_table(self, descriptor, build):
        """Test that a value table takes its size from the pointer's count."""
        data = build("EF 03 00 05", "FF", "01 02 03")
        graph, log = disassemble(descriptor, data, [(0, SectionKind.CHN)])

        assert log.status == Result.OK
        table = graph.section(1)
        assert table.kind == SectionKind.VALUE_TABLE
        assert [entry.value for entry in table.commands] == [1, 2, 3]

    def test_dyn_table_truncated_by_its_own_entry(self, descriptor, build):
        """Test that an entry pointing inside the table shortens it and restarts."""
        data = build("E3 00 07", "CC 00", "88", "FF", "00 09", "00 05 64 00", "FF")
        graph, log = disassemble(descriptor, data, [(0, SectionKind.CHN)])

        assert log.status == Result.OK
        assert "restart" in log.text()
        table = graph.section(1)
        assert table.kind == SectionKind.DYN_TABLE
        assert (table.address, table.address_end) == (7, 9)
        assert len(table.commands) == 1
        assert graph.section(2).kind == SectionKind.TRK
        assert ComWriter().to_bytes(graph) == data

    def test_dyn_table_without_user(self, descriptor, build):
        """Test that a table no command uses keeps raw values with a warning."""
        data = build("E3 00 04", "FF", "00 02 00 03")
        graph, log = disassemble(descriptor, data, [(0, SectionKind.CHN)])

        assert log.status == Result.WARNINGS
        assert "no command uses the table" in log.text()
        table = graph.section(1)
        assert table.element_kind is None
        assert [entry.value for entry in table.commands] == [2, 3]
        assert all(entry.target is None for entry in table.commands)
        assert ComWriter().to_bytes(graph) == data

    def test_terminated_message(self, descriptor, build):
        """Test a message ended by the descriptor's sentinel byte."""
        document = descriptor.to_dict()
        document["message_terminator"] = 0
        terminated = Descriptor.from_dict(document)
        data = build("EE 00 04 FF", "41 42 43 00")

        graph, log = disassemble(terminated, data)

        assert log.status == Result.OK
        message = graph.section(1)
        assert message.commands[0].payload == b"ABC"
        assert (message.address, message.address_end) == (4, 8)
        assert ComWriter().to_bytes(graph) == data

    def test_empty_value_table_rejected(self, descriptor, build):
        """Test that a value table pointer with count 0 is a decode error."""
        _, log = disassemble(descriptor, build("EF 00 00 05", "FF", "01"), [(0, SectionKind.CHN)])
        assert log.status == Result.ERROR
        assert "empty value table" in log.text()
        assert "unresolved reference" not in log.text()


class TestComReaderProblems:
    """Test cases for malformed input."""

    def test_empty_input(self, descriptor):
        """Test that empty input is fatal."""
        graph, log = disassemble(descriptor, b"")
        assert log.status == Result.ERROR
        assert len(graph) == 0

    def test_unreachable_bytes(self, descriptor, build):
        """Test that bytes nothing refers to are kept as raw data."""
        graph, log = disassemble(descriptor, build("FF", "01 02"))

        assert log.status == Result.WARNINGS
        raw = graph.section(1)
        assert raw.kind == SectionKind.RAW
        assert raw.commands[0].payload == b"\x01\x02"
        assert "unreachable" in log.text()

    def test_unknown_opcode(self, descriptor, build):
        """Test that an unknown opcode is fatal."""
        _, log = disassemble(descriptor, build("F0 FF"))
        assert log.status == Result.ERROR
        assert "Unknown opcode 0xF0" in log.text()

    def test_reference_outside_data(self, descriptor, build):
        """Test that a call past the end of data is fatal."""
        _, log = disassemble(descriptor, build("FC 01 00", "FF"))
        assert log.status == Result.ERROR
        assert "outside the data" in log.text()

    def test_truncated_command(self, descriptor, build):
        """Test that a command cut off by the end of data is fatal."""
        _, log = disassemble(descriptor, build("DD"))
        assert log.status == Result.ERROR
        assert "runs past end of data" in log.text()

    def test_recursive_call(self, descriptor, build):
        """Test that a section calling into itself is fatal."""
        _, log = disassemble(descriptor, build("FC 00 00", "FF"))
        assert log.status == Result.ERROR
        assert "Recursive call into seq@0x0000" in log.text()

    def test_conflicting_kinds(self, descriptor, build):
        """Test that one address referenced as two kinds is fatal."""
        _, log = disassemble(descriptor, build("EE 00 07", "90 00 07", "FF", "01 FF"))
        assert log.status == Result.ERROR
        assert "0x0007 is referenced as Channel Header" in log.text()
        assert "but also as Message" in log.text()

    def test_missing_file(self, descriptor, tmp_path):
        """Test reading a file that does not exist."""
        with pytest.raises(FileNotFoundError):
            ComReader.read(tmp_path / "missing.seq", descriptor)
