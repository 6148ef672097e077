"""Tests for conversion sessions and diagnostics."""

import threading

from audioseq.converters.midi_export import MidiExporter
from audioseq.descriptor.model import SectionKind
from audioseq.models.event import EventType, MidiEvent
from audioseq.session import (
    ConversionSession,
    export_com,
    export_mus,
    import_com,
    import_events,
)
from audioseq.utils.diagnostics import DiagnosticSink, Result, SessionLog


class TestConversionSession:
    """Test cases for session operations and result codes."""

    def test_round_trip(self, session, channel_and_track_data):
        """Test import then export of binary data."""
        code, graph = session.import_com(channel_and_track_data, [(0, SectionKind.CHN)])
        assert code == 0
        assert len(graph) == 2

        code, data = session.export_com()
        assert code == 0
        assert data == channel_and_track_data

    def test_codes_are_per_operation(self, session, build, song_data):
        """Test that a later clean operation reports 0 after an earlier warning."""
        code, _ = session.import_com(build("FF", "01 02"))
        assert code == 1
        code, _ = session.import_com(song_data)
        assert code == 0
        assert session.log.status == Result.WARNINGS

    def test_fatal_import(self, session, build):
        """Test that a fatal problem gives code 2 and a partial graph."""
        code, graph = session.import_com(build("F0 FF"))
        assert code == 2
        assert graph is not None
        assert "ERROR: " in session.debug_output()

    def test_export_without_graph(self, session):
        """Test exporting before anything was imported."""
        code, data = session.export_com()
        assert code == 2
        assert data == b""
        code, events = session.export_events()
        assert code == 2
        assert len(events) == 0

    def test_unknown_dialect(self, session, song_data):
        """Test that an unknown dialect name is fatal."""
        session.import_com(song_data)
        code, _ = session.export_events(dialect="klingon")
        assert code == 2
        assert "Unknown dialect 'klingon'" in session.debug_output()

    def test_dialect_by_name(self, session, two_part_data):
        """Test selecting a dialect by its value."""
        session.import_com(two_part_data)
        code, events = session.export_events(dialect="community")
        assert code == 0
        assert any(e.text == "tsec1" for e in events.events)

    def test_export_mus(self, session, song_data):
        """Test rendering the last imported graph as text."""
        session.import_com(song_data)
        code, text = session.export_mus(dialect="canon", name="song")
        assert code == 0
        assert text.startswith("; song\n")
        assert "    PtrChannelHeader 0, Channel0_0" in text.splitlines()

    def test_export_mus_errors(self, session, song_data):
        """Test text export without a graph and with an unknown dialect."""
        code, text = session.export_mus()
        assert (code, text) == (2, "")
        session.import_com(song_data)
        code, text = session.export_mus(dialect="klingon")
        assert (code, text) == (2, "")

    def test_import_events(self, session):
        """Test importing a plain event list with option strings."""
        events = [MidiEvent.note_on(0, 0, 60, 100), MidiEvent.note_off(48, 0, 60)]
        code, graph = session.import_events(events, {"loop": "true"})
        assert code == 0
        assert graph.section(0).commands[-1].action.value == "Jump"

        code, sequence = session.export_events()
        assert code == 0
        assert len(sequence.of_type(EventType.NOTE_ON)) == 1

    def test_bad_option_is_a_warning(self, session):
        """Test that a bad option string gives code 1."""
        events = [MidiEvent.note_on(0, 0, 60, 100), MidiEvent.note_off(48, 0, 60)]
        code, _ = session.import_events(events, {"max_layers": "lots"})
        assert code == 1

    def test_internal_error_never_raises(self, session, song_data, monkeypatch):
        """Test that an unexpected exception becomes code 2."""
        session.import_com(song_data)

        def explode(self, graph):
            raise RuntimeError("boom")

        monkeypatch.setattr(MidiExporter, "convert", explode)
        code, events = session.export_events()
        assert code == 2
        assert len(events) == 0
        assert "internal error in export_events: RuntimeError: boom" in session.debug_output()

    def test_internal_string(self, session, song_data):
        """Test the internal-state rendering of the last graph."""
        assert session.internal_string() == ""
        session.import_com(song_data)
        text = session.internal_string()
        assert text.startswith("graph descriptor=audioseq sections=3")
        assert text == session.internal_string()

    def test_debug_output_since_mark(self, session, build, song_data):
        """Test reading only the diagnostics after a marker."""
        session.import_com(build("FF", "01 02"))
        mark = session.log.mark()
        session.import_com(song_data)
        assert "unreachable" not in session.debug_output(mark)
        assert "unreachable" in session.debug_output()


class TestModuleFunctions:
    """Test cases for the one-shot conversion functions."""

    def test_import_and_export(self, song_data):
        """Test the functions return code, value and diagnostics."""
        code, graph, text = import_com(song_data)
        assert code == 0
        assert "Disassembled 21 bytes into 3 sections" in text

        code, data, _ = export_com(graph)
        assert code == 0
        assert data == song_data

    def test_import_events(self):
        """Test event import with an options object."""
        events = [MidiEvent.note_on(0, 0, 60, 100), MidiEvent.note_off(48, 0, 60)]
        code, graph, _ = import_events(events)
        assert code == 0
        assert len(graph) == 3

    def test_export_mus(self, song_data):
        """Test the one-shot text export."""
        _, graph, _ = import_com(song_data)
        code, text, diagnostics = export_mus(graph)
        assert code == 0
        assert "chn0_0:" in text.splitlines()
        assert "community text" in diagnostics


class TestDiagnostics:
    """Test cases for session logs and the shared sink."""

    def test_status(self):
        """Test the worst-severity result code."""
        log = SessionLog("x")
        assert log.status == Result.OK
        log.info("fine")
        mark = log.mark()
        log.warning("hmm")
        assert log.status_since(mark) == Result.WARNINGS
        log.error("bad")
        assert log.status == Result.ERROR
        assert log.text(mark) == "WARNING: hmm\nERROR: bad"

    def test_sink_keeps_blocks_together(self):
        """Test that sessions publishing from many threads never interleave."""
        sink = DiagnosticSink()

        def work(n):
            log = SessionLog(f"session{n}")
            for i in range(50):
                log.info(f"{n}:{i}")
            sink.publish(log)

        threads = [threading.Thread(target=work, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        blocks = sink.blocks
        assert len(blocks) == 8
        for name, lines in blocks:
            n = name[len("session"):]
            assert [text for _, text in lines] == [f"{n}:{i}" for i in range(50)]

    def test_sink_copies_lines(self):
        """Test that logging after publishing does not change the sink."""
        sink = DiagnosticSink()
        log = SessionLog("late")
        log.info("first")
        sink.publish(log)
        log.info("second")
        assert sink.text() == "[late]\nfirst"

    def test_session_publish(self, song_data):
        """Test that a session publishes its lines under its name."""
        sink = DiagnosticSink()
        session = ConversionSession(name="song")
        session.import_com(song_data)
        session.publish(sink)
        name, lines = sink.blocks[0]
        assert name == "song"
        assert lines == session.log.lines
