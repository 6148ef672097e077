"""Tests for MIDI event import."""

from audioseq.converters.midi_import import MidiImporter, ensure_simul_msgs_in_order
from audioseq.converters.options import ImportOptions
from audioseq.descriptor.model import Action, SectionKind
from audioseq.models.command import NoteCommand, Target
from audioseq.models.event import EventSequence, MidiEvent
from audioseq.utils.diagnostics import Result, SessionLog


def import_events(descriptor, events, ticks_per_beat=48, **options):
    """Import events and return (graph, log)."""
    log = SessionLog("import")
    importer = MidiImporter(descriptor, ImportOptions(**options), log)
    graph = importer.convert(EventSequence(events=list(events), ticks_per_beat=ticks_per_beat))
    return graph, log


def actions(section):
    return [command.action for command in section.commands]


def one_note(length=48):
    return [MidiEvent.note_on(0, 0, 60, 100), MidiEvent.note_off(length, 0, 60)]


class TestMidiImportStructure:
    """Test cases for the generated sections."""

    def test_single_note(self, descriptor):
        """Test the sequence, channel and track built for one note."""
        events = one_note() + [MidiEvent.control_change(0, 0, 7, 200)]
        graph, log = import_events(descriptor, events)

        assert log.status == Result.WARNINGS
        assert "outside 0..127, dropped" in log.text()
        kinds = [s.kind for s in graph.sections]
        assert kinds == [SectionKind.SEQ, SectionKind.CHN, SectionKind.TRK]

        seq, chn, trk = graph.sections
        assert actions(seq) == [
            Action.MASTER_VOLUME,
            Action.CHANNEL_ENABLE,
            Action.TEMPO,
            Action.PTR_CHANNEL_HEADER,
            Action.TIMESTAMP,
            Action.END,
        ]
        assert seq.commands[0].value == 0x58
        assert seq.commands[1].value == 1
        assert seq.commands[2].value == 120
        assert seq.commands[3].target == Target(1, 0)
        assert seq.commands[4].delay == 48

        assert actions(chn) == [Action.PTR_TRACK_DATA, Action.TIMESTAMP, Action.END]
        assert chn.commands[0].target == Target(2, 0)

        note = trk.commands[0]
        assert isinstance(note, NoteCommand)
        assert (note.note, note.delay, note.velocity, note.gate) == (60, 48, 100, 0)
        assert actions(trk) == [Action.NOTE, Action.END]

    def test_rescaled_ticks(self, descriptor):
        """Test that input at another tick rate is rescaled."""
        events = [MidiEvent.note_on(0, 0, 60, 100), MidiEvent.note_off(960, 0, 60)]
        graph, _ = import_events(descriptor, events, ticks_per_beat=480)
        assert graph.sections_of(SectionKind.TRK)[0].commands[0].delay == 96

    def test_tempo_changes(self, descriptor):
        """Test an initial tempo and a later change."""
        events = one_note() + [
            MidiEvent.set_tempo(0, 600_000),
            MidiEvent.set_tempo(96, 400_000),
        ]
        graph, log = import_events(descriptor, events)

        assert log.status == Result.OK
        seq = graph.section(0)
        tempos = [c.value for c in seq.commands if c.action == Action.TEMPO]
        assert tempos == [100, 150]
        assert seq.ticks == 96

    def test_loop(self, descriptor):
        """Test that the loop option ends the header with a jump to its start."""
        graph, _ = import_events(descriptor, one_note(), loop=True)
        last = graph.section(0).commands[-1]
        assert last.action == Action.JUMP
        assert last.target == Target(0, 0)

    def test_controller_commands(self, descriptor):
        """Test program change and pitch bend import."""
        events = one_note() + [
            MidiEvent.program_change(0, 0, 5),
            MidiEvent.pitch_bend(24, 0, -8192),
        ]
        graph, log = import_events(descriptor, events)

        assert log.status == Result.OK
        chn = graph.sections_of(SectionKind.CHN)[0]
        assert actions(chn) == [
            Action.PTR_TRACK_DATA,
            Action.CHN_INSTRUMENT,
            Action.TIMESTAMP,
            Action.CHN_PITCH_BEND,
            Action.TIMESTAMP,
            Action.END,
        ]
        assert chn.commands[1].value == 5
        assert chn.commands[3].value == -128

    def test_unsupported_controller_dropped(self, descriptor):
        """Test that a controller with no command is dropped with a warning."""
        events = one_note() + [MidiEvent.control_change(0, 0, 64, 127)]
        _, log = import_events(descriptor, events)
        assert log.status == Result.WARNINGS
        assert "controller 64" in log.text()

    def test_hanging_note_ended(self, descriptor):
        """Test that a note without a note-off ends at the last event."""
        events = [
            MidiEvent.note_on(0, 0, 60, 100),
            MidiEvent.note_on(24, 0, 62, 100),
            MidiEvent.note_off(48, 0, 62),
        ]
        graph, log = import_events(descriptor, events)
        assert log.status == Result.WARNINGS
        assert "never ends" in log.text()
        assert len(graph.sections_of(SectionKind.TRK)) == 2


class TestMidiImportLayers:
    """Test cases for polyphony."""

    def test_chord_uses_layers(self, descriptor):
        """Test that simultaneous notes go to separate layers."""
        events = [
            MidiEvent.note_on(0, 0, 60, 100),
            MidiEvent.note_on(0, 0, 64, 100),
            MidiEvent.note_off(48, 0, 60),
            MidiEvent.note_off(48, 0, 64),
        ]
        graph, _ = import_events(descriptor, events)
        chn = graph.sections_of(SectionKind.CHN)[0]
        layers = [c.index for c in chn.commands if c.action == Action.PTR_TRACK_DATA]
        assert layers == [0, 1]

    def test_too_many_layers(self, descriptor):
        """Test that notes beyond max_layers are dropped with a warning."""
        events = [
            MidiEvent.note_on(0, 0, 60, 100),
            MidiEvent.note_on(0, 0, 64, 100),
            MidiEvent.note_off(48, 0, 60),
            MidiEvent.note_off(48, 0, 64),
        ]
        graph, log = import_events(descriptor, events, max_layers=1)
        assert log.status == Result.WARNINGS
        assert "more than 1 simultaneous notes" in log.text()
        trk = graph.sections_of(SectionKind.TRK)[0]
        assert [c.note for c in trk.commands if isinstance(c, NoteCommand)] == [60]

    def test_identical_channels_share_sections(self, descriptor):
        """Test that two channels playing the same part share one channel header."""
        events = one_note() + [MidiEvent.note_on(0, 1, 60, 100), MidiEvent.note_off(48, 1, 60)]
        graph, _ = import_events(descriptor, events)

        assert len(graph.sections_of(SectionKind.CHN)) == 1
        assert len(graph.sections_of(SectionKind.TRK)) == 1
        pointers = [c for c in graph.section(0).commands if c.action == Action.PTR_CHANNEL_HEADER]
        assert [p.index for p in pointers] == [0, 1]
        assert pointers[0].target == pointers[1].target


class TestMidiImportOptimization:
    """Test cases for the optimization passes."""

    def test_repeated_controller_merged(self, descriptor):
        """Test that a repeated controller value is dropped and timestamps joined."""
        events = one_note() + [
            MidiEvent.control_change(0, 0, 7, 100),
            MidiEvent.control_change(24, 0, 7, 100),
        ]
        graph, _ = import_events(descriptor, events)
        chn = graph.sections_of(SectionKind.CHN)[0]
        assert actions(chn) == [
            Action.PTR_TRACK_DATA,
            Action.CHN_VOLUME,
            Action.TIMESTAMP,
            Action.END,
        ]
        assert chn.commands[2].delay == 48

    def test_tolerant_merge(self, descriptor):
        """Test merging of nearby controller values within the tolerance."""
        events = one_note() + [
            MidiEvent.control_change(0, 0, 7, 100),
            MidiEvent.control_change(12, 0, 7, 101),
        ]
        graph, _ = import_events(descriptor, events, cc_tolerance=2, merge_window=24)
        chn = graph.sections_of(SectionKind.CHN)[0]
        volumes = [c.value for c in chn.commands if c.action == Action.CHN_VOLUME]
        assert volumes == [100]

    def test_no_tolerant_merge_by_default(self, descriptor):
        """Test that differing values are kept with default options."""
        events = one_note() + [
            MidiEvent.control_change(0, 0, 7, 100),
            MidiEvent.control_change(12, 0, 7, 101),
        ]
        graph, _ = import_events(descriptor, events)
        chn = graph.sections_of(SectionKind.CHN)[0]
        volumes = [c.value for c in chn.commands if c.action == Action.CHN_VOLUME]
        assert volumes == [100, 101]

    def test_zero_length_note_dropped(self, descriptor):
        """Test that a note rescaled to no length is removed with its layer."""
        events = [
            MidiEvent.note_on(0, 0, 60, 100),
            MidiEvent.note_on(0, 0, 64, 100),
            MidiEvent.note_off(4, 0, 64),
            MidiEvent.note_off(480, 0, 60),
        ]
        graph, _ = import_events(descriptor, events, ticks_per_beat=480)
        assert len(graph.sections_of(SectionKind.TRK)) == 1
        chn = graph.sections_of(SectionKind.CHN)[0]
        assert [c.index for c in chn.commands if c.action == Action.PTR_TRACK_DATA] == [0]
        assert graph.check_references() == []


class TestMidiImportDeterminism:
    """Test cases for input-order independence."""

    def test_simultaneous_order(self):
        """Test the ordering of events sharing a timestamp."""
        events = [
            MidiEvent.note_on(0, 0, 60, 100),
            MidiEvent.control_change(0, 0, 7, 100),
            MidiEvent.set_tempo(0, 500_000),
            MidiEvent.note_off(0, 0, 62),
        ]
        ordered = ensure_simul_msgs_in_order(events)
        assert [e.event_type.name for e in ordered] == [
            "NOTE_OFF",
            "META",
            "CONTROL_CHANGE",
            "NOTE_ON",
        ]

    def test_track_order_does_not_matter(self, descriptor):
        """Test that the same events split over tracks in another order give the same graph."""
        first = [
            MidiEvent.note_on(0, 0, 60, 100, track=1),
            MidiEvent.note_off(48, 0, 60, track=1),
            MidiEvent.note_on(0, 1, 67, 90, track=2),
            MidiEvent.note_off(24, 1, 67, track=2),
            MidiEvent.control_change(0, 1, 10, 30, track=2),
        ]
        second = [
            MidiEvent.control_change(0, 1, 10, 30, track=1),
            MidiEvent.note_on(0, 1, 67, 90, track=1),
            MidiEvent.note_off(24, 1, 67, track=1),
            MidiEvent.note_on(0, 0, 60, 100, track=2),
            MidiEvent.note_off(48, 0, 60, track=2),
        ]
        graph_a, _ = import_events(descriptor, first)
        graph_b, _ = import_events(descriptor, second)
        assert graph_a.dump() == graph_b.dump()
