"""
Conversion sessions.

A ConversionSession owns one descriptor, one diagnostic log and the graph it
last built. Every operation returns a (code, value) pair: code 0 means a clean
conversion, 1 conversion with warnings, 2 a fatal problem. Operations never
raise; the value is a best-effort result even when the code is 2.

Example:
    session = ConversionSession()
    code, graph = session.import_com(data)
    code, events = session.export_events(dialect="community")
    print(session.debug_output())
"""

import logging
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Union

from audioseq.converters.midi_export import Dialect, MidiExporter
from audioseq.converters.midi_import import MidiImporter
from audioseq.converters.options import ImportOptions
from audioseq.descriptor.model import Descriptor
from audioseq.descriptor.presets import load_descriptor
from audioseq.errors import InvariantError
from audioseq.formats.com.reader import ComReader, Entry
from audioseq.formats.com.writer import ComWriter
from audioseq.formats.mus.writer import MusWriter
from audioseq.models.event import EventSequence, MidiEvent
from audioseq.models.graph import SequenceGraph
from audioseq.utils.diagnostics import DiagnosticSink, Result, SessionLog

logger = logging.getLogger(__name__)

Events = Union[EventSequence, Sequence[MidiEvent]]


class ConversionSession:
    """
    One conversion session.

    Attributes:
        descriptor: Instruction set used by every operation
        log: Diagnostic log of the whole session
        graph: Graph built by the last import, used by exports by default
    """

    def __init__(self, descriptor: Optional[Descriptor] = None, name: str = "session"):
        self.descriptor = descriptor or load_descriptor()
        self.log = SessionLog(name)
        self.graph: Optional[SequenceGraph] = None

    def _run(self, what: str, operation: Callable[[], Any], partial: Callable[[], Any]):
        mark = self.log.mark()
        try:
            value = operation()
        except InvariantError as e:
            self.log.error(
                f"internal error in {what}: invariant {e.invariant} violated: {e}", logger
            )
            value = partial()
        except Exception as e:
            logger.debug("Unexpected error in %s", what, exc_info=True)
            self.log.error(f"internal error in {what}: {type(e).__name__}: {e}", logger)
            value = partial()
        return int(self.log.status_since(mark)), value

    def import_com(
        self,
        data: bytes,
        entries: Optional[Sequence[Entry]] = None,
        merge_duplicates: bool = True,
    ) -> Tuple[int, SequenceGraph]:
        """
        Disassemble binary sequence data.

        Args:
            data: Raw sequence data
            entries: Known (address, kind) entry points
            merge_duplicates: Merge structurally identical sections

        Returns:
            (code, graph)
        """
        reader = ComReader(self.descriptor, self.log)

        def operation():
            return reader.parse_bytes(data, entries=entries, merge_duplicates=merge_duplicates)

        code, self.graph = self._run("import_com", operation, lambda: reader.graph)
        return code, self.graph

    def export_com(self, graph: Optional[SequenceGraph] = None) -> Tuple[int, bytes]:
        """
        Assemble a graph (the last imported one by default).

        Returns:
            (code, data)
        """
        graph = self._graph(graph)
        if graph is None:
            return int(Result.ERROR), b""
        writer = ComWriter(self.log)
        return self._run("export_com", lambda: writer.to_bytes(graph), lambda: b"")

    def import_events(
        self,
        events: Events,
        options: Optional[Union[ImportOptions, Mapping[str, str]]] = None,
        ticks_per_beat: Optional[int] = None,
    ) -> Tuple[int, SequenceGraph]:
        """
        Build a graph from musical events.

        Args:
            events: Event sequence, or a list of events
            options: ImportOptions, or option strings by name
            ticks_per_beat: Tick rate of a plain event list (default: the
                descriptor's)

        Returns:
            (code, graph)
        """
        mark = self.log.mark()
        if options is None:
            options = ImportOptions()
        elif not isinstance(options, ImportOptions):
            options = ImportOptions.from_strings(options, self.log)

        if not isinstance(events, EventSequence):
            events = EventSequence(
                events=list(events),
                ticks_per_beat=ticks_per_beat or self.descriptor.ticks_per_beat,
            )

        importer = MidiImporter(self.descriptor, options, self.log)
        _, self.graph = self._run(
            "import_events", lambda: importer.convert(events), lambda: importer.graph
        )
        return int(self.log.status_since(mark)), self.graph

    def export_events(
        self, graph: Optional[SequenceGraph] = None, dialect: Union[Dialect, str] = Dialect.MIDI
    ) -> Tuple[int, EventSequence]:
        """
        Convert a graph (the last imported one by default) to musical events.

        Args:
            graph: Graph to export
            dialect: Naming dialect, as a Dialect or its value

        Returns:
            (code, events)
        """
        empty = EventSequence(ticks_per_beat=self.descriptor.ticks_per_beat)
        graph = self._graph(graph)
        if graph is None:
            return int(Result.ERROR), empty
        dialect = self._dialect(dialect)
        if dialect is None:
            return int(Result.ERROR), empty

        exporter = MidiExporter(dialect, self.log)
        return self._run("export_events", lambda: exporter.convert(graph), lambda: empty)

    def export_mus(
        self,
        graph: Optional[SequenceGraph] = None,
        dialect: Union[Dialect, str] = Dialect.COMMUNITY,
        name: str = "sequence",
    ) -> Tuple[int, str]:
        """
        Render a graph (the last imported one by default) as a text listing.

        Args:
            graph: Graph to render
            dialect: Labelling convention, as a Dialect or its value
            name: Sequence name for the listing header

        Returns:
            (code, text)
        """
        graph = self._graph(graph)
        if graph is None:
            return int(Result.ERROR), ""
        dialect = self._dialect(dialect)
        if dialect is None:
            return int(Result.ERROR), ""

        writer = MusWriter(dialect, self.log)
        return self._run("export_mus", lambda: writer.to_text(graph, name), lambda: "")

    def internal_string(self, graph: Optional[SequenceGraph] = None) -> str:
        """Render the graph (the last imported one by default) for inspection."""
        graph = graph if graph is not None else self.graph
        if graph is None:
            return ""
        return graph.dump()

    def debug_output(self, since: int = 0) -> str:
        """Get the diagnostic text logged so far."""
        return self.log.text(since)

    def publish(self, sink: DiagnosticSink) -> None:
        """Hand the session's diagnostics to a shared sink."""
        sink.publish(self.log)

    def _graph(self, graph: Optional[SequenceGraph]) -> Optional[SequenceGraph]:
        if graph is not None:
            return graph
        if self.graph is None:
            self.log.error("No graph to export; import something first", logger)
        return self.graph

    def _dialect(self, dialect: Union[Dialect, str]) -> Optional[Dialect]:
        try:
            return Dialect(dialect)
        except ValueError:
            self.log.error(f"Unknown dialect '{dialect}'", logger)
            return None


# Convenience functions, one session per call


def import_com(
    data: bytes, descriptor: Optional[Descriptor] = None, **kwargs
) -> Tuple[int, SequenceGraph, str]:
    """
    Disassemble data in a fresh session.

    Returns:
        (code, graph, diagnostics)
    """
    session = ConversionSession(descriptor, name="import_com")
    code, graph = session.import_com(data, **kwargs)
    return code, graph, session.debug_output()


def export_com(graph: SequenceGraph) -> Tuple[int, bytes, str]:
    """
    Assemble a graph in a fresh session.

    Returns:
        (code, data, diagnostics)
    """
    session = ConversionSession(graph.descriptor, name="export_com")
    code, data = session.export_com(graph)
    return code, data, session.debug_output()


def import_events(
    events: Events,
    options: Optional[Union[ImportOptions, Mapping[str, str]]] = None,
    descriptor: Optional[Descriptor] = None,
) -> Tuple[int, SequenceGraph, str]:
    """
    Import musical events in a fresh session.

    Returns:
        (code, graph, diagnostics)
    """
    session = ConversionSession(descriptor, name="import_events")
    code, graph = session.import_events(events, options)
    return code, graph, session.debug_output()


def export_events(
    graph: SequenceGraph, dialect: Union[Dialect, str] = Dialect.MIDI
) -> Tuple[int, EventSequence, str]:
    """
    Export a graph to musical events in a fresh session.

    Returns:
        (code, events, diagnostics)
    """
    session = ConversionSession(graph.descriptor, name="export_events")
    code, events = session.export_events(graph, dialect)
    return code, events, session.debug_output()


def export_mus(
    graph: SequenceGraph, dialect: Union[Dialect, str] = Dialect.COMMUNITY, name: str = "sequence"
) -> Tuple[int, str, str]:
    """
    Render a graph as a text listing in a fresh session.

    Returns:
        (code, text, diagnostics)
    """
    session = ConversionSession(graph.descriptor, name="export_mus")
    code, text = session.export_mus(graph, dialect, name)
    return code, text, session.debug_output()
