"""
Rich table displays for sequence information.

Provides formatted output for command graphs, event sequences, descriptors
and conversion diagnostics.
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from audioseq.descriptor.model import Descriptor, SectionKind
from audioseq.models.event import EventSequence, EventType
from audioseq.models.graph import SequenceGraph
from audioseq.utils.diagnostics import Result, SessionLog, Severity

console = Console()

KIND_COLORS = {
    SectionKind.SEQ: "bright_blue",
    SectionKind.CHN: "green",
    SectionKind.TRK: "cyan",
    SectionKind.DYN_TABLE: "magenta",
    SectionKind.VALUE_TABLE: "magenta",
    SectionKind.ENVELOPE: "yellow",
    SectionKind.MESSAGE: "yellow",
    SectionKind.RAW: "dim",
}

SEVERITY_STYLES = {
    Severity.INFO: "dim",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}


def result_text(code: int) -> str:
    """Render a result code as colored markup."""
    if code == Result.OK:
        return "[green]OK[/green]"
    if code == Result.WARNINGS:
        return "[yellow]Converted with warnings[/yellow]"
    return "[red]Failed[/red]"


def display_graph_info(
    graph: SequenceGraph, title: str, size: Optional[int] = None, code: Optional[int] = None
) -> None:
    """Display a summary panel and the section table of a graph."""
    counts = {}
    for section in graph.sections:
        counts[section.kind] = counts.get(section.kind, 0) + 1
    references = sum(1 for _ in graph.references())

    lines = [f"[bold]Descriptor:[/bold] {graph.descriptor.name}"]
    if size is not None:
        lines.append(f"[bold]Size:[/bold] {size} bytes")
    lines.append(f"[bold]Sections:[/bold] {len(graph)}")
    lines.append(
        "[bold]Kinds:[/bold] "
        + ", ".join(f"{kind.display_name} x{n}" for kind, n in counts.items())
    )
    lines.append(f"[bold]References:[/bold] {references}")
    if code is not None:
        lines.append(f"[bold]Status:[/bold] {result_text(code)}")

    console.print(
        Panel(
            "\n".join(lines),
            title=f"[bold blue]{title}[/bold blue]",
            border_style="blue",
            expand=False,
        )
    )

    table = Table(title="Sections", box=box.ROUNDED, show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Kind", width=12)
    table.add_column("Address", width=13)
    table.add_column("Bytes", justify="right", width=6)
    table.add_column("Cmds", justify="right", width=5)
    table.add_column("Ticks", justify="right", width=7)
    table.add_column("Refs", justify="right", width=5)

    timed = (SectionKind.SEQ, SectionKind.CHN, SectionKind.TRK)
    for section in graph.sections:
        if section.address is None:
            address = "[dim]new[/dim]"
        else:
            address = f"0x{section.address:04X}-0x{section.address_end:04X}"
        length = section.byte_length
        table.add_row(
            str(section.index),
            Text(section.kind.display_name, style=KIND_COLORS.get(section.kind, "white")),
            address,
            str(length) if length is not None else "-",
            str(len(section.commands)),
            str(section.ticks) if section.kind in timed else "",
            str(len(graph.references_to(section.index))),
        )

    console.print(table)


def display_event_info(sequence: EventSequence, title: str) -> None:
    """Display a summary of an event sequence."""
    notes = sum(1 for e in sequence if e.is_note_on)
    controls = sum(
        1
        for e in sequence
        if e.event_type
        in (EventType.CONTROL_CHANGE, EventType.PROGRAM_CHANGE, EventType.PITCH_BEND)
    )
    tempos = [e for e in sequence if e.is_tempo]
    tracks = sorted({e.track for e in sequence})
    first_tempo = f"{tempos[0].bpm:.1f} BPM" if tempos else "default"

    content = f"""[bold]Events:[/bold] {len(sequence)}
[bold]Resolution:[/bold] {sequence.ticks_per_beat} ticks per beat
[bold]Length:[/bold] {sequence.length_ticks} ticks
[bold]Tracks:[/bold] {len(tracks)}
[bold]Channels:[/bold] {", ".join(str(c + 1) for c in sequence.channels) or "none"}
[bold]Notes:[/bold] {notes}
[bold]Controllers:[/bold] {controls}
[bold]Tempo:[/bold] {first_tempo} ({len(tempos)} change(s))"""

    console.print(
        Panel(content, title=f"[bold cyan]{title}[/bold cyan]", border_style="cyan", expand=False)
    )


def display_diagnostics(log: SessionLog, since: int = 0, show_info: bool = False) -> None:
    """Print diagnostic lines colored by severity."""
    for severity, text in log.lines[since:]:
        if severity == Severity.INFO and not show_info:
            continue
        style = SEVERITY_STYLES[severity]
        console.print(f"[{style}]{severity.prefix}{text}[/{style}]", highlight=False)


def display_descriptor(descriptor: Descriptor) -> None:
    """Display the command table of a descriptor."""
    console.print(
        Panel(
            f"[bold]Name:[/bold] {descriptor.name}\n"
            f"[bold]Description:[/bold] {descriptor.description or '-'}\n"
            f"[bold]Resolution:[/bold] {descriptor.ticks_per_beat} ticks per beat\n"
            f"[bold]Channels:[/bold] {descriptor.num_channels}",
            title="[bold blue]Descriptor[/bold blue]",
            border_style="blue",
            expand=False,
        )
    )

    table = Table(title="Commands", box=box.SIMPLE, show_header=True, header_style="bold green")
    table.add_column("Opcode", style="dim", width=9)
    table.add_column("Name", style="cyan")
    table.add_column("Valid in", width=14)
    table.add_column("Parameters")
    table.add_column("CC", justify="right", width=4)

    for spec in descriptor.commands:
        low, high = spec.cmd, spec.last_cmd
        opcode = f"0x{low:02X}" if low == high else f"0x{low:02X}-{high:02X}"
        params = ", ".join(f"{p.meaning.value} ({p.source.value})" for p in spec.params)
        table.add_row(
            opcode,
            spec.name,
            " ".join(sorted(kind.value for kind in spec.valid_in)),
            params,
            str(spec.cc) if spec.cc is not None else "",
        )

    console.print(table)
