"""
Info command - display sequence file information.
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from audioseq.formats.midi.midi_file import MidiFileReader

from cli.commands.common import (
    DESCRIPTOR_DIR_OPTION,
    DESCRIPTOR_OPTION,
    ENTRY_OPTION,
    is_midi,
    open_session,
    parse_entries,
    read_input,
)
from cli.display.tables import display_diagnostics, display_event_info, display_graph_info

console = Console()
app = typer.Typer()


@app.command()
def info(
    file: Path = typer.Argument(..., help="Sequence file (.seq/.bin) or MIDI file (.mid)"),
    descriptor: str = DESCRIPTOR_OPTION,
    descriptor_dir: Optional[Path] = DESCRIPTOR_DIR_OPTION,
    entry: Optional[List[str]] = ENTRY_OPTION,
    log: bool = typer.Option(False, "--log", "-l", help="Show progress lines too"),
) -> None:
    """
    Display sequence information.

    Binary sequences are disassembled and their sections listed; MIDI files
    are summarized and test-imported.

    Examples:

        seqconv info song.seq

        seqconv info song.seq --entry 0x0400:chn

        seqconv info song.mid
    """
    session = open_session(descriptor, descriptor_dir, file.name)

    if is_midi(file):
        if not file.exists():
            console.print(f"[red]Error: File not found: {file}[/red]")
            raise typer.Exit(1)
        sequence = MidiFileReader.read(file)
        display_event_info(sequence, f"MIDI File: {file.name}")
        code, graph = session.import_events(sequence)
        display_graph_info(graph, "Imported Sequence", code=code)
    else:
        data = read_input(file)
        code, graph = session.import_com(data, entries=parse_entries(entry))
        display_graph_info(graph, f"Sequence: {file.name}", size=len(data), code=code)

    display_diagnostics(session.log, show_info=log)
