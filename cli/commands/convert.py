"""
Convert command - conversion between binary sequences, MIDI files and text listings.
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from audioseq.converters.midi_export import Dialect
from audioseq.formats.midi.midi_file import MidiFileReader, MidiFileWriter

from cli.commands.common import (
    DESCRIPTOR_DIR_OPTION,
    DESCRIPTOR_OPTION,
    ENTRY_OPTION,
    is_midi,
    open_session,
    parse_entries,
    parse_options,
    read_input,
)
from cli.display.tables import display_diagnostics, result_text

console = Console()
app = typer.Typer()

OUTPUT_FORMATS = ("seq", "mid", "mus")


def output_format(source: Path, output: Optional[Path], to: Optional[str]) -> str:
    """
    Pick the output format.

    An explicit --to wins, then the output suffix; otherwise MIDI input
    becomes a binary sequence and anything else becomes MIDI.
    """
    if to:
        return to.lower().lstrip(".")
    if output is not None:
        suffix = output.suffix.lower().lstrip(".")
        if suffix in ("mus", "seq"):
            return suffix
        if is_midi(output):
            return "mid"
    return "seq" if is_midi(source) else "mid"


@app.command()
def convert(
    source: Path = typer.Argument(..., help="Source file (.seq/.bin or .mid)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file path"),
    to: Optional[str] = typer.Option(
        None, "--to", "-t", help="Output format: seq, mid or mus (default: from the file names)"
    ),
    dialect: Dialect = typer.Option(
        Dialect.MIDI, "--dialect", help="Naming dialect for MIDI and text export"
    ),
    opt: Optional[List[str]] = typer.Option(
        None, "--opt", help="MIDI import option as key=value (e.g. max_layers=6); repeatable"
    ),
    descriptor: str = DESCRIPTOR_OPTION,
    descriptor_dir: Optional[Path] = DESCRIPTOR_DIR_OPTION,
    entry: Optional[List[str]] = ENTRY_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed progress"),
) -> None:
    """
    Convert between binary sequences, MIDI files and text listings.

    The input format is detected from the source suffix:

    - .mid is imported, optimized and assembled
    - anything else is disassembled

    The result is written as a binary sequence (seq), a MIDI file (mid) or a
    music macro text listing (mus).

    Examples:

        seqconv convert song.seq -o song.mid

        seqconv convert song.seq --to mus --dialect community

        seqconv convert song.mid --opt max_layers=6 --opt loop=true
    """
    fmt = output_format(source, output, to)
    if fmt not in OUTPUT_FORMATS:
        console.print(
            f"[red]Error: Unknown output format '{to}' (expected {', '.join(OUTPUT_FORMATS)})[/red]"
        )
        raise typer.Exit(1)

    session = open_session(descriptor, descriptor_dir, source.name)
    output_path = output or source.with_suffix(f".{fmt}")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=not verbose,
    ) as progress:
        if is_midi(source):
            task = progress.add_task("Importing MIDI...", total=None)

            if not source.exists():
                console.print(f"[red]Error: Source file not found: {source}[/red]")
                raise typer.Exit(1)

            code, graph = session.import_events(
                MidiFileReader.read(source), options=parse_options(opt)
            )
        else:
            task = progress.add_task("Disassembling...", total=None)

            data = read_input(source)
            if opt:
                console.print("[yellow]--opt only applies to MIDI import; ignored[/yellow]")
            code, graph = session.import_com(data, entries=parse_entries(entry))

        output_path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == "seq":
            progress.update(task, description="Assembling...")
            export_code, data = session.export_com(graph)
            with open(output_path, "wb") as f:
                f.write(data)
            size = f"{len(data)} bytes, {len(graph)} sections"
        elif fmt == "mid":
            progress.update(task, description="Exporting MIDI...")
            export_code, sequence = session.export_events(graph, dialect)
            MidiFileWriter.write(sequence, output_path)
            size = f"{len(sequence)} events"
        else:
            progress.update(task, description="Writing text...")
            export_code, text = session.export_mus(graph, dialect, name=source.stem)
            with open(output_path, "w", encoding="utf-8") as f:
                f.write(text)
            size = f"{len(text.splitlines())} lines, {len(graph)} sections"

        code = max(code, export_code)
        progress.update(task, description="Done!")

    display_diagnostics(session.log, show_info=verbose)

    console.print(f"[green]Converted:[/green] {source} -> {output_path}")
    console.print(f"[dim]Output: {size}[/dim]")
    console.print(
        f"Status: {result_text(code)} "
        f"[dim]({session.log.warning_count} warning(s), {session.log.error_count} error(s))[/dim]"
    )

    if code >= 2:
        raise typer.Exit(1)
