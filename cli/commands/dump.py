"""
Dump command - annotated hex dump and command listing of a sequence file.
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.syntax import Syntax

from cli.commands.common import (
    DESCRIPTOR_DIR_OPTION,
    DESCRIPTOR_OPTION,
    ENTRY_OPTION,
    open_session,
    parse_entries,
    read_input,
)
from cli.display.hex_view import display_hex_dump
from cli.display.tables import display_diagnostics

console = Console()
app = typer.Typer()


@app.command()
def dump(
    file: Path = typer.Argument(..., help="Sequence file to dump"),
    start: str = typer.Option("0", "--start", "-s", help="Start offset (hex or decimal)"),
    length: int = typer.Option(0, "--length", "-n", help="Number of bytes (0=all)"),
    width: int = typer.Option(16, "--width", "-w", help="Bytes per line"),
    hex_view: bool = typer.Option(True, "--hex/--no-hex", help="Show the hex dump"),
    commands: bool = typer.Option(True, "--commands/--no-commands", help="Show the command graph"),
    raw: bool = typer.Option(False, "--raw", help="Do not merge duplicate sections"),
    descriptor: str = DESCRIPTOR_OPTION,
    descriptor_dir: Optional[Path] = DESCRIPTOR_DIR_OPTION,
    entry: Optional[List[str]] = ENTRY_OPTION,
) -> None:
    """
    Annotated hex dump of a sequence file.

    Bytes are colored by section kind and every line is tagged with the
    section it starts in. The disassembled command graph follows.

    Examples:

        seqconv dump song.seq

        seqconv dump song.seq --start 0x100 --length 64

        seqconv dump song.seq --no-hex --raw
    """
    data = read_input(file)
    try:
        start_offset = int(start, 0)
    except ValueError:
        console.print(f"[red]Error: Invalid start offset: {start}[/red]")
        raise typer.Exit(1)

    session = open_session(descriptor, descriptor_dir, file.name)
    code, graph = session.import_com(
        data, entries=parse_entries(entry), merge_duplicates=not raw
    )

    if hex_view:
        display_hex_dump(data, graph, f"{file.name}", start_offset, length, width)
        console.print()

    if commands:
        console.print(Syntax(session.internal_string(), "text", theme="ansi_dark", word_wrap=False))

    display_diagnostics(session.log)
    if code >= 2:
        raise typer.Exit(1)
