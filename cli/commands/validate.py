"""
Validate command - check that a sequence file reassembles byte for byte.
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cli.commands.common import (
    DESCRIPTOR_DIR_OPTION,
    DESCRIPTOR_OPTION,
    ENTRY_OPTION,
    open_session,
    parse_entries,
    read_input,
)
from cli.display.tables import display_diagnostics, result_text

console = Console()
app = typer.Typer()

# Differences listed before the table is cut off
MAX_DIFFERENCES = 16


def find_differences(original: bytes, rebuilt: bytes) -> List[int]:
    """Get the offsets where two buffers differ (including length mismatch)."""
    offsets = [i for i, (a, b) in enumerate(zip(original, rebuilt)) if a != b]
    if len(original) != len(rebuilt):
        offsets.append(min(len(original), len(rebuilt)))
    return offsets


@app.command()
def validate(
    file: Path = typer.Argument(..., help="Sequence file to validate"),
    descriptor: str = DESCRIPTOR_OPTION,
    descriptor_dir: Optional[Path] = DESCRIPTOR_DIR_OPTION,
    entry: Optional[List[str]] = ENTRY_OPTION,
) -> None:
    """
    Disassemble and reassemble a sequence file.

    The file is valid when it disassembles without fatal problems and the
    rebuilt data is identical to the original. Reassembling the rebuilt data
    must give the same bytes again.

    Examples:

        seqconv validate song.seq
    """
    data = read_input(file)
    session = open_session(descriptor, descriptor_dir, file.name)
    entries = parse_entries(entry)

    import_code, graph = session.import_com(data, entries=entries, merge_duplicates=False)
    export_code, rebuilt = session.export_com(graph)

    second_code, second_graph = session.import_com(rebuilt, entries=entries, merge_duplicates=False)
    _, rebuilt_again = session.export_com(second_graph)

    differences = find_differences(data, rebuilt)
    exact = not differences
    stable = rebuilt == rebuilt_again
    code = max(import_code, export_code)

    checks = Table(box=box.SIMPLE, show_header=False)
    checks.add_column("Check", style="bold")
    checks.add_column("Result")
    checks.add_row("Disassembly", result_text(import_code))
    checks.add_row("Assembly", result_text(export_code))
    checks.add_row(
        "Round trip",
        "[green]byte-exact[/green]"
        if exact
        else f"[red]{len(differences)} difference(s)[/red]",
    )
    checks.add_row(
        "Reassembly", "[green]stable[/green]" if stable else "[red]differs[/red]"
    )
    console.print(Panel(checks, title=f"[bold]Validate: {file.name}[/bold]", expand=False))

    if differences:
        table = Table(title="Differences", box=box.ROUNDED, header_style="bold red")
        table.add_column("Offset", style="dim")
        table.add_column("Original")
        table.add_column("Rebuilt")
        for offset in differences[:MAX_DIFFERENCES]:
            original = f"{data[offset]:02X}" if offset < len(data) else "--"
            new = f"{rebuilt[offset]:02X}" if offset < len(rebuilt) else "--"
            table.add_row(f"0x{offset:04X}", original, new)
        console.print(table)
        if len(differences) > MAX_DIFFERENCES:
            console.print(f"[dim]... {len(differences) - MAX_DIFFERENCES} more[/dim]")

    display_diagnostics(session.log)

    if code >= 2 or second_code >= 2 or not exact or not stable:
        raise typer.Exit(1)
