"""
Descriptors command - list and show instruction-set presets.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from audioseq.descriptor.presets import list_descriptors, load_descriptor
from audioseq.errors import DescriptorError

from cli.commands.common import DESCRIPTOR_DIR_OPTION
from cli.display.tables import display_descriptor

console = Console()
app = typer.Typer()


@app.command()
def descriptors(
    name: Optional[str] = typer.Argument(None, help="Preset to show in detail"),
    descriptor_dir: Optional[Path] = DESCRIPTOR_DIR_OPTION,
) -> None:
    """
    List instruction-set presets, or show the commands of one.

    Examples:

        seqconv descriptors

        seqconv descriptors audioseq
    """
    if name is None:
        for preset in list_descriptors(descriptor_dir):
            console.print(f"  [cyan]{preset}[/cyan]")
        return

    try:
        descriptor = load_descriptor(name, descriptor_dir)
    except DescriptorError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    display_descriptor(descriptor)
