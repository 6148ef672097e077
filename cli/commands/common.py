"""
Helpers shared by the CLI commands.
"""

from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console

from audioseq.descriptor.model import SectionKind
from audioseq.descriptor.presets import DEFAULT_DESCRIPTOR, load_descriptor
from audioseq.errors import DescriptorError
from audioseq.session import ConversionSession

console = Console()

MIDI_SUFFIXES = (".mid", ".midi")

DESCRIPTOR_OPTION = typer.Option(
    DEFAULT_DESCRIPTOR, "--descriptor", "-d", help="Instruction set preset name"
)
DESCRIPTOR_DIR_OPTION = typer.Option(
    None, "--descriptor-dir", help="Directory with additional descriptor presets"
)
ENTRY_OPTION = typer.Option(
    None,
    "--entry",
    "-e",
    help="Extra entry point as ADDRESS:KIND (e.g. 0x0200:chn); repeatable",
)


def is_midi(path: Path) -> bool:
    return path.suffix.lower() in MIDI_SUFFIXES


def open_session(descriptor: str, descriptor_dir: Optional[Path], name: str) -> ConversionSession:
    """Create a session, exiting with a message if the descriptor cannot be loaded."""
    try:
        return ConversionSession(load_descriptor(descriptor, descriptor_dir), name=name)
    except DescriptorError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def read_input(path: Path) -> bytes:
    """Read a file, exiting with a message if it does not exist."""
    if not path.exists():
        console.print(f"[red]Error: File not found: {path}[/red]")
        raise typer.Exit(1)
    with open(path, "rb") as f:
        return f.read()


def parse_entries(values: Optional[List[str]]) -> Optional[List[Tuple[int, SectionKind]]]:
    """
    Parse --entry values.

    The sequence header at address 0 is always included.
    """
    if not values:
        return None
    entries = [(0, SectionKind.SEQ)]
    for value in values:
        address, _, kind = value.partition(":")
        try:
            entries.append((int(address, 0), SectionKind(kind.strip().lower() or "seq")))
        except ValueError:
            console.print(
                f"[red]Error: Invalid entry point '{value}' (expected ADDRESS:KIND)[/red]"
            )
            raise typer.Exit(1)
    return entries


def parse_options(values: Optional[List[str]]) -> dict:
    """Parse --opt key=value pairs."""
    options = {}
    for value in values or []:
        key, sep, text = value.partition("=")
        if not sep:
            console.print(f"[red]Error: Invalid option '{value}' (expected key=value)[/red]")
            raise typer.Exit(1)
        options[key.strip()] = text.strip()
    return options
