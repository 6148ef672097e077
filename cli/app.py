"""
seqconv - Converter for Com music sequences.

A CLI tool for disassembling, assembling and converting Com sequences.
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from audioseq import __version__
from cli.commands.convert import convert
from cli.commands.descriptors import descriptors
from cli.commands.dump import dump
from cli.commands.info import info
from cli.commands.validate import validate

console = Console()

# Main app
app = typer.Typer(
    name="seqconv",
    help="Convert and analyze Com music sequences.",
    add_completion=False,
    rich_markup_mode="rich",
)

# Add commands directly
app.command(name="info")(info)
app.command(name="convert")(convert)
app.command(name="validate")(validate)
app.command(name="dump")(dump)
app.command(name="descriptors")(descriptors)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold]seqconv[/bold] version {__version__}")
    console.print("[dim]Converter for Com music sequences[/dim]")


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich; silent unless verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.CRITICAL,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version_flag: bool = typer.Option(False, "--version", "-V", help="Show version"),
    verbose: bool = typer.Option(False, "--verbose", help="Log library progress to stderr"),
) -> None:
    """
    seqconv - Convert and analyze Com music sequences.

    Supports conversion between:

    - [cyan]Com[/cyan] binary sequences (.seq, .bin)
    - [cyan]MIDI[/cyan] files (.mid)

    [bold]Quick Start:[/bold]

        seqconv info song.seq           # Sections and diagnostics
        seqconv dump song.seq           # Annotated hex dump + commands

    [bold]Conversion:[/bold]

        seqconv convert song.seq -o song.mid
        seqconv convert song.mid -o song.seq --opt max_layers=6

    [bold]Utility Commands:[/bold]

        seqconv validate song.seq       # Byte-exact round trip check
        seqconv descriptors             # Instruction-set presets

    Use --help with any command for more details.
    """
    setup_logging(verbose)

    if version_flag:
        version()
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
