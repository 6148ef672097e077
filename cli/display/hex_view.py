"""
Hex dump display utilities.
"""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from audioseq.models.graph import SequenceGraph

from cli.display.tables import KIND_COLORS

console = Console()


def section_tag(graph: Optional[SequenceGraph], offset: int):
    """Get the (label, color) of the section holding an offset."""
    if graph is None:
        return "", "white"
    section = graph.section_at(offset)
    if section is None:
        return "?", "red"
    return section.label, KIND_COLORS.get(section.kind, "white")


def format_hex_line(
    data: bytes, offset: int, graph: Optional[SequenceGraph] = None, bytes_per_line: int = 16
) -> Text:
    """
    Format a single line of hex dump.

    Bytes are colored by the kind of section they belong to, and the line
    is tagged with the section holding its first byte.
    """
    text = Text()
    text.append(f"0x{offset:04X} ", style="dim")

    if graph is not None:
        label, color = section_tag(graph, offset)
        text.append(f"[{label:8s}] ", style=color)

    for i, byte in enumerate(data):
        _, color = section_tag(graph, offset + i)
        text.append(f"{byte:02X}", style=color)
        text.append(" ")

    if len(data) < bytes_per_line:
        text.append("   " * (bytes_per_line - len(data)))

    text.append(" ", style="dim")
    for byte in data:
        if 32 <= byte < 127:
            text.append(chr(byte), style="green")
        else:
            text.append(".", style="dim")

    return text


def display_hex_dump(
    data: bytes,
    graph: Optional[SequenceGraph] = None,
    title: str = "Hex Dump",
    start: int = 0,
    length: int = 0,
    bytes_per_line: int = 16,
) -> None:
    """Display an annotated hex dump of sequence data."""
    end = len(data) if length <= 0 else min(len(data), start + length)

    console.print(
        Panel(
            f"[bold]Size:[/bold] {len(data)} bytes\n"
            f"[bold]Showing:[/bold] 0x{start:04X} - 0x{max(end - 1, start):04X} "
            f"({end - start} bytes)",
            title=f"[bold]{title}[/bold]",
            border_style="blue",
            expand=False,
        )
    )

    for offset in range(start, end, bytes_per_line):
        chunk = data[offset : min(offset + bytes_per_line, end)]
        console.print(format_hex_line(chunk, offset, graph, bytes_per_line))
