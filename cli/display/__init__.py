"""
CLI display modules.
"""

from cli.display.tables import (
    display_descriptor,
    display_diagnostics,
    display_event_info,
    display_graph_info,
    result_text,
)
from cli.display.hex_view import display_hex_dump

__all__ = [
    "display_descriptor",
    "display_diagnostics",
    "display_event_info",
    "display_graph_info",
    "result_text",
    "display_hex_dump",
]
