"""
Diagnostic message collection for conversion sessions.

Each conversion session owns one SessionLog and appends to it without any
locking. Finished logs are handed to a DiagnosticSink, which may be shared by
several threads and keeps every session's lines together and in order.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class Severity(IntEnum):
    """Severity of a diagnostic line, ordered like the result codes."""

    INFO = 0
    WARNING = 1
    ERROR = 2

    @property
    def prefix(self) -> str:
        """Text prefix used when rendering a line."""
        return {
            Severity.INFO: "",
            Severity.WARNING: "WARNING: ",
            Severity.ERROR: "ERROR: ",
        }[self]


class Result(IntEnum):
    """Result codes returned by every conversion operation."""

    OK = 0
    WARNINGS = 1
    ERROR = 2


@dataclass
class SessionLog:
    """
    Append-only diagnostic log of one conversion session.

    Attributes:
        name: Session name used as the block header in a sink
        lines: Logged (severity, text) pairs in order
    """

    name: str = "session"
    lines: List[Tuple[Severity, str]] = field(default_factory=list)
    _logger: Optional[logging.Logger] = field(default=None, repr=False)

    def _append(self, severity: Severity, text: str, source: Optional[logging.Logger]) -> None:
        self.lines.append((severity, text))
        target = source or self._logger or logger
        if severity == Severity.ERROR:
            target.error(text)
        elif severity == Severity.WARNING:
            target.warning(text)
        else:
            target.info(text)

    def info(self, text: str, source: Optional[logging.Logger] = None) -> None:
        """Log a progress line."""
        self._append(Severity.INFO, text, source)

    def warning(self, text: str, source: Optional[logging.Logger] = None) -> None:
        """Log a non-fatal irregularity (result code 1)."""
        self._append(Severity.WARNING, text, source)

    def error(self, text: str, source: Optional[logging.Logger] = None) -> None:
        """Log a fatal problem (result code 2)."""
        self._append(Severity.ERROR, text, source)

    def mark(self) -> int:
        """Get a position marker for status_since()."""
        return len(self.lines)

    def status_since(self, mark: int) -> Result:
        """Get the worst result code of lines logged after mark."""
        worst = max((severity for severity, _ in self.lines[mark:]), default=Severity.INFO)
        return Result(int(worst))

    @property
    def status(self) -> Result:
        """Get the worst result code of the whole log."""
        return self.status_since(0)

    @property
    def warning_count(self) -> int:
        return sum(1 for severity, _ in self.lines if severity == Severity.WARNING)

    @property
    def error_count(self) -> int:
        return sum(1 for severity, _ in self.lines if severity == Severity.ERROR)

    def text(self, since: int = 0) -> str:
        """Render the log (or the part after a marker) as text lines."""
        return "\n".join(f"{severity.prefix}{text}" for severity, text in self.lines[since:])


class DiagnosticSink:
    """
    Thread-safe collector of finished session logs.

    Example:
        sink = DiagnosticSink()
        sink.publish(session.log)
        print(sink.text())
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._blocks: List[Tuple[str, List[Tuple[Severity, str]]]] = []

    def publish(self, log: SessionLog) -> None:
        """
        Append a session's lines as one block.

        The lines are copied, so the session may keep logging afterwards
        and publish again later.
        """
        block = (log.name, list(log.lines))
        with self._lock:
            self._blocks.append(block)

    @property
    def blocks(self) -> List[Tuple[str, List[Tuple[Severity, str]]]]:
        with self._lock:
            return list(self._blocks)

    def text(self) -> str:
        """Render all published blocks."""
        out = []
        for name, lines in self.blocks:
            out.append(f"[{name}]")
            out.extend(f"{severity.prefix}{text}" for severity, text in lines)
        return "\n".join(out)
