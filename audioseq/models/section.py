"""
Section data model.
"""

import hashlib
from dataclasses import dataclass, field
from typing import List, Optional

from audioseq.descriptor.model import SectionKind
from audioseq.models.command import Command, TableEntry

__all__ = ["Section", "SectionKind"]


@dataclass(eq=False)
class Section:
    """
    An ordered run of commands of one kind.

    Attributes:
        index: Stable section number inside its graph
        kind: Kind of section
        commands: Commands in stream order
        address: Start address once placed or decoded
        address_end: End address (exclusive) once placed or decoded
        element_kind: For dynamic tables, the kind of section entries point to
        fallthrough: The section has no terminator and continues into the
            section placed right after it
        fallthrough_to: Index of that following section
    """

    index: int
    kind: SectionKind
    commands: List[Command] = field(default_factory=list)
    address: Optional[int] = None
    address_end: Optional[int] = None
    element_kind: Optional[SectionKind] = None
    fallthrough: bool = False
    fallthrough_to: Optional[int] = None

    _hash: Optional[str] = field(default=None, repr=False)

    def __len__(self) -> int:
        return len(self.commands)

    @property
    def label(self) -> str:
        """Get a short label like 'chn3'."""
        return f"{self.kind.value}{self.index}"

    @property
    def ticks(self) -> int:
        """Get the total time of the section's commands."""
        return sum(cmd.ticks for cmd in self.commands)

    @property
    def byte_length(self) -> Optional[int]:
        """Get the encoded length, or None if any command length is unknown."""
        total = 0
        for cmd in self.commands:
            if cmd.length is None:
                return None
            total += cmd.length
        return total

    def contains(self, address: int) -> bool:
        """Check if an address lies inside the placed section."""
        if self.address is None or self.address_end is None:
            return False
        return self.address <= address < self.address_end

    def command_index_at(self, address: int) -> Optional[int]:
        """
        Find the command starting at an address.

        Returns:
            Command index, or None if no command starts there
        """
        for i, cmd in enumerate(self.commands):
            if cmd.address == address:
                return i
        return None

    def offset_of(self, command_index: int) -> int:
        """
        Get the byte offset of a command from the section start.

        Raises:
            ValueError: If a preceding command has no known length
        """
        offset = 0
        for cmd in self.commands[:command_index]:
            if cmd.length is None:
                raise ValueError(f"{self.label}: command length unknown")
            offset += cmd.length
        return offset

    def invalidate(self) -> None:
        """Drop the cached content hash after a mutation."""
        self._hash = None

    @property
    def content_hash(self) -> str:
        """
        Get the structural fingerprint of the section.

        Covers the kind and every command's action, encoding and parameters.
        References to the section itself are recorded as relative to it, so
        two self-looping copies of the same material hash alike. Table entries
        that carry a reference are hashed by the reference, not the address
        they were decoded from.
        """
        if self._hash is None:
            digest = hashlib.sha1()
            digest.update(self.kind.value.encode())
            digest.update(str(self.element_kind.value if self.element_kind else "").encode())
            for cmd in self.commands:
                digest.update(self._command_signature(cmd).encode())
            self._hash = digest.hexdigest()
        return self._hash

    def _command_signature(self, cmd: Command) -> str:
        parts = [cmd.action.value, cmd.spec.name if cmd.spec else "", str(int(cmd.force_wide))]
        for attr, value in cmd.param_items():
            if attr == "value" and isinstance(cmd, TableEntry) and cmd.target is not None:
                continue
            if attr == "target" and value is not None:
                if value.section == self.index:
                    value = f"self:{value.command}"
                else:
                    value = str(value)
            elif isinstance(value, bytes):
                value = value.hex()
            parts.append(f"{attr}={value}")
        return "|".join(parts) + ";"
