"""
Exception hierarchy for audioseq.

Internal routines raise these; the conversion session catches them at its
public boundary and turns them into result codes plus diagnostic lines.
"""


class SeqError(Exception):
    """Base class for all audioseq errors."""

    pass


class DescriptorError(SeqError):
    """Raised when an instruction-set descriptor cannot be used."""

    pass


class DescriptorNotFoundError(DescriptorError):
    """Raised when a named descriptor preset does not exist."""

    pass


class DescriptorFormatError(DescriptorError):
    """Raised when a descriptor preset is malformed."""

    pass


class GraphError(SeqError):
    """Raised when a command graph operation is not allowed."""

    pass


class DanglingReferenceError(GraphError):
    """Raised when a reference does not resolve to a section/command."""

    pass


class InvalidCommandError(GraphError):
    """Raised when a command is not legal in the section it is put in."""

    pass


class InvariantError(GraphError):
    """
    Raised when a structural invariant of the graph is violated.

    Attributes:
        invariant: Short name of the violated invariant
    """

    def __init__(self, invariant: str, message: str):
        super().__init__(f"{invariant}: {message}")
        self.invariant = invariant


class DecodeError(SeqError):
    """
    Raised when binary data cannot be decoded.

    Attributes:
        address: Address of the offending byte, if known
    """

    def __init__(self, message: str, address: int = None):
        if address is not None:
            message = f"0x{address:04X}: {message}"
        super().__init__(message)
        self.address = address


class EncodeError(SeqError):
    """Raised when a command cannot be encoded to binary."""

    pass
