"""Com binary sequence format support."""

from audioseq.formats.com.reader import ComReader
from audioseq.formats.com.writer import ComWriter

__all__ = ["ComReader", "ComWriter"]
