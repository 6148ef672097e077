"""Instruction-set descriptors and their named presets."""

from audioseq.descriptor.model import (
    Action,
    CommandSpec,
    DataSource,
    Descriptor,
    Meaning,
    ParamSpec,
    SectionKind,
)
from audioseq.descriptor.presets import (
    DEFAULT_DESCRIPTOR,
    list_descriptors,
    load_descriptor,
    save_descriptor,
)

__all__ = [
    "Action",
    "CommandSpec",
    "DataSource",
    "Descriptor",
    "Meaning",
    "ParamSpec",
    "SectionKind",
    "DEFAULT_DESCRIPTOR",
    "list_descriptors",
    "load_descriptor",
    "save_descriptor",
]
