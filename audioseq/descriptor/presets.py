"""
Named descriptor presets stored as YAML documents.

Built-in presets live in the ``presets`` directory next to this module. A
user directory may add presets or shadow built-in ones by name.

Example:
    names = list_descriptors()
    descriptor = load_descriptor("audioseq")
    save_descriptor(descriptor, "my_variant", Path("~/.audioseq").expanduser())
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union

import yaml

from audioseq.descriptor.model import Descriptor
from audioseq.errors import DescriptorFormatError, DescriptorNotFoundError

logger = logging.getLogger(__name__)

PRESETS_DIR = Path(__file__).parent / "presets"
PRESET_SUFFIX = ".yaml"
DEFAULT_DESCRIPTOR = "audioseq"


def _search_dirs(directory: Optional[Union[str, Path]]) -> List[Path]:
    dirs = []
    if directory is not None:
        dirs.append(Path(directory))
    dirs.append(PRESETS_DIR)
    return dirs


def list_descriptors(directory: Optional[Union[str, Path]] = None) -> List[str]:
    """
    List available preset names.

    Args:
        directory: Optional user preset directory searched before built-ins

    Returns:
        Sorted unique preset names
    """
    names = set()
    for path in _search_dirs(directory):
        if path.is_dir():
            names.update(p.stem for p in path.glob(f"*{PRESET_SUFFIX}"))
    return sorted(names)


def load_descriptor(
    name: str = DEFAULT_DESCRIPTOR, directory: Optional[Union[str, Path]] = None
) -> Descriptor:
    """
    Load a named descriptor preset.

    Args:
        name: Preset name (file stem)
        directory: Optional user preset directory searched before built-ins

    Returns:
        Immutable Descriptor

    Raises:
        DescriptorNotFoundError: If no preset has that name
        DescriptorFormatError: If the preset cannot be parsed
    """
    for path in _search_dirs(directory):
        filepath = path / f"{name}{PRESET_SUFFIX}"
        if filepath.is_file():
            if path == PRESETS_DIR:
                return _load_builtin(name)
            return _load_file(filepath, name)

    raise DescriptorNotFoundError(f"Descriptor not found: {name}")


@lru_cache(maxsize=None)
def _load_builtin(name: str) -> Descriptor:
    return _load_file(PRESETS_DIR / f"{name}{PRESET_SUFFIX}", name)


def _load_file(filepath: Path, name: str) -> Descriptor:
    logger.debug("Loading descriptor %s from %s", name, filepath)
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DescriptorFormatError(f"Cannot parse {filepath}: {e}") from e

    return Descriptor.from_dict(data, name=name)


def save_descriptor(
    descriptor: Descriptor, name: str, directory: Union[str, Path]
) -> Path:
    """
    Save a descriptor as a named preset.

    Args:
        descriptor: Descriptor to save
        name: Preset name (file stem)
        directory: Preset directory to write to

    Returns:
        Path of the written file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    data = descriptor.to_dict()
    data["name"] = name

    filepath = directory / f"{name}{PRESET_SUFFIX}"
    with open(filepath, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)

    return filepath
