"""
Options for importing musical events.

Options arrive as strings (from a command line or a preferences file) and
are parsed leniently: a value that does not parse, or is out of range, keeps
its default and produces a warning.
"""

import logging
from dataclasses import dataclass, fields
from typing import Dict, Mapping, Optional

from audioseq.utils.diagnostics import SessionLog

logger = logging.getLogger(__name__)

TRUE_STRINGS = ("1", "true", "yes", "on")
FALSE_STRINGS = ("0", "false", "no", "off")

# Upper bounds of the numeric options
OPTION_MAX = {
    "max_layers": 8,
    "master_volume": 0x7F,
    "cc_tolerance": 127,
    "merge_window": 0x7FFF,
}

HEX_OPTIONS = ("master_volume",)


@dataclass
class ImportOptions:
    """
    Musical-event import options.

    Attributes:
        max_layers: Polyphony slots (note layers) per channel
        master_volume: Master Volume written in the sequence header
        allow_cc_merge: Allow merging controller values that differ slightly
        cc_tolerance: Largest value difference treated as equal
        merge_window: Largest tick distance for tolerant merges
        reduce_notes: Run the note-reduction pass
        merge_sections: Merge structurally identical sections
        loop: End the sequence header with a jump back to its start
    """

    max_layers: int = 4
    master_volume: int = 0x58
    allow_cc_merge: bool = True
    cc_tolerance: int = 0
    merge_window: int = 0
    reduce_notes: bool = True
    merge_sections: bool = True
    loop: bool = False

    @classmethod
    def from_strings(
        cls, values: Mapping[str, str], log: Optional[SessionLog] = None
    ) -> "ImportOptions":
        """
        Build options from name/string pairs.

        Args:
            values: Option name to value string
            log: Receives warnings for rejected values

        Returns:
            Options; every rejected value keeps its default
        """
        options = cls()
        log = log if log is not None else SessionLog("options")
        known = {f.name: f for f in fields(cls)}

        for name, value in values.items():
            key = name.strip().lower().replace("-", "_")
            prefline = f"{name}={value}"
            option = known.get(key)
            if option is None:
                log.warning(f"Unknown import option '{name}' ignored", logger)
            elif option.type in (bool, "bool"):
                options.pref_set_bool(key, value, prefline, log)
            elif key in HEX_OPTIONS:
                options.pref_set_hex(key, OPTION_MAX[key], value, prefline, log)
            else:
                options.pref_set_int(key, OPTION_MAX[key], value, prefline, log)
        return options

    def pref_set_bool(self, opt: str, value: str, prefline: str, log: SessionLog) -> None:
        """Set a boolean option from a string."""
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            setattr(self, opt, True)
        elif text in FALSE_STRINGS:
            setattr(self, opt, False)
        else:
            log.warning(f"Invalid boolean in '{prefline}', keeping {getattr(self, opt)}", logger)

    def pref_set_int(
        self, opt: str, maximum: int, value: str, prefline: str, log: SessionLog
    ) -> None:
        """Set an integer option (0..maximum) from a decimal string."""
        try:
            number = int(value.strip(), 10)
        except ValueError:
            log.warning(f"Invalid number in '{prefline}', keeping {getattr(self, opt)}", logger)
            return
        self._set_bounded(opt, maximum, number, prefline, log)

    def pref_set_hex(
        self, opt: str, maximum: int, value: str, prefline: str, log: SessionLog
    ) -> None:
        """Set an integer option (0..maximum) from a hex string (0x58, $58 or 58)."""
        text = value.strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        elif text.startswith("$"):
            text = text[1:]
        try:
            number = int(text, 16)
        except ValueError:
            log.warning(
                f"Invalid hex value in '{prefline}', keeping 0x{getattr(self, opt):02X}", logger
            )
            return
        self._set_bounded(opt, maximum, number, prefline, log)

    def _set_bounded(
        self, opt: str, maximum: int, number: int, prefline: str, log: SessionLog
    ) -> None:
        if not 0 <= number <= maximum:
            log.warning(
                f"'{prefline}' outside 0..{maximum}, keeping {getattr(self, opt)}", logger
            )
            return
        setattr(self, opt, number)

    def to_strings(self) -> Dict[str, str]:
        """Render options in the form from_strings() accepts."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool):
                result[f.name] = "true" if value else "false"
            elif f.name in HEX_OPTIONS:
                result[f.name] = f"0x{value:02X}"
            else:
                result[f.name] = str(value)
        return result
