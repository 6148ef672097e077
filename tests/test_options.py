"""Tests for import option parsing."""

from audioseq.converters.options import ImportOptions
from audioseq.utils.diagnostics import Result, SessionLog


class TestImportOptions:
    """Test cases for option strings."""

    def test_defaults(self):
        """Test default option values."""
        options = ImportOptions()
        assert options.max_layers == 4
        assert options.master_volume == 0x58
        assert options.reduce_notes
        assert not options.loop

    def test_parse(self):
        """Test parsing of every option type."""
        log = SessionLog()
        options = ImportOptions.from_strings(
            {"max-layers": "2", "master_volume": "$7F", "loop": "yes", "reduce_notes": "off"}, log
        )
        assert log.status == Result.OK
        assert options.max_layers == 2
        assert options.master_volume == 0x7F
        assert options.loop
        assert not options.reduce_notes

    def test_hex_forms(self):
        """Test the accepted hexadecimal spellings."""
        for text in ("0x40", "$40", "40"):
            assert ImportOptions.from_strings({"master_volume": text}).master_volume == 0x40

    def test_invalid_values_keep_defaults(self):
        """Test that bad values warn and leave the default in place."""
        log = SessionLog()
        options = ImportOptions.from_strings(
            {"max_layers": "many", "master_volume": "zz", "loop": "maybe", "cc_tolerance": "500"},
            log,
        )
        assert log.status == Result.WARNINGS
        assert log.warning_count == 4
        assert options == ImportOptions()

    def test_unknown_option(self):
        """Test that an unknown name is ignored with a warning."""
        log = SessionLog()
        ImportOptions.from_strings({"swing": "1"}, log)
        assert "Unknown import option 'swing'" in log.text()

    def test_to_strings(self):
        """Test that rendered options parse back to the same values."""
        options = ImportOptions(max_layers=3, master_volume=0x30, loop=True)
        strings = options.to_strings()
        assert strings["master_volume"] == "0x30"
        assert strings["loop"] == "true"
        assert ImportOptions.from_strings(strings) == options
