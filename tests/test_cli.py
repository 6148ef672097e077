"""Tests for the seqconv command line."""

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.commands.validate import find_differences

runner = CliRunner()


@pytest.fixture
def song_file(tmp_path, song_data):
    """Write the small song to a file."""
    path = tmp_path / "song.seq"
    path.write_bytes(song_data)
    return path


class TestCommands:
    """Test cases for the CLI commands."""

    def test_version(self):
        """Test the version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "seqconv" in result.output

    def test_info(self, song_file):
        """Test info on a binary sequence."""
        result = runner.invoke(app, ["info", str(song_file)])
        assert result.exit_code == 0
        assert "song.seq" in result.output

    def test_missing_file(self, tmp_path):
        """Test that a missing input exits with an error."""
        result = runner.invoke(app, ["info", str(tmp_path / "nope.seq")])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_validate(self, song_file):
        """Test a byte-exact round trip."""
        result = runner.invoke(app, ["validate", str(song_file)])
        assert result.exit_code == 0
        assert "byte-exact" in result.output

    def test_dump(self, song_file):
        """Test the hex dump and command listing."""
        result = runner.invoke(app, ["dump", str(song_file), "--width", "8"])
        assert result.exit_code == 0
        assert "Ptr Channel Header" in result.output

    def test_convert_both_ways(self, song_file, tmp_path):
        """Test conversion to MIDI and back."""
        midi = tmp_path / "song.mid"
        result = runner.invoke(app, ["convert", str(song_file), "-o", str(midi)])
        assert result.exit_code == 0
        assert midi.exists()

        back = tmp_path / "back.seq"
        result = runner.invoke(
            app, ["convert", str(midi), "-o", str(back), "--opt", "max_layers=2"]
        )
        assert result.exit_code == 0
        assert back.read_bytes()

    def test_convert_to_text(self, song_file):
        """Test writing a text listing with --to mus."""
        result = runner.invoke(
            app, ["convert", str(song_file), "--to", "mus", "--dialect", "community"]
        )
        assert result.exit_code == 0
        assert "0 warning(s), 0 error(s)" in result.output

        text = song_file.with_suffix(".mus").read_text(encoding="utf-8")
        assert text.startswith("; song\n")
        assert "    ptr_channel_header 0, chn0_0" in text.splitlines()

    def test_convert_format_from_suffix(self, song_file, tmp_path):
        """Test that a .mus output path selects the text listing."""
        out = tmp_path / "listing.mus"
        result = runner.invoke(app, ["convert", str(song_file), "-o", str(out)])
        assert result.exit_code == 0
        assert out.read_text(encoding="utf-8").startswith("; song\n")

    def test_convert_unknown_format(self, song_file):
        """Test that an unknown --to value is rejected."""
        result = runner.invoke(app, ["convert", str(song_file), "--to", "wav"])
        assert result.exit_code == 1
        assert "Unknown output format 'wav'" in result.output

    def test_bad_option_syntax(self, tmp_path, song_file):
        """Test that an import option without '=' is rejected."""
        midi = tmp_path / "song.mid"
        runner.invoke(app, ["convert", str(song_file), "-o", str(midi)])
        result = runner.invoke(app, ["convert", str(midi), "--opt", "max_layers"])
        assert result.exit_code == 1

    def test_descriptors(self):
        """Test listing and showing presets."""
        result = runner.invoke(app, ["descriptors"])
        assert result.exit_code == 0
        assert "audioseq" in result.output

        result = runner.invoke(app, ["descriptors", "audioseq"])
        assert result.exit_code == 0

        result = runner.invoke(app, ["descriptors", "no_such_engine"])
        assert result.exit_code == 1


class TestFindDifferences:
    """Test cases for round trip comparison."""

    def test_identical(self):
        """Test identical buffers."""
        assert find_differences(b"\x01\x02", b"\x01\x02") == []

    def test_changed_and_truncated(self):
        """Test a changed byte and a length mismatch."""
        assert find_differences(b"\x01\x02\x03", b"\x01\x09") == [1, 2]
