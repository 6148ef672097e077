"""Tests for variable-length delay encoding."""

import pytest

from audioseq.utils.varlen import MAX_VARLEN, decode_varlen, encode_varlen, varlen_size


class TestVarlen:
    """Test cases for variable-length values."""

    def test_encode_small(self):
        """Test that values below 0x80 take one byte."""
        assert encode_varlen(0x30) == bytes([0x30])

    def test_encode_large(self):
        """Test the two byte form."""
        assert encode_varlen(0x180) == bytes([0x81, 0x80])
        assert encode_varlen(MAX_VARLEN) == bytes([0xFF, 0xFF])

    def test_encode_forced_wide(self):
        """Test that a small value can be written in two bytes."""
        assert encode_varlen(0x30, force_wide=True) == bytes([0x80, 0x30])

    def test_encode_out_of_range(self):
        """Test that values above the maximum are rejected."""
        with pytest.raises(ValueError):
            encode_varlen(MAX_VARLEN + 1)
        with pytest.raises(ValueError):
            encode_varlen(-1)

    def test_decode_reports_wide_small_values(self):
        """Test that a small value stored wide is flagged."""
        assert decode_varlen(bytes([0x80, 0x30]), 0) == (0x30, 2, True)
        assert decode_varlen(bytes([0x81, 0x80]), 0) == (0x180, 2, False)
        assert decode_varlen(bytes([0x00, 0x7F]), 1) == (0x7F, 1, False)

    def test_decode_truncated(self):
        """Test that a two byte value cut short raises IndexError."""
        with pytest.raises(IndexError):
            decode_varlen(bytes([0x81]), 0)

    def test_size(self):
        """Test encoded sizes."""
        assert varlen_size(0x7F) == 1
        assert varlen_size(0x80) == 2
        assert varlen_size(5, force_wide=True) == 2
