"""Utility functions for audioseq."""

from audioseq.utils.varlen import MAX_VARLEN, decode_varlen, encode_varlen, varlen_size
from audioseq.utils.diagnostics import DiagnosticSink, Result, SessionLog, Severity

__all__ = [
    "MAX_VARLEN",
    "decode_varlen",
    "encode_varlen",
    "varlen_size",
    "DiagnosticSink",
    "Result",
    "SessionLog",
    "Severity",
]
