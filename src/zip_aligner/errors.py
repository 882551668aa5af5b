"""Exception hierarchy for zip-aligner."""

from __future__ import annotations


class ZipAlignerError(Exception):
    """Base class for all errors raised by zip-aligner."""


class ConfigurationError(ZipAlignerError, ValueError):
    """
    Invalid settings, detected before any archive is opened.

    Subclasses ValueError so that pydantic validators can raise it directly.
    """


class ArchiveReadError(ZipAlignerError):
    """The source archive cannot be opened, parsed or read."""


class ArchiveWriteError(ZipAlignerError):
    """The destination archive cannot be written."""


class VerificationError(ZipAlignerError):
    """A re-read output archive does not satisfy the alignment invariant."""
