"""Exceptions surfaced by a scan. Anything else is handled where it happens."""


class ScanError(Exception):
    """Base class for request-level scan failures."""


class BrowserLaunchError(ScanError):
    pass


class EntryPageError(ScanError):
    """No frontier URL, the entry page included, could be loaded."""


class OracleError(ScanError):
    """The text-generation oracle failed or returned malformed output."""


class RiskAssessmentError(ScanError):
    pass


class ScanCancelled(ScanError):
    """The consumer of progress messages went away mid-scan."""
