"""Consent-state cookie, tracker and storage compliance scanner."""

__version__ = "0.1.0"
