"""Compliance Tracker: audit engagements, controls, findings and frameworks."""

__version__ = "1.0.0"
