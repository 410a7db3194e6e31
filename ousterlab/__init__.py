"""Ouster legacy UDP captures to PCD point-cloud frames."""

__version__ = "0.1.0"
