"""Dustbin exception hierarchy."""

from __future__ import annotations


class DustbinError(Exception):
    """Base exception for all Dustbin errors."""


class ConfigError(DustbinError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when the configuration file does not exist."""


class LedgerError(DustbinError):
    """Raised when the usage ledger cannot be opened, migrated, or written."""


class SchemaVersionError(LedgerError):
    """Raised when the on-disk ledger is newer than this build understands."""


class MonitorError(DustbinError):
    """Raised when the exec monitor cannot be used at all."""


class PlatformError(DustbinError):
    """Raised when the current platform lacks a required capability."""
