"""relay.core.exceptions

Exception hierarchy for conditions that abort a command.

Guard failures and sizing rejections are *values*, not exceptions. What remains here is
what should stop a process or be caught at a well-defined boundary.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for relay."""


class ConfigError(RelayError):
    """Configuration is missing, invalid, or inconsistent."""


class JournalError(RelayError):
    """Append-only log failures: IO or a record that does not parse."""


class SourceError(RelayError):
    """Signal source unreachable or returned an unsupported payload."""


class DecisionError(RelayError):
    """Decision invariant violated (e.g. a second execution attachment)."""


class VenueError(RelayError):
    """Venue request failed or returned an error envelope."""


class InstrumentNotFoundError(VenueError):
    """The venue does not list the requested instrument."""

