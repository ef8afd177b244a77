"""Custom exceptions for the forward manager.

This module defines the exceptions used throughout the forwarding supervisor.
They map one-to-one onto the failure kinds the service distinguishes:
- Configuration file problems (fatal)
- Malformed or conflicting rule lines (skipped with a warning)
- Listen endpoints that cannot be bound (one rule lost)
- Targets that cannot be reached (one connection lost)
- Mid-stream I/O failures (one relay lost)

Only ConfigError is allowed to reach the process exit status. Every other
exception is contained by the component that detected it and surfaced through
the log.

Example:
    try:
        ruleset = load_rules(path)
    except ConfigError as e:
        console.print(f"[red]Cannot read configuration: {e}")
"""


class ForwardError(Exception):
    """Base exception for forward manager errors."""


class ConfigError(ForwardError):
    """Raised when the configuration file is missing, unreadable or invalid."""


class ParseError(ForwardError):
    """Raised when a single rule line cannot be parsed."""


class ConflictError(ForwardError):
    """Raised when a rule reuses a listen endpoint claimed by an earlier rule."""


class BindError(ForwardError):
    """Raised when a worker cannot bind its listen endpoint."""

    def __init__(self, endpoint: tuple[str, int], reason: str) -> None:
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"cannot listen on {endpoint[0]}:{endpoint[1]}: {reason}")


class ConnectError(ForwardError):
    """Raised when the target endpoint of a rule cannot be reached."""

    def __init__(self, endpoint: tuple[str, int], reason: str) -> None:
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"cannot connect to {endpoint[0]}:{endpoint[1]}: {reason}")


class RelayError(ForwardError):
    """Raised when a relay fails mid-stream."""
