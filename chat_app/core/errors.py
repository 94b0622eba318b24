"""Exceptions raised by the session core.

Every error is scoped to one connection or room. Callers translate them into an
``error`` event for the offending connection; none of them is fatal.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for rejected session operations."""

    code = "session-error"


class ProtocolViolation(SessionError):
    """An action was requested outside the state where it is valid."""

    code = "protocol-violation"


class NotFound(SessionError):
    """An operation referenced an unknown connection, room or debate."""

    code = "not-found"
