"""
Exceptions raised by the sync client.

Handlers catch these at the event boundary and turn them into faults;
nothing here is fatal to the process.
"""


class ParseError(ValueError):
    """Wire payload could not be converted into a domain record."""


class SigningError(Exception):
    """Signer failed to produce a signature (credential or encoding failure)."""


class ConnectionNotOpenError(ConnectionError):
    """Send attempted while no socket is open."""
