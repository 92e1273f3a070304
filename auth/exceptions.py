"""
auth/exceptions.py -- Error taxonomy for the identity provider.

Only ConfigurationError is ever raised. The other outcomes are ordinary
False/None results from provider calls; ErrorCode gives them stable names
for logs and for the HTTP error envelope built in api/.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    not_found = "not_found"
    conflict = "conflict"
    unauthenticated = "unauthenticated"
    unsupported = "unsupported"


class ConfigurationError(RuntimeError):
    """The provider could not be set up, or was used before setup()."""
