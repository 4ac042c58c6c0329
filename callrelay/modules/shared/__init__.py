"""Shared error types used across the relay and the client.

Only lightweight, common definitions should live here. Do not place
service-specific logic or heavy dependencies (e.g., aiortc, FastAPI)
in this package.
"""

from .errors import (
    SignalingError,
    MessageValidationError,
    CallSetupError,
    JoinTimeoutError,
)

__all__ = [
    "SignalingError",
    "MessageValidationError",
    "CallSetupError",
    "JoinTimeoutError",
]
