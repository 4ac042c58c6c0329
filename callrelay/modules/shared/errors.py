"""Exception types shared by the relay and the client session."""


class SignalingError(Exception):
    """Base class for signaling failures."""


class MessageValidationError(SignalingError):
    """An inbound frame is not a recognised, well-formed signaling message."""

    def __init__(self, message: str, event: str = None):
        super().__init__(message)
        self.event = event


class CallSetupError(SignalingError):
    """Local media or negotiation capability failed while setting up a call.

    Surfaced to the initiating side only; the remote peer never sees it.
    """

    def __init__(self, message: str, peer_id: str = None):
        super().__init__(message)
        self.peer_id = peer_id


class JoinTimeoutError(SignalingError):
    """The relay did not acknowledge ``room:join`` in time."""
