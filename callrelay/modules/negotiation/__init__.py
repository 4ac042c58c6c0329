"""협상 상태 머신 모듈."""

from .state_machine import (
    NegotiationStateMachine,
    NegotiationState,
    NegotiationEvent,
    Offerer,
)

__all__ = [
    "NegotiationStateMachine",
    "NegotiationState",
    "NegotiationEvent",
    "Offerer",
]
