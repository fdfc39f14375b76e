"""Call client: negotiation state machine, track renegotiation and session teardown."""
from .capabilities import MediaAcquisitionError
from .negotiation import ConnectionPhase, NegotiationError, NegotiationStateMachine, Severity, StatusMessage
from .renegotiation import LocalMedia, RenegotiationController
from .session import CallSession

__all__ = [
    "CallSession",
    "ConnectionPhase",
    "LocalMedia",
    "MediaAcquisitionError",
    "NegotiationError",
    "NegotiationStateMachine",
    "RenegotiationController",
    "Severity",
    "StatusMessage",
]
