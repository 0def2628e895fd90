"""Participant side of the saga protocol — gateways and endpoints."""

from sagaflow.saga.core.outcome import Failure, Outcome, Success, Timeout
from sagaflow.saga.participants.endpoint import ParticipantEndpoint
from sagaflow.saga.participants.http import HttpParticipantGateway
from sagaflow.saga.participants.local import CallableParticipantGateway

__all__ = [
    "CallableParticipantGateway",
    "Failure",
    "HttpParticipantGateway",
    "Outcome",
    "ParticipantEndpoint",
    "Success",
    "Timeout",
]
