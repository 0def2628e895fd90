"""sagaflow kernel — exception hierarchy shared by every module."""

from sagaflow.kernel.exceptions import (
    BusinessException,
    ConcurrencyException,
    ConflictException,
    InfrastructureException,
    MessagingException,
    ResourceNotFoundException,
    SagaflowException,
    ValidationException,
)

__all__ = [
    "BusinessException",
    "ConcurrencyException",
    "ConflictException",
    "InfrastructureException",
    "MessagingException",
    "ResourceNotFoundException",
    "SagaflowException",
    "ValidationException",
]
