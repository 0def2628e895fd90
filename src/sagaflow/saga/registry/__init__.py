"""Saga definition registry — step model, definitions, builder."""

from sagaflow.saga.registry.saga_builder import SagaBuilder, StepBuilder
from sagaflow.saga.registry.saga_definition import DefinitionRef, SagaDefinition
from sagaflow.saga.registry.saga_registry import SagaRegistry
from sagaflow.saga.registry.step_definition import CommandSpec, RetryPolicy, StepDefinition

__all__ = [
    "CommandSpec",
    "DefinitionRef",
    "RetryPolicy",
    "SagaBuilder",
    "SagaDefinition",
    "SagaRegistry",
    "StepBuilder",
    "StepDefinition",
]
