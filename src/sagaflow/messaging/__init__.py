"""sagaflow messaging — asynchronous channel abstraction with pluggable adapters."""

from sagaflow.messaging.adapters.memory import InMemoryMessageChannel
from sagaflow.messaging.ports.outbound import MessageChannelPort, MessageHandler
from sagaflow.messaging.types import Message

__all__ = [
    "InMemoryMessageChannel",
    "Message",
    "MessageChannelPort",
    "MessageHandler",
]
