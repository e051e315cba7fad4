from collections.abc import Awaitable, Callable
from typing import Any

from gcpubsub.datastructures import Message

MessageHandler = Callable[[Message], Awaitable[Any]]
StructuredMessageHandler = Callable[[Any, Message], Awaitable[Any]]

# The message is None for broker-level errors. Both sync and async callables are accepted.
ErrorHandler = Callable[[Exception, Message | None], Awaitable[None] | None]
