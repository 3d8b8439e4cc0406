"""Shared models, results, exceptions and logging."""

from .exceptions import (
    DirectoryError,
    EntityExtractionAmbiguousError,
    GatewayError,
    RequestError,
    UnsupportedIntentError,
)
from .logger import OperationLogger, configure_logging
from .models import (
    ChatSession,
    ChatTurn,
    Completion,
    CompletionChunk,
    ExchangeOutcome,
    GENERAL_INTENTS,
    Intent,
    OperationContext,
    StorageIntent,
    StreamingState,
    Subscription,
)
from .results import Failure, OperationResult, Success, failure_from_exception

__all__ = [
    # Exceptions
    "DirectoryError",
    "EntityExtractionAmbiguousError",
    "GatewayError",
    "RequestError",
    "UnsupportedIntentError",
    # Logging
    "OperationLogger",
    "configure_logging",
    # Models
    "ChatSession",
    "ChatTurn",
    "Completion",
    "CompletionChunk",
    "ExchangeOutcome",
    "GENERAL_INTENTS",
    "Intent",
    "OperationContext",
    "StorageIntent",
    "StreamingState",
    "Subscription",
    # Results
    "Failure",
    "OperationResult",
    "Success",
    "failure_from_exception",
]
