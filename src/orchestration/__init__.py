"""Intent routing and streaming orchestration.

This package provides the conversational routing layer:

- GroundingPolicy: grounding rules and chat history trimming
- GeneralRouter: rephrasing, top-level intent and general answers
- StorageRouter: Azure Storage questions backed by Resource Graph
- RouterRegistry: explicit intent to router mapping
- StreamingAggregator: relays streamed fragments, persists the final turn
- ConversationOrchestrator: drives one question through the pipeline

Example:
    from src.orchestration import (
        ConversationOrchestrator,
        GeneralRouter,
        RouterRegistry,
        StorageRouter,
    )

    general = GeneralRouter(gateway, history)
    storage = StorageRouter(gateway, history, directory)
    orchestrator = ConversationOrchestrator(
        general, RouterRegistry({"Storage": storage}), history, directory
    )

    async for item in orchestrator.handle_question(session, "How many storage accounts do I have?"):
        ...
"""

from .base import BaseRouter, ModelCall, normalize_label
from .general import GeneralRouter
from .grounding import (
    CHAT_HISTORY_ARGUMENT,
    CONTEXT_ARGUMENT,
    GROUNDING_RULES_ARGUMENT,
    GroundingPolicy,
)
from .orchestrator import ConversationOrchestrator
from .registry import RouterRegistry
from .storage import StorageEntities, StorageRouter, parse_storage_entities
from .streaming import StreamingAggregator

__all__ = [
    # Routers
    "BaseRouter",
    "GeneralRouter",
    "StorageRouter",
    "RouterRegistry",
    "ModelCall",
    "normalize_label",
    # Grounding
    "GroundingPolicy",
    "GROUNDING_RULES_ARGUMENT",
    "CHAT_HISTORY_ARGUMENT",
    "CONTEXT_ARGUMENT",
    # Storage entities
    "StorageEntities",
    "parse_storage_entities",
    # Streaming
    "StreamingAggregator",
    "ConversationOrchestrator",
]
