"""Infrastructure collaborators: model gateway, resource directories, history stores."""

from .gateway import AzureOpenAIGateway, LanguageModelGateway
from .history import CosmosHistoryStore, HistoryStore, InMemoryHistoryStore
from .resources import (
    ResourceGraphDirectory,
    StorageDirectory,
    SubscriptionDirectory,
    record_to_yaml,
    records_to_context,
)

__all__ = [
    "AzureOpenAIGateway",
    "LanguageModelGateway",
    "CosmosHistoryStore",
    "HistoryStore",
    "InMemoryHistoryStore",
    "ResourceGraphDirectory",
    "StorageDirectory",
    "SubscriptionDirectory",
    "record_to_yaml",
    "records_to_context",
]
