"""Chat history stores.

A history store keeps the persisted chat turns of each session, keyed
by the session key. Two stores are provided: an in-memory store for the
console and a Cosmos DB store for history that outlives the process.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

from azure.cosmos.aio import CosmosClient

from src.core.models import ChatTurn

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "default"


class HistoryStore(Protocol):
    """Append/list/clear chat turns for a session key."""

    async def list(self, session_key: str | None = None) -> list[ChatTurn]: ...

    async def add(self, turn: ChatTurn, session_key: str | None = None) -> None: ...

    async def clear(self, session_key: str | None = None) -> None: ...


class InMemoryHistoryStore:
    """Process-local chat history.

    Mutations are serialized with an asyncio lock; ``list`` returns a
    snapshot so callers never see later appends.
    """

    def __init__(self) -> None:
        self._turns: dict[str, list[ChatTurn]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def list(self, session_key: str | None = None) -> list[ChatTurn]:
        return list(self._turns.get(session_key or DEFAULT_SESSION_KEY, []))

    async def add(self, turn: ChatTurn, session_key: str | None = None) -> None:
        async with self._lock:
            self._turns[session_key or DEFAULT_SESSION_KEY].append(turn)

    async def clear(self, session_key: str | None = None) -> None:
        async with self._lock:
            self._turns.pop(session_key or DEFAULT_SESSION_KEY, None)


class CosmosHistoryStore:
    """Persistent chat history in Cosmos DB.

    Each turn is one document partitioned by session key, with automatic
    TTL for expiration.

    Example:
        store = CosmosHistoryStore(
            cosmos_endpoint="https://myaccount.documents.azure.com",
            database_name="azure-sidekick",
        )
        await store.init()

        await store.add(turn, session_key="user-1")
        turns = await store.list("user-1")

        await store.close()
    """

    DEFAULT_DATABASE = "azure-sidekick"
    DEFAULT_CONTAINER = "chat-history"
    DEFAULT_TTL_DAYS = 30

    def __init__(
        self,
        cosmos_endpoint: str,
        database_name: str | None = None,
        container_name: str | None = None,
        credential: Any | None = None,
    ):
        """Initialize the history store.

        Args:
            cosmos_endpoint: Cosmos DB account endpoint
            database_name: Database name (default: azure-sidekick)
            container_name: Container name (default: chat-history)
            credential: Optional Azure credential (uses DefaultAzureCredential if None)
        """
        self.cosmos_endpoint = cosmos_endpoint
        self.database_name = database_name or self.DEFAULT_DATABASE
        self.container_name = container_name or self.DEFAULT_CONTAINER
        self._credential = credential
        self._client: CosmosClient | None = None
        self._initialized = False

    async def init(self) -> None:
        """Initialize Cosmos DB connection.

        Must be called before using any other methods.
        """
        if self._initialized:
            return

        if self._credential:
            self._client = CosmosClient(self.cosmos_endpoint, self._credential)
        else:
            from azure.identity.aio import DefaultAzureCredential

            credential = DefaultAzureCredential()
            self._client = CosmosClient(self.cosmos_endpoint, credential)

        self._initialized = True
        logger.info(f"CosmosHistoryStore initialized with database: {self.database_name}")

    def _container(self) -> Any:
        if not self._initialized or not self._client:
            raise RuntimeError("CosmosHistoryStore not initialized. Call init() first.")
        db = self._client.get_database_client(self.database_name)
        return db.get_container_client(self.container_name)

    async def list(self, session_key: str | None = None) -> list[ChatTurn]:
        """List the turns of a session, oldest first.

        Raises:
            RuntimeError: If store not initialized
        """
        container = self._container()
        key = session_key or DEFAULT_SESSION_KEY

        query = """
        SELECT * FROM c
        WHERE c.type = 'chat_turn' AND c.session_key = @session_key
        ORDER BY c.created_at ASC
        """

        turns: list[ChatTurn] = []
        async for item in container.query_items(
            query,
            parameters=[{"name": "@session_key", "value": key}],
            partition_key=key,
        ):
            turns.append(ChatTurn.from_dict(item))

        return turns

    async def add(self, turn: ChatTurn, session_key: str | None = None) -> None:
        """Append a turn to a session.

        Raises:
            RuntimeError: If store not initialized
        """
        container = self._container()
        key = session_key or DEFAULT_SESSION_KEY

        doc = {
            **turn.to_dict(),
            "type": "chat_turn",
            "session_key": key,
            "partition_key": key,
            "ttl": 86400 * self.DEFAULT_TTL_DAYS,  # 30 day retention
        }

        await container.upsert_item(doc)
        logger.debug(f"Saved chat turn {turn.id} for session {key}")

    async def clear(self, session_key: str | None = None) -> None:
        """Delete every turn of a session.

        Raises:
            RuntimeError: If store not initialized
        """
        container = self._container()
        key = session_key or DEFAULT_SESSION_KEY

        query = "SELECT c.id FROM c WHERE c.type = 'chat_turn' AND c.session_key = @session_key"
        ids: list[str] = []
        async for item in container.query_items(
            query,
            parameters=[{"name": "@session_key", "value": key}],
            partition_key=key,
        ):
            ids.append(item["id"])

        for doc_id in ids:
            await container.delete_item(doc_id, partition_key=key)

        logger.info(f"Cleared {len(ids)} chat turns for session {key}")

    async def close(self) -> None:
        """Close Cosmos DB connection."""
        if self._client:
            await self._client.close()
            self._client = None
            self._initialized = False
            logger.info("CosmosHistoryStore closed")
